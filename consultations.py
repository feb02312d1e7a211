import logging
from datetime import datetime, timezone
from typing import Literal, Optional, get_args

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from database import create_document, db, parse_object_id, to_dict
from errors import ok
from lifecycle import CLOSED_CONSULTATION_STATUSES, CONSULTATION_CALL_OUTCOMES
from schemas import CallHistory, CallResult, CallerInfo, ConsultationRequest, ConsultationStatus
from security import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/consultations", tags=["consultations"])

STAFF_ROLES = ("admin", "manager", "staff")
CONSULTATION_STATUSES = get_args(ConsultationStatus)


class ConsultationCreate(BaseModel):
    customer_name: str = Field(..., min_length=2, max_length=100)
    phone_number: str = Field(..., pattern=r"^[0-9]{10,11}$")
    email: Optional[EmailStr] = None
    consultation_type: Literal["call_now", "schedule"]
    preferred_time: Optional[datetime] = None
    notes: Optional[str] = None


class RescheduleRequest(BaseModel):
    new_preferred_time: datetime
    notes: Optional[str] = None


class CallResultRequest(BaseModel):
    result: CallResult
    notes: Optional[str] = None


def _now():
    return datetime.now(timezone.utc)


def _get_or_404(request_id: str) -> dict:
    doc = db["consultationrequest"].find_one({"_id": parse_object_id(request_id, "consultation request")})
    if not doc:
        raise HTTPException(status_code=404, detail="Consultation request not found")
    return doc


def _caller(user: dict) -> CallerInfo:
    name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p) or user["username"]
    return CallerInfo(user_id=user["id"], name=name)


def _log_call(doc: dict, entry: CallHistory, updates: dict) -> dict:
    """Append a call to the history and apply `updates`, unless the request was closed meanwhile."""
    updates["updated_at"] = _now()
    result = db["consultationrequest"].update_one(
        {"_id": doc["_id"], "status": {"$nin": list(CLOSED_CONSULTATION_STATUSES)}},
        {"$push": {"call_history": entry.model_dump()}, "$set": updates},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Consultation request was closed concurrently")
    return db["consultationrequest"].find_one({"_id": doc["_id"]})


@router.post("/requests", status_code=201)
def create_request(payload: ConsultationCreate):
    if payload.consultation_type == "schedule" and payload.preferred_time is None:
        raise HTTPException(status_code=400, detail="preferred_time is required for a scheduled consultation")

    call_now = payload.consultation_type == "call_now"
    consultation = ConsultationRequest(
        **payload.model_dump(exclude={"preferred_time", "email"}),
        email=payload.email.lower() if payload.email else None,
        preferred_time=_now() if call_now else payload.preferred_time,
        status="pending" if call_now else "scheduled",
    )
    request_id = create_document("consultationrequest", consultation)
    logger.info("Consultation request %s created (%s)", request_id, payload.consultation_type)
    return ok(
        to_dict(db["consultationrequest"].find_one({"_id": ObjectId(request_id)})),
        "Consultation request created",
    )


@router.get("/requests")
def list_requests(status: Optional[str] = None, user=Depends(require_role(*STAFF_ROLES))):
    query = {}
    if status:
        wanted = [s.strip() for s in status.split(",") if s.strip()]
        unknown = [s for s in wanted if s not in CONSULTATION_STATUSES]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown status: {', '.join(unknown)}")
        query["status"] = {"$in": wanted}
    requests = db["consultationrequest"].find(query).sort("preferred_time", -1)
    return ok([to_dict(r) for r in requests])


@router.put("/requests/{request_id}/reschedule")
def reschedule_request(request_id: str, payload: RescheduleRequest, user=Depends(require_role(*STAFF_ROLES))):
    doc = _get_or_404(request_id)
    if doc["status"] in CLOSED_CONSULTATION_STATUSES:
        raise HTTPException(status_code=400, detail=f"Consultation request is already {doc['status']}")

    entry = CallHistory(call_time=_now(), result="rescheduled", notes=payload.notes, caller_info=_caller(user))
    updated = _log_call(doc, entry, {"preferred_time": payload.new_preferred_time, "status": "scheduled"})
    return ok(to_dict(updated), "Consultation rescheduled")


@router.put("/requests/{request_id}/call-result")
def record_call_result(request_id: str, payload: CallResultRequest, user=Depends(require_role(*STAFF_ROLES))):
    doc = _get_or_404(request_id)
    if doc["status"] in CLOSED_CONSULTATION_STATUSES:
        raise HTTPException(status_code=400, detail=f"Consultation request is already {doc['status']}")

    entry = CallHistory(call_time=_now(), result=payload.result, notes=payload.notes, caller_info=_caller(user))
    updates = {}
    if payload.result in CONSULTATION_CALL_OUTCOMES:
        updates["status"] = CONSULTATION_CALL_OUTCOMES[payload.result]
    updated = _log_call(doc, entry, updates)
    logger.info("Call result %s recorded on consultation %s by %s", payload.result, request_id, user["username"])
    return ok(to_dict(updated), "Call result recorded")
