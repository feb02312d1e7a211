import logging
import re
from datetime import datetime, timezone
from typing import Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

import reconciliation
from database import create_document, db, paginate, parse_object_id, to_dict
from errors import ok
from gateway import PaymentGatewayError
from lifecycle import check_booking_transition, deposit_for
from payments import confirm_return, process_webhook
from schemas import Booking, BookingPaymentStatus, BookingStatus, ServiceReview
from security import get_current_user, get_optional_user, require_role
from shops import shop_for_account

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])
reviews_router = APIRouter(prefix="/api/reviews", tags=["reviews"])


class BookingRequest(BaseModel):
    service_id: str
    customer_name: str
    customer_phone: str
    customer_email: EmailStr
    service_type: Literal["onsite", "offsite"]
    address: str
    booking_date: datetime
    booking_time: str
    notes: Optional[str] = None


class BookingPaymentRequest(BaseModel):
    booking_id: str


class BookingUpdate(BaseModel):
    status: Optional[BookingStatus] = None
    payment_status: Optional[BookingPaymentStatus] = None


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


def _now():
    return datetime.now(timezone.utc)


def get_booking_or_404(booking_id: str) -> dict:
    booking = db["booking"].find_one({"_id": parse_object_id(booking_id, "booking")})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def _ensure_admin_or_shop_owner(booking: dict, user: dict):
    if user.get("role") == "admin":
        return
    shop = shop_for_account(user["id"]) if user.get("role") == "shop" else None
    if not shop or str(shop["_id"]) != booking["shop_id"]:
        raise HTTPException(status_code=403, detail="Forbidden")


def _refresh_service_rating(service_id: str):
    ratings = [r["rating"] for r in db["servicereview"].find({"service_id": service_id}, {"rating": 1})]
    avg = round(sum(ratings) / len(ratings), 2) if ratings else 0
    db["service"].update_one({"_id": ObjectId(service_id)}, {"$set": {"rating": avg, "updated_at": _now()}})


@router.post("", status_code=201)
def create_booking(payload: BookingRequest, user=Depends(get_optional_user)):
    service = db["service"].find_one({"_id": parse_object_id(payload.service_id, "service")})
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    if service.get("availability") != "available":
        raise HTTPException(status_code=400, detail="Service is not available for booking")
    shop = db["shop"].find_one({"_id": parse_object_id(service["shop_id"], "shop")})
    if not shop:
        raise HTTPException(status_code=404, detail="Shop not found")
    if user and user.get("role") == "shop" and shop.get("account_id") == user["id"]:
        raise HTTPException(status_code=403, detail="A shop cannot book its own service")

    booking = Booking(
        **payload.model_dump(exclude={"service_id", "customer_email"}),
        customer_email=payload.customer_email.lower(),
        service_id=str(service["_id"]),
        shop_id=str(shop["_id"]),
        user_id=user["id"] if user else None,
        total_amount=service["price"],
        deposit_amount=deposit_for(service["price"]),
    )
    booking_id = create_document("booking", booking)
    logger.info("Booking %s created for service %s", booking_id, service["_id"])
    return ok(
        to_dict(db["booking"].find_one({"_id": ObjectId(booking_id)})),
        "Booking created, please pay the 10% deposit to confirm",
    )


@router.post("/payment")
def create_booking_payment(payload: BookingPaymentRequest):
    booking = get_booking_or_404(payload.booking_id)
    if booking.get("payment_status") == "paid":
        raise HTTPException(status_code=400, detail="Booking is already paid")
    if booking.get("status") == "cancelled":
        raise HTTPException(status_code=400, detail="Booking is cancelled")

    service = db["service"].find_one({"_id": ObjectId(booking["service_id"])})
    service_name = service["name"] if service else "Service"
    try:
        link = reconciliation.create_payment_link(
            "booking",
            str(booking["_id"]),
            booking["deposit_amount"],
            "Booking deposit",
            f"Deposit - {service_name}",
            buyer_name=booking.get("customer_name"),
            buyer_email=booking.get("customer_email"),
            return_path="/api/bookings/payment/return",
        )
    except PaymentGatewayError as exc:
        logger.error("Deposit payment for booking %s failed: %s", booking["_id"], exc)
        raise HTTPException(status_code=500, detail=f"Could not create PayOS payment: {exc}")
    return ok({**link, "payment_url": link["checkout_url"]}, "Deposit payment link created")


@router.get("/payment/return")
def booking_payment_return(request: Request):
    return confirm_return(request, "/booking-payment-success")


@router.post("/payment/webhook")
def booking_payment_webhook(payload: dict = Body(...)):
    return process_webhook(payload)


@router.get("")
def list_bookings(
    page: int = 1,
    limit: int = 10,
    shop_id: Optional[str] = None,
    status: Optional[BookingStatus] = None,
    payment_status: Optional[BookingPaymentStatus] = None,
    search: Optional[str] = None,
):
    page, limit, skip = paginate(page, limit)
    query = {}
    if shop_id:
        query["shop_id"] = str(parse_object_id(shop_id, "shop"))
    if status:
        query["status"] = status
    if payment_status:
        query["payment_status"] = payment_status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"customer_name": pattern}, {"customer_phone": pattern}, {"customer_email": pattern}]

    total = db["booking"].count_documents(query)
    bookings = db["booking"].find(query).sort("created_at", -1).skip(skip).limit(limit)
    return ok([to_dict(b) for b in bookings], page=page, pages=-(-total // limit), total=total)


@router.get("/customer/{email}")
def bookings_for_customer(email: str):
    bookings = db["booking"].find({"customer_email": email.lower()}).sort("created_at", -1)
    return ok([to_dict(b) for b in bookings])


@router.get("/{booking_id}")
def get_booking(booking_id: str):
    return ok(to_dict(get_booking_or_404(booking_id)))


@router.put("/{booking_id}")
def update_booking(booking_id: str, payload: BookingUpdate, user=Depends(require_role("admin", "shop"))):
    booking = get_booking_or_404(booking_id)
    _ensure_admin_or_shop_owner(booking, user)
    if payload.status is None and payload.payment_status is None:
        raise HTTPException(status_code=400, detail="Provide status or payment_status")

    query = {"_id": booking["_id"]}
    updates = {"updated_at": _now()}
    if payload.status is not None and payload.status != booking["status"]:
        try:
            check_booking_transition(booking["status"], payload.status, booking["booking_date"])
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        query["status"] = booking["status"]
        updates["status"] = payload.status
    if payload.payment_status is not None:
        updates["payment_status"] = payload.payment_status

    result = db["booking"].update_one(query, {"$set": updates})
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Booking status changed concurrently, please retry")
    return ok(to_dict(db["booking"].find_one({"_id": booking["_id"]})), "Booking updated")


@router.post("/{booking_id}/review", status_code=201)
def review_booking(booking_id: str, payload: ReviewRequest, user=Depends(get_current_user)):
    booking = get_booking_or_404(booking_id)
    if booking.get("user_id") != user["id"]:
        raise HTTPException(status_code=403, detail="You can only review your own bookings")
    if booking["status"] != "completed":
        raise HTTPException(status_code=400, detail="Only completed bookings can be reviewed")

    review = ServiceReview(
        booking_id=str(booking["_id"]),
        customer_id=user["id"],
        service_id=booking["service_id"],
        shop_id=booking["shop_id"],
        rating=payload.rating,
        comment=payload.comment,
    )
    try:
        review_id = create_document("servicereview", review)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="You have already reviewed this booking")
    _refresh_service_rating(booking["service_id"])
    return ok(to_dict(db["servicereview"].find_one({"_id": ObjectId(review_id)})), "Review submitted")


def _review_or_404(review_id: str) -> dict:
    review = db["servicereview"].find_one({"_id": parse_object_id(review_id, "review")})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


@reviews_router.get("/{review_id}")
def get_review(review_id: str):
    return ok(to_dict(_review_or_404(review_id)))


@reviews_router.put("/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, user=Depends(get_current_user)):
    review = _review_or_404(review_id)
    if review["customer_id"] != user["id"]:
        raise HTTPException(status_code=403, detail="You can only edit your own reviews")
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    if updates:
        updates["updated_at"] = _now()
        db["servicereview"].update_one({"_id": review["_id"]}, {"$set": updates})
        _refresh_service_rating(review["service_id"])
    return ok(to_dict(db["servicereview"].find_one({"_id": review["_id"]})), "Review updated")


@reviews_router.delete("/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user)):
    review = _review_or_404(review_id)
    if review["customer_id"] != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    db["servicereview"].delete_one({"_id": review["_id"]})
    _refresh_service_rating(review["service_id"])
    return ok(None, "Review deleted")
