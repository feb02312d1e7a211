import logging
import re
from datetime import datetime, timezone
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import create_document, db, paginate, parse_object_id, to_dict
from errors import ok
from product_types import validate_categories
from schemas import Service
from security import require_role
from shops import shop_for_account

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/services", tags=["services"])


class ServiceRequest(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    duration: Optional[int] = Field(None, ge=1)
    categories: List[str] = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    service_type: Literal["onsite", "offsite", "both"] = "both"
    availability: Literal["available", "unavailable"] = "available"
    max_bookings: int = Field(10, ge=1)
    requirements: List[str] = Field(default_factory=list)
    includes: List[str] = Field(default_factory=list)
    excludes: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class ServiceUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    duration: Optional[int] = Field(None, ge=1)
    categories: Optional[List[str]] = Field(None, min_length=1)
    images: Optional[List[str]] = None
    service_type: Optional[Literal["onsite", "offsite", "both"]] = None
    availability: Optional[Literal["available", "unavailable"]] = None
    max_bookings: Optional[int] = Field(None, ge=1)
    requirements: Optional[List[str]] = None
    includes: Optional[List[str]] = None
    excludes: Optional[List[str]] = None
    notes: Optional[str] = None


def get_service_or_404(service_id: str) -> dict:
    service = db["service"].find_one({"_id": parse_object_id(service_id, "service")})
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


def _owned_service(service_id: str, user: dict) -> dict:
    service = get_service_or_404(service_id)
    shop = shop_for_account(user["id"])
    if not shop or str(shop["_id"]) != service["shop_id"]:
        raise HTTPException(status_code=403, detail="You do not own this service")
    return service


@router.post("", status_code=201)
def create_service(payload: ServiceRequest, user=Depends(require_role("shop"))):
    shop = shop_for_account(user["id"])
    if not shop or not shop.get("is_active") or shop.get("approval_status") != "approved":
        raise HTTPException(status_code=403, detail="Your shop is not approved or not active")
    payload.categories = validate_categories(payload.categories)
    service = Service(shop_id=str(shop["_id"]), **payload.model_dump())
    service_id = create_document("service", service)
    logger.info("Service %s created by shop %s", service_id, shop["_id"])
    return ok(to_dict(db["service"].find_one({"_id": ObjectId(service_id)})), "Service created")


@router.get("")
def list_services(
    page: int = 1,
    limit: int = 10,
    keyword: Optional[str] = None,
    shop_id: Optional[str] = None,
    categories: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    service_type: Optional[Literal["onsite", "offsite", "both"]] = None,
    availability: Optional[Literal["available", "unavailable"]] = None,
):
    page, limit, skip = paginate(page, limit)
    query = {}
    if keyword:
        pattern = {"$regex": re.escape(keyword), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}]
    if shop_id:
        query["shop_id"] = str(parse_object_id(shop_id, "shop"))
    if categories:
        ids = [str(parse_object_id(c.strip(), "category")) for c in categories.split(",") if c.strip()]
        if ids:
            query["categories"] = {"$in": ids}
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if service_type:
        query["service_type"] = service_type
    if availability:
        query["availability"] = availability

    total = db["service"].count_documents(query)
    services = db["service"].find(query).sort("created_at", -1).skip(skip).limit(limit)
    return ok([to_dict(s) for s in services], page=page, pages=-(-total // limit), total=total)


@router.get("/shop/{shop_id}")
def services_for_shop(shop_id: str):
    services = db["service"].find({"shop_id": str(parse_object_id(shop_id, "shop"))}).sort("created_at", -1)
    return ok([to_dict(s) for s in services])


@router.get("/{service_id}/reviews")
def service_reviews(service_id: str):
    service = get_service_or_404(service_id)
    reviews = list(db["servicereview"].find({"service_id": str(service["_id"])}).sort("created_at", -1))
    average = round(sum(r["rating"] for r in reviews) / len(reviews), 2) if reviews else 0
    return ok([to_dict(r) for r in reviews], average_rating=average, total=len(reviews))


@router.get("/{service_id}")
def get_service(service_id: str):
    return ok(to_dict(get_service_or_404(service_id)))


@router.put("/{service_id}")
def update_service(service_id: str, payload: ServiceUpdate, user=Depends(require_role("shop"))):
    service = _owned_service(service_id, user)
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "categories" in updates:
        updates["categories"] = validate_categories(updates["categories"])
    if updates:
        updates["updated_at"] = datetime.now(timezone.utc)
        db["service"].update_one({"_id": service["_id"]}, {"$set": updates})
    return ok(to_dict(db["service"].find_one({"_id": service["_id"]})), "Service updated")


@router.delete("/{service_id}")
def delete_service(service_id: str, user=Depends(require_role("shop"))):
    service = _owned_service(service_id, user)
    db["service"].delete_one({"_id": service["_id"]})
    return ok(None, "Service deleted")
