import logging
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from pymongo.errors import PyMongoError

import mailer
from database import create_document, db, parse_object_id, to_dict
from errors import ok
from lifecycle import TransitionError, check_shop_transition, shop_state
from schemas import Shop
from security import create_access_token, public_account, require_role
from users import RegisterRequest, create_account

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shops", tags=["shops"])


class ShopRegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str
    first_name: str
    last_name: str
    shop_name: str
    shop_address: str
    shop_description: Optional[str] = None
    shop_logo_url: Optional[str] = None
    business_license_number: Optional[str] = None
    tax_id: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_name: Optional[str] = None


def serialize_shop(doc: dict) -> dict:
    out = to_dict(doc)
    out["state"] = shop_state(doc)
    return out


def get_shop_or_404(shop_id: str) -> dict:
    shop = db["shop"].find_one({"_id": parse_object_id(shop_id, "shop")})
    if not shop:
        raise HTTPException(status_code=404, detail="Shop not found")
    return shop


def shop_for_account(account_id: str) -> Optional[dict]:
    return db["shop"].find_one({"account_id": account_id})


def require_operational_shop(user: dict) -> dict:
    """The caller's shop, which must be approved, active and paid up."""
    shop = shop_for_account(user["id"])
    if not shop or shop_state(shop) != "operational":
        raise HTTPException(
            status_code=403,
            detail="Your shop is not approved or has no active package. Please contact an administrator.",
        )
    return shop


def _set_approval(shop: dict, target: str, extra: dict) -> dict:
    try:
        check_shop_transition(shop.get("approval_status", "pending"), target)
    except TransitionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    update = {"approval_status": target, "updated_at": datetime.now(timezone.utc), **extra}
    db["shop"].update_one({"_id": shop["_id"]}, {"$set": update})
    return db["shop"].find_one({"_id": shop["_id"]})


@router.post("/register", status_code=201)
def register_shop(payload: ShopRegisterRequest, background_tasks: BackgroundTasks):
    account_fields = RegisterRequest(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    account = create_account(account_fields, role="shop")

    shop = Shop(
        account_id=str(account["_id"]),
        **payload.model_dump(exclude={"username", "email", "password", "first_name", "last_name"}),
    )
    try:
        shop_id = create_document("shop", shop)
    except PyMongoError:
        # roll back the half-finished registration
        db["account"].delete_one({"_id": account["_id"]})
        logger.exception("Shop registration failed for %s, account removed", payload.username)
        raise HTTPException(status_code=400, detail="Shop registration failed")

    background_tasks.add_task(mailer.send_verification_email, account["email"], account["username"], account["email_verification_token"])
    token = create_access_token({"sub": str(account["_id"]), "role": "shop"})
    doc = db["shop"].find_one({"_id": ObjectId(shop_id)})
    return ok(
        {"shop": serialize_shop(doc), "account": public_account(account), "token": token},
        "Shop registered, waiting for administrator approval.",
    )


@router.get("/pending")
def pending_shops(user=Depends(require_role("admin"))):
    shops = db["shop"].find({"approval_status": "pending"}).sort("created_at", -1)
    out = []
    for s in shops:
        item = serialize_shop(s)
        account = db["account"].find_one({"_id": ObjectId(s["account_id"])})
        item["account"] = {"username": account.get("username"), "email": account.get("email")} if account else None
        out.append(item)
    return ok(out)


@router.get("/{shop_id}")
def shop_detail(shop_id: str):
    shop = get_shop_or_404(shop_id)
    item = serialize_shop(shop)
    account = db["account"].find_one({"_id": ObjectId(shop["account_id"])})
    item["account"] = {"username": account.get("username"), "email": account.get("email")} if account else None
    return ok(item)


@router.patch("/{shop_id}/approve")
def approve_shop(shop_id: str, user=Depends(require_role("admin"))):
    shop = get_shop_or_404(shop_id)
    shop = _set_approval(shop, "approved", {"is_active": True, "rejection_reason": None})
    logger.info("Shop %s approved by %s", shop_id, user.get("username"))
    return ok(serialize_shop(shop), "Shop approved")


@router.patch("/{shop_id}/reject")
def reject_shop(shop_id: str, reason: Optional[str] = Body(None, embed=True), user=Depends(require_role("admin"))):
    shop = get_shop_or_404(shop_id)
    shop = _set_approval(shop, "rejected", {"is_active": False, "rejection_reason": reason or ""})
    logger.info("Shop %s rejected by %s", shop_id, user.get("username"))
    return ok(serialize_shop(shop), "Shop rejected")
