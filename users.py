import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, EmailStr

import mailer
from config import DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD, DEFAULT_ADMIN_USERNAME, RESET_CODE_TTL_SECONDS
from database import create_document, db, paginate
from errors import ok
from schemas import Account
from security import create_access_token, get_current_user, hash_password, public_account, require_role, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    address: Optional[str] = None


class LoginRequest(BaseModel):
    username_or_email: str
    password: str


class EmailRequest(BaseModel):
    email: EmailStr


class VerifyCodeRequest(BaseModel):
    email: EmailStr
    code: str


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    verification_code: str
    new_password: str


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str


class ProfileUpdate(BaseModel):
    username: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None


def _now():
    return datetime.now(timezone.utc)


def ensure_account_available(username: str, email: str):
    existing = db["account"].find_one({"$or": [{"username": username}, {"email": email.lower()}]})
    if existing:
        raise HTTPException(status_code=400, detail="Account already exists")


def create_account(payload: RegisterRequest, role: str = "customer") -> dict:
    """Insert an unverified account and return the stored document."""
    ensure_account_available(payload.username, payload.email)
    account = Account(
        username=payload.username,
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        address=payload.address,
        role=role,
        is_email_verified=False,
        email_verification_token=secrets.token_urlsafe(32),
    )
    account_id = create_document("account", account)
    return db["account"].find_one({"_id": ObjectId(account_id)})


def _code_valid(user: Optional[dict], code: str) -> bool:
    if not user or not user.get("verification_code") or user.get("verification_code") != code:
        return False
    expires = user.get("verification_code_expires")
    if expires is None:
        return False
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return _now() <= expires


def ensure_default_admin():
    if db is None:
        return
    if db["account"].find_one({"role": "admin"}):
        logger.info("Admin account already exists")
        return
    account = Account(
        username=DEFAULT_ADMIN_USERNAME,
        email=DEFAULT_ADMIN_EMAIL,
        password_hash=hash_password(DEFAULT_ADMIN_PASSWORD),
        first_name="Admin",
        last_name="Admin",
        role="admin",
        is_email_verified=True,
    )
    create_document("account", account)
    logger.info("Default admin account created: %s", DEFAULT_ADMIN_USERNAME)


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, background_tasks: BackgroundTasks):
    user = create_account(payload)
    background_tasks.add_task(mailer.send_verification_email, user["email"], user["username"], user["email_verification_token"])
    token = create_access_token({"sub": str(user["_id"]), "role": user["role"]})
    return ok(
        {**public_account(user), "token": token},
        "Registration successful. Please check your email to verify your account.",
    )


@router.post("/login")
def login(payload: LoginRequest):
    ident = payload.username_or_email
    user = db["account"].find_one({"$or": [{"username": ident}, {"email": ident.lower()}]})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not user.get("is_email_verified"):
        raise HTTPException(status_code=401, detail="Email not verified. Please check your inbox.")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    token = create_access_token({"sub": str(user["_id"]), "role": user.get("role", "customer")})
    return ok({**public_account(user), "token": token}, "Login successful")


@router.post("/forgot-password")
def forgot_password(payload: EmailRequest):
    user = db["account"].find_one({"email": payload.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="Account not found")

    code = f"{secrets.randbelow(900000) + 100000}"
    expires = _now() + timedelta(seconds=RESET_CODE_TTL_SECONDS)
    db["account"].update_one(
        {"_id": user["_id"]},
        {"$set": {"verification_code": code, "verification_code_expires": expires, "updated_at": _now()}},
    )
    if not mailer.send_reset_code_email(user["email"], code, RESET_CODE_TTL_SECONDS):
        raise HTTPException(status_code=500, detail="Could not send verification code")
    return ok(None, "Verification code sent to your email")


@router.post("/verify-code")
def verify_code(payload: VerifyCodeRequest):
    user = db["account"].find_one({"email": payload.email.lower()})
    if not _code_valid(user, payload.code):
        raise HTTPException(status_code=400, detail="Verification code is invalid or expired")
    return ok(None, "Verification code is valid")


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest):
    user = db["account"].find_one({"email": payload.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="Account not found")
    if not _code_valid(user, payload.verification_code):
        raise HTTPException(status_code=400, detail="Verification code is invalid or expired")
    db["account"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(payload.new_password), "updated_at": _now()},
            "$unset": {"verification_code": "", "verification_code_expires": ""},
        },
    )
    return ok(None, "Password has been reset")


@router.post("/change-password")
def change_password(payload: ChangePasswordRequest, user=Depends(get_current_user)):
    if not verify_password(payload.old_password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Old password is incorrect")
    db["account"].update_one(
        {"_id": ObjectId(user["id"])},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": _now()}},
    )
    return ok(None, "Password changed")


@router.get("/verify-email/{token}")
def verify_email(token: str):
    user = db["account"].find_one({"email_verification_token": token})
    if not user:
        raise HTTPException(status_code=400, detail="Invalid verification token")
    if user.get("is_email_verified"):
        raise HTTPException(status_code=409, detail="Email already verified")
    db["account"].update_one(
        {"_id": user["_id"]},
        {"$set": {"is_email_verified": True, "updated_at": _now()}, "$unset": {"email_verification_token": ""}},
    )
    return ok(None, "Your email has been verified")


@router.put("/update-profile")
def update_profile(payload: ProfileUpdate, user=Depends(get_current_user)):
    updates = {k: v for k, v in payload.model_dump().items() if v}
    if "username" in updates and updates["username"] != user.get("username"):
        if db["account"].find_one({"username": updates["username"]}):
            raise HTTPException(status_code=400, detail="Username already taken")
    if updates:
        updates["updated_at"] = _now()
        db["account"].update_one({"_id": ObjectId(user["id"])}, {"$set": updates})
    doc = db["account"].find_one({"_id": ObjectId(user["id"])})
    return ok(public_account(doc), "Profile updated")


@router.get("/me")
def me(user=Depends(get_current_user)):
    return ok(public_account(user))


@router.get("")
def list_users(page: int = 1, limit: int = 20, role: Optional[str] = None, user=Depends(require_role("admin"))):
    page, limit, skip = paginate(page, limit)
    query = {"role": role} if role else {}
    total = db["account"].count_documents(query)
    users = db["account"].find(query).sort("created_at", -1).skip(skip).limit(limit)
    return ok([public_account(u) for u in users], page=page, pages=-(-total // limit), total=total)
