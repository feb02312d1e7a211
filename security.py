from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import db, to_dict
from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/users/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/users/login", auto_error=False)

# Fields never returned to clients
PRIVATE_ACCOUNT_FIELDS = ("password_hash", "verification_code", "verification_code_expires", "email_verification_token")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def public_account(doc: dict) -> dict:
    out = to_dict(doc)
    for field in PRIVATE_ACCOUNT_FIELDS:
        out.pop(field, None)
    return out


def _load_user(token: str) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
        oid = ObjectId(user_id)
    except (JWTError, InvalidId, TypeError):
        raise credentials_exception

    user = db["account"].find_one({"_id": oid})
    if not user:
        raise credentials_exception
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    user["id"] = str(user.pop("_id"))
    return user


# Dependency: get current user
async def get_current_user(token: str = Depends(oauth2_scheme)):
    return _load_user(token)


async def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme)):
    """Like get_current_user, but anonymous requests pass through as None."""
    if not token:
        return None
    return _load_user(token)


# Role guard
def require_role(*roles):
    async def _guard(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard
