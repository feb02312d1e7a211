"""
MongoDB access helpers.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; the
/test endpoint reports that state instead of failing at import time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None and DATABASE_NAME else None


def _now():
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    data_dict["created_at"] = _now()
    data_dict["updated_at"] = _now()

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_dict(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [to_dict(v) for v in doc]
    if isinstance(doc, dict):
        out: Dict[str, Any] = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = to_dict(v)
            else:
                out[k] = to_dict(v)
        return out
    return doc


def parse_object_id(value: Any, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        name = f"{label} " if label else ""
        raise HTTPException(status_code=400, detail=f"Invalid {name}id: {value}")


def paginate(page: int, limit: int):
    """Clamp page/limit query values and return (page, limit, skip)."""
    page = max(1, page)
    limit = max(1, min(limit, 100))
    return page, limit, (page - 1) * limit


def ensure_indexes():
    if db is None:
        return
    db["account"].create_index([("username", ASCENDING)], unique=True)
    db["account"].create_index([("email", ASCENDING)], unique=True)
    db["shop"].create_index([("account_id", ASCENDING)], unique=True)
    db["cart"].create_index([("customer_id", ASCENDING)], unique=True)
    db["order"].create_index([("order_code", ASCENDING)], unique=True)
    db["payment"].create_index([("order_code", ASCENDING)], unique=True)
    db["brand"].create_index([("name", ASCENDING)], unique=True)
    db["producttype"].create_index([("name", ASCENDING)], unique=True)
    db["servicereview"].create_index([("booking_id", ASCENDING), ("customer_id", ASCENDING)], unique=True)
    db["consultationrequest"].create_index([("preferred_time", ASCENDING), ("status", ASCENDING)])
    logger.info("Database indexes ensured")
