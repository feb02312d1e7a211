from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database import create_document, db, parse_object_id, to_dict
from errors import ok
from schemas import Brand
from security import require_role

router = APIRouter(prefix="/api/brands", tags=["brands"])


class BrandUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


def _get_or_404(brand_id: str) -> dict:
    doc = db["brand"].find_one({"_id": parse_object_id(brand_id, "brand")})
    if not doc:
        raise HTTPException(status_code=404, detail="Brand not found")
    return doc


@router.post("", status_code=201)
def create_brand(payload: Brand, user=Depends(require_role("admin"))):
    if db["brand"].find_one({"name": payload.name}):
        raise HTTPException(status_code=400, detail="Brand name already exists")
    brand_id = create_document("brand", payload)
    return ok(to_dict(db["brand"].find_one({"_id": ObjectId(brand_id)})), "Brand created")


@router.get("")
def list_brands():
    return ok([to_dict(b) for b in db["brand"].find({}).sort("name", 1)])


@router.get("/{brand_id}")
def get_brand(brand_id: str):
    return ok(to_dict(_get_or_404(brand_id)))


@router.put("/{brand_id}")
def update_brand(brand_id: str, payload: BrandUpdate, user=Depends(require_role("admin"))):
    doc = _get_or_404(brand_id)
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "name" in updates and updates["name"] != doc["name"]:
        if db["brand"].find_one({"name": updates["name"]}):
            raise HTTPException(status_code=400, detail="Brand name already exists")
    if updates:
        updates["updated_at"] = datetime.now(timezone.utc)
        db["brand"].update_one({"_id": doc["_id"]}, {"$set": updates})
    return ok(to_dict(db["brand"].find_one({"_id": doc["_id"]})), "Brand updated")


@router.delete("/{brand_id}")
def delete_brand(brand_id: str, user=Depends(require_role("admin"))):
    doc = _get_or_404(brand_id)
    db["brand"].delete_one({"_id": doc["_id"]})
    return ok(None, "Brand deleted")
