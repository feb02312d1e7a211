from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database import create_document, db, parse_object_id, to_dict
from errors import ok
from schemas import ProductType
from security import require_role

router = APIRouter(prefix="/api/product-types", tags=["product-types"])


class ProductTypeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


def validate_categories(category_ids: List[str]) -> List[str]:
    """Every id must resolve to an existing product type."""
    if not category_ids:
        raise HTTPException(status_code=400, detail="At least one category (product type id) is required")
    resolved = []
    for category_id in category_ids:
        oid = parse_object_id(category_id, "product type")
        if not db["producttype"].find_one({"_id": oid}):
            raise HTTPException(status_code=400, detail=f"Product type not found: {category_id}")
        resolved.append(str(oid))
    return resolved


def _get_or_404(type_id: str) -> dict:
    doc = db["producttype"].find_one({"_id": parse_object_id(type_id, "product type")})
    if not doc:
        raise HTTPException(status_code=404, detail="Product type not found")
    return doc


@router.post("", status_code=201)
def create_product_type(payload: ProductType, user=Depends(require_role("admin"))):
    if db["producttype"].find_one({"name": payload.name}):
        raise HTTPException(status_code=400, detail="Product type name already exists")
    type_id = create_document("producttype", payload)
    return ok(to_dict(db["producttype"].find_one({"_id": ObjectId(type_id)})), "Product type created")


@router.get("")
def list_product_types():
    return ok([to_dict(t) for t in db["producttype"].find({}).sort("name", 1)])


@router.get("/{type_id}")
def get_product_type(type_id: str):
    return ok(to_dict(_get_or_404(type_id)))


@router.put("/{type_id}")
def update_product_type(type_id: str, payload: ProductTypeUpdate, user=Depends(require_role("admin"))):
    doc = _get_or_404(type_id)
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "name" in updates and updates["name"] != doc["name"]:
        if db["producttype"].find_one({"name": updates["name"]}):
            raise HTTPException(status_code=400, detail="Product type name already exists")
    if updates:
        updates["updated_at"] = datetime.now(timezone.utc)
        db["producttype"].update_one({"_id": doc["_id"]}, {"$set": updates})
    return ok(to_dict(db["producttype"].find_one({"_id": doc["_id"]})), "Product type updated")


@router.delete("/{type_id}")
def delete_product_type(type_id: str, user=Depends(require_role("admin"))):
    doc = _get_or_404(type_id)
    db["producttype"].delete_one({"_id": doc["_id"]})
    return ok(None, "Product type deleted")
