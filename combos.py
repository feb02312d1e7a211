from datetime import datetime, timezone
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import create_document, db, parse_object_id, to_dict
from errors import ok
from schemas import Combo
from security import require_role

router = APIRouter(prefix="/api/combos", tags=["combos"])


class ComboRequest(BaseModel):
    name: str
    products: List[str] = Field(..., min_length=1)
    area: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    combo_type: Literal["basic", "premium", "family"] = "basic"


class ComboUpdate(BaseModel):
    name: Optional[str] = None
    products: Optional[List[str]] = Field(None, min_length=1)
    area: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    combo_type: Optional[Literal["basic", "premium", "family"]] = None


def resolve_products(product_ids: List[str]) -> List[str]:
    """Canonical ids of every product of a combo, in order; 400 if any id does not resolve."""
    products = []
    for product_id in product_ids:
        product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
        if not product:
            raise HTTPException(status_code=400, detail=f"Product not found: {product_id}")
        products.append(str(product["_id"]))
    return products


def get_combo_or_404(combo_id: str) -> dict:
    combo = db["combo"].find_one({"_id": parse_object_id(combo_id, "combo")})
    if not combo:
        raise HTTPException(status_code=404, detail="Combo not found")
    return combo


def serialize_combo(combo: dict) -> dict:
    out = to_dict(combo)
    oids = [ObjectId(p) for p in combo.get("products", []) if ObjectId.is_valid(p)]
    by_id = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}
    out["products"] = [to_dict(by_id[p]) if p in by_id else {"id": p} for p in combo.get("products", [])]
    return out


@router.post("", status_code=201)
def create_combo(payload: ComboRequest, user=Depends(require_role("admin"))):
    payload.products = resolve_products(payload.products)
    combo = Combo(**payload.model_dump(), created_by=user["id"])
    combo_id = create_document("combo", combo)
    return ok(serialize_combo(db["combo"].find_one({"_id": ObjectId(combo_id)})), "Combo created")


@router.get("")
def list_combos(combo_type: Optional[str] = None, area: Optional[str] = None):
    query = {}
    if combo_type:
        query["combo_type"] = combo_type
    if area:
        query["area"] = area
    return ok([serialize_combo(c) for c in db["combo"].find(query).sort("created_at", -1)])


@router.get("/{combo_id}")
def get_combo(combo_id: str):
    return ok(serialize_combo(get_combo_or_404(combo_id)))


@router.put("/{combo_id}")
def update_combo(combo_id: str, payload: ComboUpdate, user=Depends(require_role("admin"))):
    combo = get_combo_or_404(combo_id)
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "products" in updates:
        updates["products"] = resolve_products(updates["products"])
    if updates:
        updates["updated_at"] = datetime.now(timezone.utc)
        db["combo"].update_one({"_id": combo["_id"]}, {"$set": updates})
    return ok(serialize_combo(db["combo"].find_one({"_id": combo["_id"]})), "Combo updated")


@router.delete("/{combo_id}")
def delete_combo(combo_id: str, user=Depends(require_role("admin"))):
    combo = get_combo_or_404(combo_id)
    db["combo"].delete_one({"_id": combo["_id"]})
    return ok(None, "Combo deleted")
