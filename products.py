import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import ValidationError

from database import create_document, db, paginate, parse_object_id, to_dict
from errors import ok
from product_types import validate_categories
from schemas import Product
from security import require_role
from shops import require_operational_shop

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

MANAGER_EDITABLE_FIELDS = {"price", "description"}

# query parameter -> product field, matched case-insensitively
CAMERA_FILTERS = ("type", "sensor_type", "lens_mount", "video_resolution", "origin")


def get_product_or_404(product_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def validate_brand(brand_id: Optional[str]):
    if not brand_id:
        return
    if not db["brand"].find_one({"_id": parse_object_id(brand_id, "brand")}):
        raise HTTPException(status_code=400, detail=f"Brand not found: {brand_id}")


def _split_ids(value: Optional[str]):
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


def _range(low, high) -> Dict[str, Any]:
    cond = {}
    if low is not None:
        cond["$gte"] = low
    if high is not None:
        cond["$lte"] = high
    return cond


@router.post("", status_code=201)
def create_product(payload: Product, user=Depends(require_role("admin", "shop"))):
    if user.get("role") == "shop":
        require_operational_shop(user)
    payload.categories = validate_categories(payload.categories)
    validate_brand(payload.brand)
    product_id = create_document("product", payload)
    logger.info("Product %s created by %s", product_id, user.get("username"))
    return ok(to_dict(db["product"].find_one({"_id": ObjectId(product_id)})), "Product created")


@router.get("")
def list_products(
    page: int = 1,
    limit: int = 10,
    keyword: Optional[str] = None,
    brand: Optional[str] = None,
    categories: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_stock: Optional[int] = None,
    max_stock: Optional[int] = None,
    availability_type: Optional[str] = None,
    camera_type: Optional[str] = Query(None, alias="type"),
    sensor_type: Optional[str] = None,
    lens_mount: Optional[str] = None,
    video_resolution: Optional[str] = None,
    origin: Optional[str] = None,
    min_megapixels: Optional[float] = None,
    max_megapixels: Optional[float] = None,
):
    page, limit, skip = paginate(page, limit)
    query: Dict[str, Any] = {}
    if keyword:
        query["$or"] = [
            {"name": {"$regex": re.escape(keyword), "$options": "i"}},
            {"model": {"$regex": re.escape(keyword), "$options": "i"}},
        ]
    brands = _split_ids(brand)
    if brands:
        query["brand"] = {"$in": brands}
    category_ids = _split_ids(categories)
    if category_ids:
        query["categories"] = {"$in": category_ids}
    price = _range(min_price, max_price)
    if price:
        query["price"] = price
    stock = _range(min_stock, max_stock)
    if stock:
        query["stock"] = stock
    megapixels = _range(min_megapixels, max_megapixels)
    if megapixels:
        query["megapixels"] = megapixels
    if availability_type:
        query["availability_type"] = availability_type

    camera_values = {
        "type": camera_type,
        "sensor_type": sensor_type,
        "lens_mount": lens_mount,
        "video_resolution": video_resolution,
        "origin": origin,
    }
    for field in CAMERA_FILTERS:
        if camera_values[field]:
            query[field] = {"$regex": f"^{re.escape(camera_values[field])}$", "$options": "i"}

    total = db["product"].count_documents(query)
    products = db["product"].find(query).sort("created_at", -1).skip(skip).limit(limit)
    return ok([to_dict(p) for p in products], page=page, pages=-(-total // limit), total=total)


@router.get("/{product_id}")
def get_product(product_id: str):
    product = get_product_or_404(product_id)
    out = to_dict(product)
    if product.get("brand"):
        brand = db["brand"].find_one({"_id": parse_object_id(product["brand"], "brand")})
        out["brand_info"] = to_dict(brand) if brand else None
    category_oids = [parse_object_id(c, "product type") for c in product.get("categories", [])]
    out["category_info"] = [to_dict(t) for t in db["producttype"].find({"_id": {"$in": category_oids}})]
    return ok(out)


@router.put("/{product_id}")
def update_product(
    product_id: str,
    updates: dict = Body(...),
    user=Depends(require_role("admin", "manager")),
):
    product = get_product_or_404(product_id)
    updates = {k: v for k, v in updates.items() if k not in ("_id", "id", "created_at", "updated_at")}

    if user.get("role") == "manager":
        extra = set(updates) - MANAGER_EDITABLE_FIELDS
        if extra:
            raise HTTPException(status_code=403, detail="Managers may only update price and description")
        if not updates:
            raise HTTPException(status_code=400, detail="Provide price or description to update")

    current = {k: v for k, v in product.items() if k in Product.model_fields}
    try:
        merged = Product(**{**current, **updates})
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise HTTPException(status_code=400, detail=f"{field}: {first.get('msg')}")

    if "categories" in updates:
        merged.categories = validate_categories(merged.categories)
    if "brand" in updates:
        validate_brand(merged.brand)

    changes = {k: getattr(merged, k) for k in updates if k in Product.model_fields}
    if changes:
        changes["updated_at"] = datetime.now(timezone.utc)
        db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    return ok(to_dict(db["product"].find_one({"_id": product["_id"]})), "Product updated")


@router.delete("/{product_id}")
def delete_product(product_id: str, user=Depends(require_role("admin"))):
    product = get_product_or_404(product_id)
    combos = list(db["combo"].find({"products": str(product["_id"])}, {"name": 1}))
    if combos:
        names = ", ".join(c["name"] for c in combos)
        raise HTTPException(status_code=400, detail=f"Product is used in combos: {names}")
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by %s", product_id, user.get("username"))
    return ok(None, "Product deleted")
