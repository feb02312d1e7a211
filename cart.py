"""
Shopping cart routes.

Each write replaces the whole item list and bumps `version`, conditional on
the version that was read, so two concurrent edits cannot interleave.
"""
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from database import db, parse_object_id, to_dict
from errors import ok
from lifecycle import cart_totals
from schemas import Cart, CartItem
from security import get_current_user

router = APIRouter(prefix="/api/cart", tags=["cart"])


class AddItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class QuantityRequest(BaseModel):
    quantity: int


class SelectRequest(BaseModel):
    selected: Optional[bool] = None


def empty_cart(customer_id: str) -> dict:
    return {"customer_id": customer_id, "items": [], "total_price": 0, "total_items": 0}


def _product_or_404(product_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _check_stock(product: dict, quantity: int):
    if quantity < 1:
        raise HTTPException(status_code=400, detail="Quantity must be at least 1")
    stock = int(product.get("stock", 0))
    if quantity > stock:
        raise HTTPException(status_code=400, detail=f"Not enough stock for {product['name']}, only {stock} left")


def _cart_or_404(customer_id: str) -> dict:
    cart = db["cart"].find_one({"customer_id": customer_id})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    return cart


def _line_index(items: List[dict], product_id: str) -> int:
    for i, item in enumerate(items):
        if item["product_id"] == product_id:
            return i
    raise HTTPException(status_code=404, detail="Item not found in cart")


def save_items(cart: dict, items: List[dict]) -> dict:
    """Persist a new item list if nobody else wrote the cart since it was read."""
    total_price, total_items = cart_totals(items)
    version = cart.get("version", 0)
    result = db["cart"].update_one(
        {"_id": cart["_id"], "version": version},
        {"$set": {
            "items": items,
            "total_price": total_price,
            "total_items": total_items,
            "version": version + 1,
            "updated_at": datetime.now(timezone.utc),
        }},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Cart was modified concurrently, please retry")
    return db["cart"].find_one({"_id": cart["_id"]})


@router.get("")
def get_cart(user=Depends(get_current_user)):
    cart = db["cart"].find_one({"customer_id": user["id"]})
    if not cart:
        return ok(empty_cart(user["id"]))
    return ok(to_dict(cart))


@router.post("")
def add_item(payload: AddItemRequest, user=Depends(get_current_user)):
    product = _product_or_404(payload.product_id)
    _check_stock(product, payload.quantity)
    product_id = str(product["_id"])

    cart = db["cart"].find_one({"customer_id": user["id"]})
    if not cart:
        line = CartItem(product_id=product_id, name=product["name"], quantity=payload.quantity, price=product["price"])
        total_price, total_items = cart_totals([line.model_dump()])
        doc = Cart(customer_id=user["id"], items=[line], total_price=total_price, total_items=total_items).model_dump()
        now = datetime.now(timezone.utc)
        doc["created_at"] = doc["updated_at"] = now
        try:
            db["cart"].insert_one(doc)
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail="Cart was modified concurrently, please retry")
        return ok(to_dict(db["cart"].find_one({"customer_id": user["id"]})), "Item added to cart")

    items = [dict(i) for i in cart.get("items", [])]
    existing = next((i for i in items if i["product_id"] == product_id), None)
    if existing:
        merged = existing["quantity"] + payload.quantity
        _check_stock(product, merged)
        existing["quantity"] = merged
    else:
        items.append(CartItem(
            product_id=product_id, name=product["name"], quantity=payload.quantity, price=product["price"],
        ).model_dump())
    return ok(to_dict(save_items(cart, items)), "Item added to cart")


@router.put("/select/{product_id}")
def toggle_selected(product_id: str, payload: Optional[SelectRequest] = None, user=Depends(get_current_user)):
    cart = _cart_or_404(user["id"])
    items = [dict(i) for i in cart.get("items", [])]
    line = items[_line_index(items, product_id)]
    if payload is not None and payload.selected is not None:
        line["selected"] = payload.selected
    else:
        line["selected"] = not line.get("selected", True)
    return ok(to_dict(save_items(cart, items)))


@router.put("/{product_id}")
def set_quantity(product_id: str, payload: QuantityRequest, user=Depends(get_current_user)):
    if payload.quantity < 1:
        raise HTTPException(status_code=400, detail="Quantity must be at least 1")
    product = _product_or_404(product_id)
    _check_stock(product, payload.quantity)
    cart = _cart_or_404(user["id"])
    items = [dict(i) for i in cart.get("items", [])]
    items[_line_index(items, product_id)]["quantity"] = payload.quantity
    return ok(to_dict(save_items(cart, items)), "Cart updated")


@router.delete("/{product_id}")
def remove_item(product_id: str, user=Depends(get_current_user)):
    cart = _cart_or_404(user["id"])
    items = [dict(i) for i in cart.get("items", [])]
    del items[_line_index(items, product_id)]
    return ok(to_dict(save_items(cart, items)), "Item removed from cart")


@router.delete("")
def clear_cart(user=Depends(get_current_user)):
    cart = _cart_or_404(user["id"])
    return ok(to_dict(save_items(cart, [])), "Cart cleared")
