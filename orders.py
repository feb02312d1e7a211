import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

import reconciliation
from database import create_document, db, paginate, parse_object_id, to_dict
from errors import ok
from gateway import PaymentGatewayError
from lifecycle import TransitionError, cart_totals, check_order_transition, new_order_code
from schemas import CustomerInfo, Order, OrderItem, OrderStatus
from security import get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

MAX_CODE_ATTEMPTS = 5


class OrderRequest(BaseModel):
    pickup_time: datetime
    note: Optional[str] = None
    combo_id: Optional[str] = None
    customer_info: Optional[CustomerInfo] = None


class StatusRequest(BaseModel):
    status: OrderStatus


def _now():
    return datetime.now(timezone.utc)


def get_order_or_404(order_id: str) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order")})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _ensure_owner_or_admin(order: dict, user: dict):
    if user.get("role") != "admin" and order.get("customer_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")


def insert_order(fields: dict) -> dict:
    """Insert an order under a fresh random code, retrying on a code collision."""
    for _ in range(MAX_CODE_ATTEMPTS):
        order = Order(order_code=new_order_code(), **fields)
        try:
            order_id = create_document("order", order)
        except DuplicateKeyError:
            logger.warning("Order code collision, retrying")
            continue
        return db["order"].find_one({"_id": ObjectId(order_id)})
    raise HTTPException(status_code=500, detail="Could not allocate an order code")


def _items_from_combo(combo_id: str):
    combo = db["combo"].find_one({"_id": parse_object_id(combo_id, "combo")})
    if not combo:
        raise HTTPException(status_code=404, detail="Combo not found")
    items: List[OrderItem] = []
    for product_id in combo.get("products", []):
        product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
        if not product:
            raise HTTPException(status_code=400, detail=f"Product not found: {product_id}")
        items.append(OrderItem(product_id=str(product["_id"]), name=product["name"], price=product["price"], quantity=1))
    return combo, items


def _items_from_cart(cart: dict) -> List[OrderItem]:
    items = []
    for line in cart["items"]:
        product = db["product"].find_one({"_id": parse_object_id(line["product_id"], "product")})
        if not product:
            raise HTTPException(status_code=400, detail=f"Product not found: {line['product_id']}")
        items.append(OrderItem(product_id=line["product_id"], name=product["name"], price=line["price"], quantity=line["quantity"]))
    return items


@router.post("", status_code=201)
def create_order(payload: OrderRequest, user=Depends(get_current_user)):
    customer_info = payload.customer_info or CustomerInfo(username=user["username"], email=user["email"])
    base = {
        "customer_id": user["id"],
        "customer_info": customer_info,
        "pickup_time": payload.pickup_time,
        "note": payload.note,
    }

    if payload.combo_id:
        combo, items = _items_from_combo(payload.combo_id)
        order = insert_order({**base, "combo_id": str(combo["_id"]), "items": items, "total_amount": combo["price"]})
        logger.info("Combo order %s created for %s", order["order_code"], user["username"])
        return ok(to_dict(order), "Combo order created")

    cart = db["cart"].find_one({"customer_id": user["id"]})
    if not cart or not cart.get("items"):
        raise HTTPException(status_code=404, detail="Cart not found")
    items = _items_from_cart(cart)
    total_amount, _ = cart_totals(i.model_dump() for i in items)
    order = insert_order({**base, "items": items, "total_amount": total_amount})

    version = cart.get("version", 0)
    cleared = db["cart"].update_one(
        {"_id": cart["_id"], "version": version},
        {"$set": {"items": [], "total_price": 0, "total_items": 0, "version": version + 1, "updated_at": _now()}},
    )
    if cleared.matched_count == 0:
        # the cart changed while the order was being built; undo the order
        db["order"].delete_one({"_id": order["_id"]})
        raise HTTPException(status_code=409, detail="Cart was modified concurrently, please retry")

    logger.info("Order %s created for %s", order["order_code"], user["username"])
    return ok(to_dict(order), "Order created")


@router.get("")
def list_orders(page: int = 1, limit: int = 10, status: Optional[str] = None, user=Depends(require_role("admin"))):
    page, limit, skip = paginate(page, limit)
    query = {"status": status} if status else {}
    total = db["order"].count_documents(query)
    orders = db["order"].find(query).sort("created_at", -1).skip(skip).limit(limit)
    return ok([to_dict(o) for o in orders], page=page, pages=-(-total // limit), total=total)


@router.get("/status/{status}")
def orders_by_status(status: OrderStatus, page: int = 1, limit: int = 10, user=Depends(require_role("admin"))):
    return list_orders(page=page, limit=limit, status=status, user=user)


@router.get("/customer/{customer_id}")
def customer_orders(customer_id: str, user=Depends(get_current_user)):
    if user.get("role") != "admin" and user["id"] != customer_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    orders = db["order"].find({"customer_id": customer_id}).sort("created_at", -1)
    return ok([to_dict(o) for o in orders])


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    order = get_order_or_404(order_id)
    _ensure_owner_or_admin(order, user)
    return ok(to_dict(order))


@router.patch("/{order_id}/status")
def update_order_status(order_id: str, payload: StatusRequest, user=Depends(require_role("admin"))):
    order = get_order_or_404(order_id)
    try:
        check_order_transition(order["status"], payload.status)
    except TransitionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    result = db["order"].update_one(
        {"_id": order["_id"], "status": order["status"]},
        {"$set": {"status": payload.status, "updated_at": _now()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order status changed concurrently, please retry")
    logger.info("Order %s: %s -> %s", order["order_code"], order["status"], payload.status)
    return ok(to_dict(db["order"].find_one({"_id": order["_id"]})), "Order status updated")


@router.patch("/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user)):
    order = get_order_or_404(order_id)
    _ensure_owner_or_admin(order, user)
    if order["status"] == "completed":
        raise HTTPException(status_code=400, detail="Cannot cancel a completed order")
    if order["status"] == "cancelled":
        raise HTTPException(status_code=400, detail="Order is already cancelled")

    result = db["order"].update_one(
        {"_id": order["_id"], "status": order["status"]},
        {"$set": {"status": "cancelled", "updated_at": _now()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order status changed concurrently, please retry")
    return ok(to_dict(db["order"].find_one({"_id": order["_id"]})), "Order cancelled")


@router.post("/{order_id}/payment")
def create_order_payment(order_id: str, user=Depends(get_current_user)):
    order = get_order_or_404(order_id)
    if order.get("customer_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    if order["status"] != "pending":
        raise HTTPException(status_code=400, detail=f"Cannot pay for an order in status {order['status']}")
    if order.get("payment", {}).get("status") == "completed":
        raise HTTPException(status_code=400, detail="Order is already paid")

    try:
        link = reconciliation.create_payment_link(
            "order",
            str(order["_id"]),
            order["total_amount"],
            f"Order {order['order_code']}",
            f"Order {order['order_code']}",
            buyer_name=order.get("customer_info", {}).get("username"),
            buyer_email=order.get("customer_info", {}).get("email"),
        )
    except PaymentGatewayError as exc:
        logger.error("Payment link for order %s failed: %s", order["order_code"], exc)
        raise HTTPException(status_code=500, detail="Could not create payment link")

    db["order"].update_one(
        {"_id": order["_id"], "payment.status": {"$ne": "completed"}},
        {"$set": {"payment.method": "payos", "payment.status": "pending", "updated_at": _now()}},
    )
    return ok(link, "Payment link created")
