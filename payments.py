import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

import reconciliation
from config import FRONTEND_URL, PACKAGE_PRICE
from database import db, parse_object_id, to_dict
from errors import error_body, ok
from gateway import PaymentGatewayError
from security import require_role
from shops import get_shop_or_404, shop_for_account

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


class ShopPaymentRequest(BaseModel):
    # the package price is fixed server side; a caller supplied amount must match it
    amount: Optional[int] = Field(None, gt=0)
    description: str = "Shop package"
    shop_id: Optional[str] = None


def _order_code(request: Request) -> Optional[int]:
    try:
        return int(request.query_params.get("orderCode", ""))
    except ValueError:
        return None


def confirm_return(request: Request, success_path: str) -> RedirectResponse:
    """Settle a browser return after checking the outcome with the gateway, then bounce to the frontend."""
    order_code = _order_code(request)
    target = f"{FRONTEND_URL}{success_path}"
    if order_code is None:
        return RedirectResponse(f"{target}?success=false&error=MissingOrderCode", status_code=302)
    try:
        record = reconciliation.handle_return(order_code)
    except PaymentGatewayError as exc:
        logger.error("Could not confirm payment %s with PayOS: %s", order_code, exc)
        return RedirectResponse(f"{target}?success=false&orderCode={order_code}", status_code=302)
    if record is None:
        return RedirectResponse(f"{target}?success=false&error=PaymentNotFound", status_code=302)
    success = "true" if record.get("status") == "completed" else "false"
    return RedirectResponse(
        f"{target}?success={success}&orderCode={order_code}&{record['target_type']}Id={record['target_id']}",
        status_code=302,
    )


def process_webhook(payload: dict):
    try:
        outcome = reconciliation.handle_webhook(payload)
    except reconciliation.InvalidWebhook as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("Error processing PayOS webhook")
        return JSONResponse(status_code=500, content=error_body(f"Error processing webhook: {exc}"))
    return ok({"result": outcome})


@router.post("/payos/create")
def create_shop_payment(payload: ShopPaymentRequest, user=Depends(require_role("shop"))):
    if payload.amount is not None and payload.amount != PACKAGE_PRICE:
        raise HTTPException(status_code=400, detail=f"Package price is {PACKAGE_PRICE}")
    if payload.shop_id:
        shop = get_shop_or_404(str(parse_object_id(payload.shop_id, "shop")))
        if shop["account_id"] != user["id"]:
            raise HTTPException(status_code=403, detail="You do not own this shop")
    else:
        shop = shop_for_account(user["id"])
        if not shop:
            raise HTTPException(status_code=404, detail="Shop not found")

    try:
        link = reconciliation.create_payment_link(
            "shop",
            str(shop["_id"]),
            PACKAGE_PRICE,
            payload.description,
            payload.description,
            buyer_name=shop.get("shop_name"),
            buyer_email=shop.get("contact_email") or user.get("email"),
        )
    except PaymentGatewayError as exc:
        logger.error("Shop package payment for %s failed: %s", shop["_id"], exc)
        raise HTTPException(status_code=500, detail=f"Could not create PayOS payment: {exc}")
    return ok(link, "Payment link created")


@router.get("/payos/return")
def payos_return(request: Request):
    return confirm_return(request, "/payment-success")


@router.post("/payos/webhook")
def payos_webhook(payload: dict = Body(...)):
    return process_webhook(payload)


@router.get("/{order_code}")
def get_payment(order_code: int, user=Depends(require_role("admin"))):
    record = db["payment"].find_one({"order_code": order_code})
    if not record:
        raise HTTPException(status_code=404, detail="Payment not found")
    return ok(to_dict(record))
