"""
Payment reconciliation.

A payment record is written for every payment link. Its `order_code` is the
correlation id handed to the gateway, so webhooks and return redirects find
the paid order, booking or shop with a direct lookup.

Settling is idempotent: the record moves to "completed" with a conditional
update, and only the call that wins that update applies the side effects.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from config import BACKEND_URL, PAYMENT_LINK_TTL_SECONDS
from database import create_document, db
from gateway import SUCCESS_CODE, PaymentGatewayError, payos
from lifecycle import new_order_code
from schemas import PaymentRecord

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5

SETTLED = "settled"
DUPLICATE = "duplicate"
FAILED = "failed"
IGNORED = "ignored"


class PaymentNotFound(LookupError):
    pass


class InvalidWebhook(Exception):
    """The webhook failed verification or carries no usable order code."""


def _now():
    return datetime.now(timezone.utc)


def _insert_record(target_type: str, target_id: str, amount: int, description: str) -> dict:
    for _ in range(MAX_CODE_ATTEMPTS):
        record = PaymentRecord(
            order_code=new_order_code(),
            target_type=target_type,
            target_id=target_id,
            amount=amount,
            description=description,
        )
        try:
            record_id = create_document("payment", record)
        except DuplicateKeyError:
            continue
        return db["payment"].find_one({"_id": ObjectId(record_id)})
    raise PaymentGatewayError("Could not allocate a unique payment code")


def _mark_target_failed(target_type: str, target_id: str, details: Optional[dict] = None):
    oid = ObjectId(target_id)
    now = _now()
    if target_type == "order":
        db["order"].update_one(
            {"_id": oid, "payment.status": {"$ne": "completed"}},
            {"$set": {"payment.status": "failed", "payment.details": details, "updated_at": now}},
        )
    elif target_type == "booking":
        db["booking"].update_one(
            {"_id": oid, "payment_status": {"$ne": "paid"}},
            {"$set": {"payment_status": "failed", "updated_at": now}},
        )


def create_payment_link(
    target_type: str,
    target_id: str,
    amount: float,
    description: str,
    item_name: str,
    buyer_name: Optional[str] = None,
    buyer_email: Optional[str] = None,
    return_path: str = "/api/payments/payos/return",
) -> dict:
    """
    Register a payment record and ask the gateway for a checkout link.

    On gateway failure the record (and the order/booking payment state) is
    marked failed before PaymentGatewayError propagates.
    """
    amount = int(round(amount))
    record = _insert_record(target_type, target_id, amount, description)
    return_url = f"{BACKEND_URL}{return_path}"
    body = {
        "orderCode": record["order_code"],
        "amount": amount,
        # PayOS limits descriptions to 25 characters
        "description": description[:25],
        "items": [{"name": item_name, "quantity": 1, "price": amount}],
        "cancelUrl": return_url,
        "returnUrl": return_url,
        "buyerName": buyer_name,
        "buyerEmail": buyer_email,
        "expiredAt": int(time.time()) + PAYMENT_LINK_TTL_SECONDS,
    }

    try:
        link = payos.create_payment_link(body)
    except PaymentGatewayError as exc:
        db["payment"].update_one(
            {"_id": record["_id"]},
            {"$set": {"status": "failed", "details": {"error": str(exc)}, "updated_at": _now()}},
        )
        _mark_target_failed(target_type, target_id, {"error": str(exc)})
        raise

    db["payment"].update_one(
        {"_id": record["_id"]},
        {"$set": {
            "checkout_url": link.get("checkoutUrl"),
            "payment_link_id": link.get("paymentLinkId"),
            "updated_at": _now(),
        }},
    )
    logger.info("Payment link %s created for %s %s", record["order_code"], target_type, target_id)
    return {
        "order_code": record["order_code"],
        "checkout_url": link.get("checkoutUrl"),
        "payment_link_id": link.get("paymentLinkId"),
        "amount": amount,
    }


def _apply_success(record: dict, details: dict, now: datetime):
    oid = ObjectId(record["target_id"])
    target_type = record["target_type"]
    transaction_id = details.get("reference") or details.get("paymentLinkId")

    if target_type == "order":
        db["order"].update_one(
            {"_id": oid, "payment.status": {"$ne": "completed"}},
            {"$set": {
                "payment.method": "payos",
                "payment.status": "completed",
                "payment.transaction_id": transaction_id,
                "payment.payment_time": now,
                "payment.details": details,
                "updated_at": now,
            }},
        )
        # only a pending order moves; a further advanced order is left alone
        db["order"].update_one({"_id": oid, "status": "pending"}, {"$set": {"status": "processing", "updated_at": now}})
    elif target_type == "booking":
        db["booking"].update_one({"_id": oid}, {"$set": {"payment_status": "paid", "updated_at": now}})
        db["booking"].update_one({"_id": oid, "status": "pending"}, {"$set": {"status": "confirmed", "updated_at": now}})
    elif target_type == "shop":
        db["shop"].update_one({"_id": oid}, {"$set": {"has_active_package": True, "updated_at": now}})


def settle(order_code: int, paid: bool, details: Optional[dict] = None) -> str:
    """
    Apply a gateway outcome for the payment identified by `order_code`.

    Returns SETTLED, DUPLICATE (already completed, nothing changed) or FAILED.
    Raises PaymentNotFound when no payment record carries the code.
    """
    details = details or {}
    record = db["payment"].find_one({"order_code": order_code})
    if not record:
        raise PaymentNotFound(f"No payment with order code {order_code}")

    now = _now()
    if paid:
        result = db["payment"].update_one(
            {"_id": record["_id"], "status": {"$ne": "completed"}},
            {"$set": {
                "status": "completed",
                "transaction_id": details.get("reference"),
                "details": details,
                "paid_at": now,
                "updated_at": now,
            }},
        )
        if result.modified_count == 0:
            logger.info("Payment %s already settled, ignoring duplicate notification", order_code)
            return DUPLICATE
        _apply_success(record, details, now)
        logger.info("Payment %s settled for %s %s", order_code, record["target_type"], record["target_id"])
        return SETTLED

    result = db["payment"].update_one(
        {"_id": record["_id"], "status": "pending"},
        {"$set": {"status": "failed", "details": details, "updated_at": now}},
    )
    if result.modified_count == 0:
        return DUPLICATE
    _mark_target_failed(record["target_type"], record["target_id"], details)
    logger.info("Payment %s failed for %s %s", order_code, record["target_type"], record["target_id"])
    return FAILED


def handle_webhook(payload: dict) -> str:
    """
    Verify a webhook payload and settle it. Returns IGNORED when the
    signature is valid but no payment record matches.

    Raises InvalidWebhook on a bad signature; nothing is written in that case.
    """
    data = payos.verify_webhook(payload)
    if data is None:
        logger.warning("Rejected PayOS webhook with invalid signature")
        raise InvalidWebhook("Invalid webhook signature")

    try:
        order_code = int(data.get("orderCode"))
    except (TypeError, ValueError):
        raise InvalidWebhook("Webhook payload has no order code")

    paid = str(data.get("code", payload.get("code"))) == SUCCESS_CODE
    try:
        return settle(order_code, paid, data)
    except PaymentNotFound:
        logger.warning("PayOS webhook for unknown order code %s", order_code)
        return IGNORED


def handle_return(order_code: int) -> Optional[dict]:
    """
    Confirm a browser return with the gateway and settle it.

    The redirect query string is not signed, so the status is read back from
    the gateway. Returns the payment record afterwards, or None if unknown.
    """
    record = db["payment"].find_one({"order_code": order_code})
    if not record:
        return None

    info = payos.get_payment_link(order_code)
    status = str(info.get("status", "")).upper()
    if status == "PAID":
        settle(order_code, True, info)
    elif status in ("CANCELLED", "EXPIRED", "FAILED"):
        settle(order_code, False, info)
    return db["payment"].find_one({"order_code": order_code})
