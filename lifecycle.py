"""
Status transition tables and the small pure rules built around them.

Nothing here touches the database, so route handlers and tests share the
same definitions of what a legal move is.
"""
import secrets
from datetime import date, datetime, timezone
from typing import Dict, FrozenSet, Iterable, Optional, Union
from zoneinfo import ZoneInfo

from config import BUSINESS_TIMEZONE, DEPOSIT_RATE

BUSINESS_TZ = ZoneInfo(BUSINESS_TIMEZONE)

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"accepted", "cancelled"}),
    "accepted": frozenset({"deliverying", "cancelled"}),
    "deliverying": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

BOOKING_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

SHOP_APPROVAL_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"approved", "rejected"}),
    "approved": frozenset({"approved", "rejected"}),
    "rejected": frozenset({"approved", "rejected"}),
}

# status a consultation moves to after a call; no_answer leaves it where it is
CONSULTATION_CALL_OUTCOMES: Dict[str, str] = {
    "success": "completed",
    "rescheduled": "pending_reschedule",
    "rejected": "cancelled",
}

CLOSED_CONSULTATION_STATUSES = frozenset({"completed", "cancelled"})

# Orders in these states count as revenue
REVENUE_ORDER_STATUSES = ("processing", "accepted", "deliverying", "completed")


class TransitionError(ValueError):
    def __init__(self, entity: str, source: str, target: str):
        self.entity = entity
        self.source = source
        self.target = target
        super().__init__(f"Cannot change {entity} status from {source} to {target}")


def _check(table: Dict[str, FrozenSet[str]], entity: str, source: str, target: str):
    if target not in table:
        raise TransitionError(entity, source, target)
    if target not in table.get(source, frozenset()):
        raise TransitionError(entity, source, target)


def check_order_transition(source: str, target: str):
    _check(ORDER_TRANSITIONS, "order", source, target)


def check_booking_transition(
    source: str, target: str, booking_date: Union[date, datetime], today: Optional[date] = None
):
    _check(BOOKING_TRANSITIONS, "booking", source, target)
    today = today or business_date(datetime.now(timezone.utc))
    if target == "completed" and today < business_date(booking_date):
        raise ValueError("Cannot complete a booking before its booking date")


def check_shop_transition(source: str, target: str):
    _check(SHOP_APPROVAL_TRANSITIONS, "shop", source, target)


def business_date(value: Union[date, datetime]) -> date:
    """Calendar date in the shop timezone. Naive datetimes are UTC, as Mongo returns them."""
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(BUSINESS_TZ).date()


def shop_state(shop: dict) -> str:
    """Collapse the shop flags into a single state name."""
    approval = shop.get("approval_status", "pending")
    if approval == "pending":
        return "pending"
    if approval == "rejected":
        return "rejected"
    if not shop.get("is_active"):
        return "suspended"
    if not shop.get("has_active_package"):
        return "awaiting_package"
    return "operational"


def cart_totals(items: Iterable[dict]):
    items = list(items)
    total_items = sum(int(i["quantity"]) for i in items)
    total_price = sum(float(i["price"]) * int(i["quantity"]) for i in items)
    return round(total_price, 2), total_items


def deposit_for(price: float) -> int:
    # round() in Python is banker's rounding; deposits round half up
    return int(float(price) * DEPOSIT_RATE + 0.5)


def new_order_code() -> int:
    """Random 8 digit code. Uniqueness is enforced by the unique index on insert."""
    return 10_000_000 + secrets.randbelow(90_000_000)
