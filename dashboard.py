"""
Admin dashboard statistics.

All figures are read-only aggregates over a (month, year) window that
defaults to the current month.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from database import db, paginate, to_dict
from errors import ok
from lifecycle import REVENUE_ORDER_STATUSES
from security import public_account, require_role

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"], dependencies=[Depends(require_role("admin"))])


def month_window(month: Optional[int], year: Optional[int]):
    """Return (month, year, start, end) with end exclusive. Bounds are naive UTC, as Mongo stores them."""
    now = datetime.now(timezone.utc)
    month = month or now.month
    year = year or now.year
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return month, year, start, end


def _in_window(start, end) -> dict:
    return {"created_at": {"$gte": start, "$lt": end}}


def revenue(extra_match: Optional[dict] = None) -> float:
    match = {"status": {"$in": list(REVENUE_ORDER_STATUSES)}}
    match.update(extra_match or {})
    result = list(db["order"].aggregate([
        {"$match": match},
        {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
    ]))
    return result[0]["total"] if result else 0


@router.get("/overview")
def overview(month: Optional[int] = Query(None, ge=1, le=12), year: Optional[int] = Query(None, ge=2000, le=9998)):
    month, year, start, end = month_window(month, year)
    window = _in_window(start, end)
    data = {
        "total_users": db["account"].count_documents({}),
        "new_users_this_month": db["account"].count_documents(window),
        "total_shops": db["shop"].count_documents({}),
        "new_shops_this_month": db["shop"].count_documents(window),
        "pending_shops": db["shop"].count_documents({"approval_status": "pending"}),
        "total_orders": db["order"].count_documents({}),
        "orders_this_month": db["order"].count_documents(window),
        "total_revenue": revenue(),
        "revenue_this_month": revenue(window),
        "total_services": db["service"].count_documents({}),
        "active_services": db["service"].count_documents({"availability": "available"}),
        "total_bookings": db["booking"].count_documents({}),
        "selected_month": month,
        "selected_year": year,
    }
    return ok(data, "Dashboard overview")


@router.get("/users")
def users_stats(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=9998),
    page: int = 1,
    limit: int = 10,
):
    month, year, start, end = month_window(month, year)
    page, limit, skip = paginate(page, limit)
    total = db["account"].count_documents({})
    users = db["account"].find({}).sort("created_at", -1).skip(skip).limit(limit)
    return ok({
        "users": [public_account(u) for u in users],
        "page": page,
        "pages": -(-total // limit),
        "total": total,
        "stats": {
            "total_users": total,
            "new_users_this_month": db["account"].count_documents(_in_window(start, end)),
            "active_users": db["account"].count_documents({"is_active": True}),
            "inactive_users": db["account"].count_documents({"is_active": False}),
            "selected_month": month,
            "selected_year": year,
        },
    }, "User statistics")


@router.get("/shops")
def shops_stats(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=9998),
    page: int = 1,
    limit: int = 10,
):
    month, year, start, end = month_window(month, year)
    page, limit, skip = paginate(page, limit)
    total = db["shop"].count_documents({})
    shops = db["shop"].find({}).sort("created_at", -1).skip(skip).limit(limit)
    stats = {"total_shops": total, "new_shops_this_month": db["shop"].count_documents(_in_window(start, end))}
    for status in ("approved", "pending", "rejected"):
        stats[f"{status}_shops"] = db["shop"].count_documents({"approval_status": status})
    stats.update({"selected_month": month, "selected_year": year})
    return ok({
        "shops": [to_dict(s) for s in shops],
        "page": page,
        "pages": -(-total // limit),
        "total": total,
        "stats": stats,
    }, "Shop statistics")


@router.get("/revenue")
def revenue_stats(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=9998),
    page: int = 1,
    limit: int = 10,
):
    month, year, start, end = month_window(month, year)
    page, limit, skip = paginate(page, limit)
    window = _in_window(start, end)
    query = {"status": {"$in": list(REVENUE_ORDER_STATUSES)}, **window}
    total = db["order"].count_documents(query)
    orders = db["order"].find(query).sort("created_at", -1).skip(skip).limit(limit)

    by_status = {
        row["_id"]: {"count": row["count"], "amount": row["amount"]}
        for row in db["order"].aggregate([
            {"$match": window},
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "amount": {"$sum": "$total_amount"}}},
        ])
    }
    revenue_this_month = revenue(window)
    return ok({
        "orders": [to_dict(o) for o in orders],
        "page": page,
        "pages": -(-total // limit),
        "total": total,
        "stats": {
            "total_revenue": revenue(),
            "revenue_this_month": revenue_this_month,
            "paid_orders_this_month": total,
            "average_order_value": round(revenue_this_month / total, 2) if total else 0,
            "orders_by_status": by_status,
            "selected_month": month,
            "selected_year": year,
        },
    }, "Revenue statistics")
