from datetime import datetime, timezone

from bson import ObjectId

from conftest import make_shop
from dashboard import month_window
from database import create_document, db


def add_order(customer, status, amount, created_at=None):
    order_id = create_document("order", {
        "order_code": 40000000 + db["order"].count_documents({}),
        "customer_id": customer["id"],
        "items": [],
        "total_amount": amount,
        "status": status,
        "customer_info": {"username": "alice", "email": "alice@example.com"},
        "payment": {"method": "cod", "status": "pending"},
        "pickup_time": datetime.now(timezone.utc),
    })
    if created_at:
        db["order"].update_one({"_id": ObjectId(order_id)}, {"$set": {"created_at": created_at}})
    return order_id


def test_month_window_wraps_year():
    month, year, start, end = month_window(12, 2024)
    assert (month, year) == (12, 2024)
    assert start == datetime(2024, 12, 1)
    assert end == datetime(2025, 1, 1)


def test_dashboard_is_admin_only(client, customer):
    assert client.get("/api/dashboard/overview", headers=customer["headers"]).status_code == 403
    assert client.get("/api/dashboard/overview").status_code == 401


def test_overview_counts_revenue_statuses(client, admin, customer):
    add_order(customer, "pending", 100)
    add_order(customer, "processing", 200)
    add_order(customer, "completed", 300)
    add_order(customer, "cancelled", 400)
    add_order(customer, "completed", 1000, created_at=datetime(2020, 1, 15))
    make_shop("pendingone", approval_status="pending", is_active=False)

    data = client.get("/api/dashboard/overview", headers=admin["headers"]).json()["data"]
    assert data["total_orders"] == 5
    assert data["orders_this_month"] == 4
    assert data["total_revenue"] == 1500
    assert data["revenue_this_month"] == 500
    assert data["pending_shops"] == 1
    assert data["total_users"] == 3


def test_revenue_for_selected_month(client, admin, customer):
    add_order(customer, "completed", 1000, created_at=datetime(2020, 1, 15))
    add_order(customer, "accepted", 50, created_at=datetime(2020, 1, 31, 23, 59))
    add_order(customer, "completed", 70, created_at=datetime(2020, 2, 1))

    res = client.get("/api/dashboard/revenue", params={"month": 1, "year": 2020}, headers=admin["headers"]).json()["data"]
    assert res["total"] == 2
    assert res["stats"]["revenue_this_month"] == 1050
    assert res["stats"]["orders_by_status"]["completed"]["count"] == 1
    assert client.get("/api/dashboard/revenue", params={"month": 13}, headers=admin["headers"]).status_code == 400
    res = client.get("/api/dashboard/revenue", params={"month": 12, "year": 9999}, headers=admin["headers"])
    assert res.status_code == 400


def test_user_and_shop_stats(client, admin, customer, shop_owner):
    users = client.get("/api/dashboard/users", params={"limit": 2}, headers=admin["headers"]).json()["data"]
    assert users["total"] == 3 and users["pages"] == 2
    assert all("password_hash" not in u for u in users["users"])

    shops = client.get("/api/dashboard/shops", headers=admin["headers"]).json()["data"]
    assert shops["stats"]["approved_shops"] == 1
    assert shops["stats"]["pending_shops"] == 0
