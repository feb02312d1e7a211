from bson import ObjectId

from config import PACKAGE_PRICE
from conftest import make_shop
from database import db

SHOP_SIGNUP = {
    "username": "lensworld",
    "email": "owner@example.com",
    "password": "pw123456",
    "first_name": "Lena",
    "last_name": "World",
    "shop_name": "Lens World",
    "shop_address": "9 Aperture Ave",
}


def test_register_shop_creates_account_and_pending_shop(client, outbox):
    res = client.post("/api/shops/register", json=SHOP_SIGNUP)
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["shop"]["approval_status"] == "pending"
    assert data["shop"]["state"] == "pending"
    assert data["account"]["role"] == "shop"
    assert "password_hash" not in data["account"]
    assert outbox[0]["to"] == "owner@example.com"


def test_register_shop_duplicate_account(client, customer):
    res = client.post("/api/shops/register", json={**SHOP_SIGNUP, "username": "alice"})
    assert res.status_code == 400
    assert db["shop"].count_documents({}) == 0


def test_failed_shop_insert_removes_account(client, monkeypatch):
    from pymongo.errors import PyMongoError

    import shops

    def broken_insert(collection, data):
        if collection == "shop":
            raise PyMongoError("write failed")
        return real_create(collection, data)

    real_create = shops.create_document
    monkeypatch.setattr(shops, "create_document", broken_insert)
    res = client.post("/api/shops/register", json=SHOP_SIGNUP)
    assert res.status_code == 400
    assert db["account"].count_documents({"username": "lensworld"}) == 0


def test_approve_and_reject(client, admin):
    shop = make_shop("pendingshop", approval_status="pending", is_active=False, has_active_package=False)

    pending = client.get("/api/shops/pending", headers=admin["headers"]).json()["data"]
    assert [s["id"] for s in pending] == [shop["shop_id"]]

    res = client.patch(f"/api/shops/{shop['shop_id']}/approve", headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["is_active"] is True
    assert res.json()["data"]["state"] == "awaiting_package"

    # approving again is a no-op success
    assert client.patch(f"/api/shops/{shop['shop_id']}/approve", headers=admin["headers"]).status_code == 200

    res = client.patch(f"/api/shops/{shop['shop_id']}/reject", json={"reason": "bad docs"}, headers=admin["headers"])
    data = res.json()["data"]
    assert data["approval_status"] == "rejected"
    assert data["is_active"] is False
    assert data["rejection_reason"] == "bad docs"


def test_approval_is_admin_only(client, shop_owner):
    res = client.patch(f"/api/shops/{shop_owner['shop_id']}/approve", headers=shop_owner["headers"])
    assert res.status_code == 403


def test_shop_detail(client, shop_owner):
    res = client.get(f"/api/shops/{shop_owner['shop_id']}")
    assert res.json()["data"]["account"]["username"] == "snapshop"
    assert client.get(f"/api/shops/{ObjectId()}").status_code == 404
    assert client.get("/api/shops/not-an-id").status_code == 400


def test_shop_package_payment_activates_package(client, payos):
    from conftest import signed_webhook

    owner = make_shop("newshop", has_active_package=False)
    res = client.post("/api/payments/payos/create", json={"amount": 200000}, headers=owner["headers"])
    assert res.status_code == 200
    code = res.json()["data"]["order_code"]
    assert payos.created[0]["amount"] == 200000

    client.post("/api/payments/payos/webhook", json=signed_webhook(code))
    shop = db["shop"].find_one({"_id": ObjectId(owner["shop_id"])})
    assert shop["has_active_package"] is True


def test_package_price_is_fixed(client, payos):
    owner = make_shop("cheapskate", has_active_package=False)
    res = client.post("/api/payments/payos/create", json={"amount": 1}, headers=owner["headers"])
    assert res.status_code == 400
    assert payos.created == []

    res = client.post("/api/payments/payos/create", json={}, headers=owner["headers"])
    assert res.status_code == 200
    assert payos.created[0]["amount"] == PACKAGE_PRICE
