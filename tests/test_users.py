from datetime import datetime, timedelta, timezone

from bson import ObjectId

from conftest import PASSWORD
from database import db
from users import ensure_default_admin

NEW_USER = {
    "username": "carol",
    "email": "Carol@Example.com",
    "password": "pw123456",
    "first_name": "Carol",
    "last_name": "Lens",
}


def test_register_sends_verification_and_hides_secrets(client, outbox):
    res = client.post("/api/users/register", json=NEW_USER)
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["data"]["email"] == "carol@example.com"
    assert "password_hash" not in body["data"]
    assert "email_verification_token" not in body["data"]
    assert body["data"]["token"]

    stored = db["account"].find_one({"username": "carol"})
    assert stored["is_email_verified"] is False
    assert outbox and outbox[0]["to"] == "carol@example.com"
    assert stored["email_verification_token"] in outbox[0]["text"]


def test_register_duplicate_is_rejected(client):
    client.post("/api/users/register", json=NEW_USER)
    res = client.post("/api/users/register", json={**NEW_USER, "username": "carol2"})
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Account already exists"}


def test_login_requires_verified_email(client):
    client.post("/api/users/register", json=NEW_USER)
    res = client.post("/api/users/login", json={"username_or_email": "carol", "password": "pw123456"})
    assert res.status_code == 401

    token = db["account"].find_one({"username": "carol"})["email_verification_token"]
    assert client.get(f"/api/users/verify-email/{token}").status_code == 200

    res = client.post("/api/users/login", json={"username_or_email": "carol@example.com", "password": "pw123456"})
    assert res.status_code == 200
    assert res.json()["data"]["token"]


def test_verify_email_twice_conflicts(client):
    client.post("/api/users/register", json=NEW_USER)
    account = db["account"].find_one({"username": "carol"})
    token = account["email_verification_token"]
    client.get(f"/api/users/verify-email/{token}")
    db["account"].update_one({"_id": account["_id"]}, {"$set": {"email_verification_token": token}})
    assert client.get(f"/api/users/verify-email/{token}").status_code == 409


def test_login_wrong_password(client, customer):
    res = client.post("/api/users/login", json={"username_or_email": "alice", "password": "nope"})
    assert res.status_code == 401


def test_password_reset_flow(client, customer, outbox):
    assert client.post("/api/users/forgot-password", json={"email": "alice@example.com"}).status_code == 200
    code = db["account"].find_one({"username": "alice"})["verification_code"]
    assert len(code) == 6 and code in outbox[-1]["text"]

    wrong = "000000" if code != "000000" else "111111"
    assert client.post("/api/users/verify-code", json={"email": "alice@example.com", "code": wrong}).status_code == 400
    assert client.post("/api/users/verify-code", json={"email": "alice@example.com", "code": code}).status_code == 200

    res = client.post("/api/users/reset-password", json={
        "email": "alice@example.com", "verification_code": code, "new_password": "fresh-pass",
    })
    assert res.status_code == 200
    login = client.post("/api/users/login", json={"username_or_email": "alice", "password": "fresh-pass"})
    assert login.status_code == 200
    # single use
    res = client.post("/api/users/reset-password", json={
        "email": "alice@example.com", "verification_code": code, "new_password": "again",
    })
    assert res.status_code == 400


def test_expired_reset_code(client, customer):
    db["account"].update_one(
        {"_id": ObjectId(customer["id"])},
        {"$set": {"verification_code": "123456", "verification_code_expires": datetime.now(timezone.utc) - timedelta(seconds=1)}},
    )
    res = client.post("/api/users/verify-code", json={"email": "alice@example.com", "code": "123456"})
    assert res.status_code == 400


def test_forgot_password_mail_failure(client, customer, monkeypatch):
    import mailer

    monkeypatch.setattr(mailer, "send_email", lambda *a, **k: False)
    res = client.post("/api/users/forgot-password", json={"email": "alice@example.com"})
    assert res.status_code == 500


def test_change_password(client, customer):
    res = client.post("/api/users/change-password", json={"old_password": "wrong", "new_password": "x1"}, headers=customer["headers"])
    assert res.status_code == 401
    res = client.post("/api/users/change-password", json={"old_password": PASSWORD, "new_password": "x1"}, headers=customer["headers"])
    assert res.status_code == 200


def test_profile_and_me(client, customer, other_customer):
    res = client.put("/api/users/update-profile", json={"phone": "0911"}, headers=customer["headers"])
    assert res.json()["data"]["phone"] == "0911"
    res = client.put("/api/users/update-profile", json={"username": "bob"}, headers=customer["headers"])
    assert res.status_code == 400
    me = client.get("/api/users/me", headers=customer["headers"]).json()["data"]
    assert me["username"] == "alice" and me["phone"] == "0911"


def test_list_users_is_admin_only(client, customer, admin):
    assert client.get("/api/users", headers=customer["headers"]).status_code == 403
    assert client.get("/api/users").status_code == 401
    res = client.get("/api/users", headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["total"] == 2


def test_default_admin_created_once():
    ensure_default_admin()
    ensure_default_admin()
    assert db["account"].count_documents({"role": "admin"}) == 1


def test_bad_token_is_rejected(client):
    res = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json()["success"] is False
