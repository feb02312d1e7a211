from bson import ObjectId

from conftest import make_account
from database import db

CALL_NOW = {"customer_name": "Alice", "phone_number": "0987654321", "consultation_type": "call_now"}


def schedule(when="2030-03-20T10:00:00+00:00"):
    return {**CALL_NOW, "consultation_type": "schedule", "preferred_time": when}


def create(client, body):
    return client.post("/api/consultations/requests", json=body)


def test_call_now_request_is_pending(client):
    res = create(client, {**CALL_NOW, "email": "Alice@Example.com"})
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["status"] == "pending"
    assert data["email"] == "alice@example.com"
    assert data["call_history"] == []
    assert data["preferred_time"]


def test_scheduled_request_needs_a_time(client):
    assert create(client, {**CALL_NOW, "consultation_type": "schedule"}).status_code == 400
    res = create(client, schedule())
    assert res.status_code == 201
    assert res.json()["data"]["status"] == "scheduled"


def test_request_fields_are_validated(client):
    assert create(client, {**CALL_NOW, "phone_number": "12ab"}).status_code == 400
    assert create(client, {**CALL_NOW, "customer_name": "A"}).status_code == 400
    assert create(client, {**CALL_NOW, "consultation_type": "email_me"}).status_code == 400


def test_listing_is_for_staff_and_filters_by_status(client, customer, manager):
    create(client, CALL_NOW)
    create(client, schedule("2030-03-20T10:00:00+00:00"))
    create(client, schedule("2030-04-01T09:00:00+00:00"))

    url = "/api/consultations/requests"
    assert client.get(url).status_code == 401
    assert client.get(url, headers=customer["headers"]).status_code == 403

    res = client.get(url, params={"status": "scheduled"}, headers=manager["headers"]).json()["data"]
    assert [r["preferred_time"][:10] for r in res] == ["2030-04-01", "2030-03-20"]
    res = client.get(url, params={"status": "pending,scheduled"}, headers=manager["headers"]).json()["data"]
    assert len(res) == 3
    assert client.get(url, params={"status": "lost"}, headers=manager["headers"]).status_code == 400


def test_reschedule_logs_the_call(client, manager):
    request_id = create(client, CALL_NOW).json()["data"]["id"]
    res = client.put(
        f"/api/consultations/requests/{request_id}/reschedule",
        json={"new_preferred_time": "2030-05-05T08:00:00+00:00", "notes": "Customer busy"},
        headers=manager["headers"],
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["status"] == "scheduled"
    assert data["preferred_time"].startswith("2030-05-05")
    entry = data["call_history"][0]
    assert entry["result"] == "rescheduled"
    assert entry["notes"] == "Customer busy"
    assert entry["caller_info"] == {"user_id": manager["id"], "name": "Test Mina"}


def test_call_results_drive_status(client):
    staff = make_account("sam", role="staff")
    url = "/api/consultations/requests/{}/call-result"

    pending = create(client, CALL_NOW).json()["data"]["id"]
    res = client.put(url.format(pending), json={"result": "no_answer"}, headers=staff["headers"])
    assert res.json()["data"]["status"] == "pending"
    res = client.put(url.format(pending), json={"result": "rescheduled"}, headers=staff["headers"])
    assert res.json()["data"]["status"] == "pending_reschedule"
    res = client.put(url.format(pending), json={"result": "success"}, headers=staff["headers"])
    assert res.json()["data"]["status"] == "completed"
    assert [c["result"] for c in res.json()["data"]["call_history"]] == ["no_answer", "rescheduled", "success"]

    # closed requests take no further calls
    assert client.put(url.format(pending), json={"result": "no_answer"}, headers=staff["headers"]).status_code == 400
    assert len(db["consultationrequest"].find_one({"_id": ObjectId(pending)})["call_history"]) == 3

    declined = create(client, CALL_NOW).json()["data"]["id"]
    res = client.put(url.format(declined), json={"result": "rejected"}, headers=staff["headers"])
    assert res.json()["data"]["status"] == "cancelled"

    assert client.put(url.format(declined), json={"result": "maybe"}, headers=staff["headers"]).status_code == 400
    assert client.put(url.format(ObjectId()), json={"result": "success"}, headers=staff["headers"]).status_code == 404
