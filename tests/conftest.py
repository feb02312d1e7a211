from datetime import datetime, timedelta, timezone

import mongomock
import pytest

import database

# route modules bind `db` at import time, so the fake must be in place first
database.db = mongomock.MongoClient()["camera_shop_test"]

from fastapi.testclient import TestClient  # noqa: E402

import gateway  # noqa: E402
import mailer  # noqa: E402
import main  # noqa: E402
from database import create_document, db, ensure_indexes  # noqa: E402
from schemas import Account, ProductType, Product, Service, Shop  # noqa: E402
from security import create_access_token, hash_password  # noqa: E402

PASSWORD = "secret123"
CHECKSUM_KEY = "test-checksum-key"


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    ensure_indexes()
    yield


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []

    def fake_send(to, subject, text, html=None):
        sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


class FakePayOS:
    """Stands in for the PayOS HTTP calls; signature checks stay real."""

    def __init__(self):
        self.created = []
        self.statuses = {}
        self.fail_create = False

    def create_payment_link(self, body):
        if self.fail_create:
            raise gateway.PaymentGatewayError("gateway down")
        self.created.append(body)
        return {"checkoutUrl": f"https://pay.example.com/{body['orderCode']}", "paymentLinkId": f"link-{body['orderCode']}"}

    def get_payment_link(self, order_code):
        return {"orderCode": order_code, "status": self.statuses.get(order_code, "PENDING")}


@pytest.fixture(autouse=True)
def payos(monkeypatch):
    fake = FakePayOS()
    monkeypatch.setattr(gateway.payos, "create_payment_link", fake.create_payment_link)
    monkeypatch.setattr(gateway.payos, "get_payment_link", fake.get_payment_link)
    monkeypatch.setattr(gateway.payos, "checksum_key", CHECKSUM_KEY)
    return fake


def signed_webhook(order_code, code="00", **data):
    body = {"orderCode": order_code, "amount": 1000, "description": "test", "reference": f"ref-{order_code}", "code": code, **data}
    return {"code": code, "desc": "success", "success": code == "00", "data": body,
            "signature": gateway.sign_webhook_data(body, CHECKSUM_KEY)}


def make_account(username, role="customer"):
    account = Account(
        username=username,
        email=f"{username}@example.com",
        password_hash=hash_password(PASSWORD),
        first_name="Test",
        last_name=username.title(),
        role=role,
        is_email_verified=True,
    )
    account_id = create_document("account", account)
    token = create_access_token({"sub": account_id, "role": role})
    return {"id": account_id, "username": username, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
def customer():
    return make_account("alice")


@pytest.fixture
def other_customer():
    return make_account("bob")


@pytest.fixture
def admin():
    return make_account("root", role="admin")


@pytest.fixture
def manager():
    return make_account("mina", role="manager")


def make_shop(username, approval_status="approved", is_active=True, has_active_package=True):
    account = make_account(username, role="shop")
    shop = Shop(
        account_id=account["id"],
        shop_name=f"{username.title()} Cameras",
        shop_address="1 Lens Street",
        approval_status=approval_status,
        is_active=is_active,
        has_active_package=has_active_package,
    )
    account["shop_id"] = create_document("shop", shop)
    return account


@pytest.fixture
def shop_owner():
    return make_shop("snapshop")


@pytest.fixture
def category():
    return create_document("producttype", ProductType(name="Mirrorless"))


def make_product(category_id, name="Alpha 7", price=1000.0, stock=5):
    return create_document("product", Product(name=name, model=f"{name}-M", price=price, stock=stock, categories=[category_id]))


@pytest.fixture
def product(category):
    return make_product(category)


def make_service(shop_id, category_id, price=500000, availability="available"):
    return create_document("service", Service(
        shop_id=shop_id, name="Sensor cleaning", price=price, categories=[category_id], availability=availability,
    ))


def booking_payload(service_id, days_ahead=3):
    day = datetime.now(timezone.utc) + timedelta(days=days_ahead)
    return {
        "service_id": service_id,
        "customer_name": "Alice",
        "customer_phone": "0900000000",
        "customer_email": "alice@example.com",
        "service_type": "onsite",
        "address": "2 Shutter Road",
        "booking_date": day.isoformat(),
        "booking_time": "10:00",
    }
