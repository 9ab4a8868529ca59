import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import main
import payments
import storage
from database import create_document, get_db, get_public_db
from errors import NotFound
from schemas import CustomerTier, Product


class FakeGateway(payments.RazorpayGateway):
    """Razorpay stand-in: canned gateway orders, real signature routine."""

    def __init__(self):
        super().__init__("rzp_test_key", "rzp_test_secret")
        self.created = []

    def create_order(self, amount, receipt, notes):
        intent = {
            "id": f"order_test{len(self.created) + 1}",
            "amount": amount,
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes,
        }
        self.created.append(intent)
        return intent


class MemoryImageStore:
    def __init__(self):
        self.files = {}

    def upload(self, file_name, data, content_type="image/jpeg"):
        name = storage.unique_name(file_name)
        self.files[name] = (data, content_type)
        return {"path": name, "url": storage.public_url(name)}

    def open(self, name):
        if name not in self.files:
            raise NotFound("Image not found")
        return self.files[name]


@pytest.fixture
def db():
    return mongomock.MongoClient().get_database(f"shop_{uuid.uuid4().hex[:8]}")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def image_store():
    return MemoryImageStore()


@pytest.fixture
def client(db, gateway, image_store):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_public_db] = lambda: db
    main.app.dependency_overrides[main.get_gateway] = lambda: gateway
    main.app.dependency_overrides[main.get_image_store] = lambda: image_store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Register a customer; returns {"id", "headers", "tier"}."""
    def _make(email=None, tier=CustomerTier.individual, is_admin=False):
        email = email or f"user_{uuid.uuid4().hex[:6]}@example.com"
        extra = {"business_name": "Acme Traders", "tax_id": "29ABCDE1234F1Z5"} if tier == CustomerTier.business else {}
        result = auth.register(db, email, "secret123", "Test User", "9999999999", customer_tier=tier, **extra)
        user_id = result["user"]["id"]
        if is_admin:
            db["profiles"].update_one({"email": email}, {"$set": {"is_admin": True}})
        token = result["session"]["access_token"]
        return {"id": user_id, "email": email, "tier": tier, "headers": {"Authorization": f"Bearer {token}"}}
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="A2 Ghee", price=100.0, **fields):
        data = {"name": name, "slug": fields.pop("slug", name.lower().replace(" ", "-")),
                "category": "dairy", "price": price, **fields}
        return create_document(db, "products", Product(**data))
    return _make


@pytest.fixture
def make_address(db):
    def _make(user_id, is_default=False, city="Pune"):
        return create_document(db, "addresses", {
            "user_id": user_id, "label": "Home", "line1": "12 MG Road", "line2": None,
            "city": city, "state": "MH", "postal_code": "411001", "is_default": is_default,
        })
    return _make
