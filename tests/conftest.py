from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from auth import Principal
from schemas import Product, Service


@pytest.fixture
def db(monkeypatch):
    test_db = mongomock.MongoClient()["local_link_test"]
    monkeypatch.setattr(database, "db", test_db)
    database.ensure_indexes(test_db)
    return test_db


@pytest.fixture
def client(db):
    from main import app
    return TestClient(app)


def bearer(principal: Principal) -> dict:
    return {"Authorization": f"Bearer token-{principal.id}"}


def make_user(db, role: str, name: str, is_active: bool = True) -> Principal:
    doc = {
        "name": name,
        "email": f"{name.lower().replace(' ', '.')}@example.com",
        "phone": "9876543210",
        "role": role,
        "address": {"city": "Pune", "pincode": "411001"},
        "is_active": is_active,
    }
    user_id = str(db["user"].insert_one(doc).inserted_id)
    db["user"].update_one({"_id": doc["_id"]}, {"$set": {"api_token": f"token-{user_id}"}})
    return Principal(id=user_id, role=role, name=doc["name"], email=doc["email"], phone=doc["phone"], address=doc["address"])


def make_vendor(db, name: str, business_type: str = "shop"):
    principal = make_user(db, "vendor", name)
    profile_id = database.create_document("vendorprofile", {
        "user_id": principal.id,
        "business_name": f"{name} Store",
        "business_type": business_type,
        "category": "grocery" if business_type == "shop" else "plumber",
        "service_radius": 5,
        "is_verified": True,
        "is_active": True,
    })
    return principal, profile_id


def make_product(vendor_id: str, stock: int = 10, price: float = 50.0, name: str = "Basmati Rice", **overrides) -> str:
    fields = dict(
        vendor_id=vendor_id,
        name=name,
        description="Long grain rice, 1kg pack",
        category="groceries",
        price=price,
        stock=stock,
        unit="packet",
        images=["https://img.example.com/rice.jpg"],
    )
    fields.update(overrides)
    product = Product(**fields)
    return database.create_document("product", product)


def make_service(vendor_id: str, duration: int = 60, base_price: float = 400.0, **overrides) -> str:
    fields = dict(
        vendor_id=vendor_id,
        title="Tap Repair",
        description="Fix leaking taps and faucets",
        category="plumbing",
        pricing_type="fixed",
        base_price=base_price,
        price_unit="per-visit",
        duration=duration,
    )
    fields.update(overrides)
    return database.create_document("service", Service(**fields))


def future_day(days: int = 30) -> str:
    return (datetime.now(timezone.utc).date() + timedelta(days=days)).isoformat()


@pytest.fixture
def customer(db):
    return make_user(db, "customer", "Asha Rao")


@pytest.fixture
def other_customer(db):
    return make_user(db, "customer", "Ravi Kumar")


@pytest.fixture
def shop(db):
    """(vendor principal, vendor profile id) for a shop."""
    return make_vendor(db, "Sharma")


@pytest.fixture
def other_shop(db):
    return make_vendor(db, "Gupta")


@pytest.fixture
def provider(db):
    """(vendor principal, vendor profile id) for a service provider."""
    return make_vendor(db, "Iyer", business_type="service")
