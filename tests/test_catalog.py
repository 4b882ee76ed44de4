import pytest
from bson import ObjectId

import catalog
import inventory
from conftest import bearer, make_product, make_service, make_user
from errors import Conflict
from schemas import ProductUpdate

PRODUCT = {
    "name": "Amul Butter",
    "description": "Salted butter, 500g pack",
    "category": "dairy",
    "price": 275,
    "stock": 4,
    "unit": "packet",
    "images": ["https://img.example.com/butter.jpg"],
    "tags": ["butter", "breakfast"],
}

SERVICE = {
    "title": "AC Servicing",
    "description": "Filter cleaning and gas check for split ACs",
    "category": "ac-repair",
    "pricing_type": "fixed",
    "base_price": 599,
    "price_unit": "per-visit",
    "duration": 45,
    "available_slots": [
        {"day": "saturday", "time_slots": [{"start_time": "10:00", "end_time": "14:00"}]},
    ],
}


def test_vendor_profile_lifecycle(client, db):
    vendor = make_user(db, "vendor", "Kapoor")
    headers = bearer(vendor)

    res = client.get("/api/vendors/profile", headers=headers)
    assert res.status_code == 400

    body = {"business_name": "Kapoor Electricals", "business_type": "service", "category": "electrician"}
    res = client.post("/api/vendors/profile", json=body, headers=headers)
    assert res.status_code == 201
    profile = res.json()["data"]["profile"]
    assert profile["user_id"] == vendor.id
    assert profile["phone"] == "9876543210"
    assert profile["is_verified"] is False

    res = client.post("/api/vendors/profile", json=body, headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Vendor profile already exists"

    assert client.get("/api/vendors/profile", headers=headers).json()["data"]["profile"]["id"] == profile["id"]


def test_customers_cannot_manage_catalog(client, customer):
    body = {"business_name": "Home Bakers", "business_type": "shop", "category": "bakery"}
    assert client.post("/api/vendors/profile", json=body, headers=bearer(customer)).status_code == 403
    assert client.post("/api/products", json=PRODUCT, headers=bearer(customer)).status_code == 403


def test_create_product_derives_availability(client, db, shop):
    vendor, vendor_id = shop
    res = client.post("/api/products", json={**PRODUCT, "is_available": False}, headers=bearer(vendor))
    assert res.status_code == 201
    product = res.json()["data"]["product"]
    assert product["vendor_id"] == vendor_id
    assert product["is_available"] is True
    assert product["availability_status"] == "limited-stock"

    res = client.put(f"/api/products/{product['id']}", json={"stock": 40}, headers=bearer(vendor))
    assert res.status_code == 200
    updated = res.json()["data"]["product"]
    assert updated["availability_status"] == "in-stock"
    assert updated["name"] == "Amul Butter"


def test_product_validation(client, shop):
    vendor, _ = shop
    res = client.post("/api/products", json={**PRODUCT, "images": [], "description": "short"}, headers=bearer(vendor))
    assert res.status_code == 400
    fields = {e["field"] for e in res.json()["errors"]}
    assert fields == {"body.images", "body.description"}


def test_only_the_owner_may_edit(client, shop, other_shop):
    _, vendor_id = shop
    stranger, _ = other_shop
    product_id = make_product(vendor_id)

    res = client.put(f"/api/products/{product_id}", json={"price": 1}, headers=bearer(stranger))
    assert res.status_code == 403
    assert client.delete(f"/api/products/{product_id}", headers=bearer(stranger)).status_code == 403
    assert client.put(f"/api/products/{ObjectId()}", json={"price": 1}, headers=bearer(stranger)).status_code == 404


def test_soft_delete_hides_product(client, db, shop):
    vendor, vendor_id = shop
    product_id = make_product(vendor_id)
    assert client.get(f"/api/products/{product_id}").status_code == 200

    res = client.delete(f"/api/products/{product_id}", headers=bearer(vendor))
    assert res.json() == {"success": True, "message": "Product deleted successfully"}
    assert db["product"].find_one({"_id": ObjectId(product_id)})["is_active"] is False
    assert client.get(f"/api/products/{product_id}").status_code == 404
    assert client.get("/api/products").json()["data"]["products"] == []

    mine = client.get("/api/products/vendor/mine", headers=bearer(vendor)).json()["data"]
    assert [p["id"] for p in mine["products"]] == [product_id]


def test_sold_out_product_is_not_served(client, shop):
    _, vendor_id = shop
    product_id = make_product(vendor_id, stock=0)
    res = client.get(f"/api/products/{product_id}")
    assert res.status_code == 404
    assert res.json()["message"] == "Product is not available"


def test_product_search_and_filters(client, shop):
    _, vendor_id = shop
    make_product(vendor_id, name="Basmati Rice", price=120, tags=["rice"])
    make_product(vendor_id, name="Toor Dal", price=140, category="groceries", tags=["pulses"])
    make_product(vendor_id, name="Paneer", price=90, category="dairy")

    def names(**params):
        data = client.get("/api/products", params=params).json()["data"]
        return sorted(p["name"] for p in data["products"])

    assert names(search="dal") == ["Toor Dal"]
    assert names(search="pulses") == ["Toor Dal"]
    assert names(category="dairy") == ["Paneer"]
    assert names(min_price=100, max_price=130) == ["Basmati Rice"]
    assert names(search="(") == []


def test_service_crud_and_availability(client, db, provider):
    vendor, vendor_id = provider
    res = client.post("/api/services", json=SERVICE, headers=bearer(vendor))
    assert res.status_code == 201
    service = res.json()["data"]["service"]
    assert service["vendor_id"] == vendor_id

    url = f"/api/services/{service['id']}/availability"
    res = client.get(url, params={"day": "saturday", "time": "11:30"})
    assert res.json()["data"] == {"available": True, "day": "saturday", "time": "11:30"}
    assert client.get(url, params={"day": "sunday", "time": "11:30"}).json()["data"]["available"] is False
    assert client.get(url, params={"day": "saturday", "time": "25:00"}).status_code == 400

    res = client.put(f"/api/services/{service['id']}", json={"is_available": False}, headers=bearer(vendor))
    assert res.status_code == 200
    assert client.get(url, params={"day": "saturday", "time": "11:30"}).json()["data"]["available"] is False

    assert client.delete(f"/api/services/{service['id']}", headers=bearer(vendor)).status_code == 200
    assert client.get(f"/api/services/{service['id']}").status_code == 404
    assert client.get(url, params={"day": "saturday", "time": "11:30"}).status_code == 404


def test_list_services(client, provider):
    _, vendor_id = provider
    make_service(vendor_id)
    make_service(vendor_id, title="Wall Painting", category="painting")

    data = client.get("/api/services", params={"category": "painting"}).json()["data"]
    assert [s["title"] for s in data["services"]] == ["Wall Painting"]
    data = client.get("/api/services", params={"search": "repair"}).json()["data"]
    assert [s["title"] for s in data["services"]] == ["Tap Repair"]
    assert data["pagination"]["total"] == 1


def test_explicit_null_is_a_validation_error(client, db, shop, provider):
    vendor, vendor_id = shop
    product_id = make_product(vendor_id, stock=10)

    res = client.put(f"/api/products/{product_id}", json={"stock": None}, headers=bearer(vendor))
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation failed"
    assert [e["field"] for e in body["errors"]] == ["stock"]
    assert db["product"].find_one({"_id": ObjectId(product_id)})["stock"] == 10

    provider_vendor, provider_id = provider
    service_id = make_service(provider_id)
    res = client.put(f"/api/services/{service_id}", json={"title": None}, headers=bearer(provider_vendor))
    assert res.status_code == 400
    assert [e["field"] for e in res.json()["errors"]] == ["title"]


def test_update_writes_only_the_changed_fields(client, db, shop):
    vendor, vendor_id = shop
    product_id = make_product(vendor_id, stock=10)
    db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"rating": 4.5}})

    res = client.put(f"/api/products/{product_id}", json={"name": "Renamed Rice"}, headers=bearer(vendor))
    assert res.status_code == 200
    doc = db["product"].find_one({"_id": ObjectId(product_id)})
    assert doc["name"] == "Renamed Rice"
    assert doc["stock"] == 10
    assert doc["rating"] == 4.5


def test_rename_does_not_undo_a_concurrent_reservation(db, shop, monkeypatch):
    vendor, vendor_id = shop
    product_id = make_product(vendor_id, stock=10)
    real_find = catalog.find_by_id
    reserved = []

    def find_then_reserve(collection, item_id):
        doc = real_find(collection, item_id)
        if not reserved:
            reserved.append(item_id)
            inventory.reserve(product_id, 3)
        return doc

    monkeypatch.setattr(catalog, "find_by_id", find_then_reserve)
    with pytest.raises(Conflict):
        catalog.update_product(vendor, product_id, ProductUpdate(name="Renamed Rice"))
    doc = db["product"].find_one({"_id": ObjectId(product_id)})
    assert doc["stock"] == 7
    assert doc["name"] == "Basmati Rice"

    updated = catalog.update_product(vendor, product_id, ProductUpdate(name="Renamed Rice"))
    assert updated["name"] == "Renamed Rice"
    assert updated["stock"] == 7


def test_vendor_lists_own_services(client, provider, other_shop):
    vendor, vendor_id = provider
    stranger, stranger_id = other_shop
    mine = make_service(vendor_id)
    paused = make_service(vendor_id, title="Geyser Install", is_active=False)
    make_service(stranger_id, title="Sofa Cleaning", category="cleaning")

    res = client.get("/api/services/vendor/mine", headers=bearer(vendor))
    assert res.status_code == 200
    data = res.json()["data"]
    assert sorted(s["id"] for s in data["services"]) == sorted([mine, paused])
    assert data["pagination"]["total"] == 2

    res = client.get("/api/services/vendor/mine", params={"limit": 1}, headers=bearer(vendor))
    assert res.json()["data"]["pagination"]["has_next"] is True
    assert client.get("/api/services/vendor/mine", headers=bearer(stranger)).json()["data"]["pagination"]["total"] == 1
