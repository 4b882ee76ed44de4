"""
Vendor profiles, products and services.

Vendor-side management of what the lifecycle modules sell and book. Products
and services are never hard-deleted; DELETE only clears `is_active`.
"""
import logging
import re
from typing import List, Optional, Tuple

from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from auth import Principal, get_vendor_profile
from database import create_document, find_by_id, get_db, paginate, serialize, utcnow
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from schemas import (
    Product,
    ProductCreate,
    ProductUpdate,
    Service,
    ServiceCreate,
    ServiceUpdate,
    VendorProfile,
    VendorProfileCreate,
)

logger = logging.getLogger(__name__)


# Vendor profiles

def create_vendor_profile(principal: Principal, payload: VendorProfileCreate) -> dict:
    if get_db()["vendorprofile"].find_one({"user_id": principal.id}):
        raise Conflict("Vendor profile already exists")
    profile = VendorProfile(
        user_id=principal.id,
        phone=principal.phone,
        email=principal.email,
        address=principal.address,
        **payload.model_dump(),
    )
    try:
        profile_id = create_document("vendorprofile", profile)
    except DuplicateKeyError:
        raise Conflict("Vendor profile already exists")
    logger.info("Vendor profile %s created for user %s", profile_id, principal.id)
    return serialize(find_by_id("vendorprofile", profile_id))


def get_own_vendor_profile(principal: Principal) -> dict:
    return serialize(get_vendor_profile(principal))


# Shared

def _owned(collection: str, principal: Principal, item_id: str, label: str) -> dict:
    profile = get_vendor_profile(principal)
    doc = find_by_id(collection, item_id)
    if not doc:
        raise NotFound(f"{label} not found")
    if doc["vendor_id"] != str(profile["_id"]):
        raise Forbidden(f"Not authorized to modify this {label.lower()}")
    return doc


def _apply(collection: str, doc: dict, changes: dict, model, derived: Tuple[str, ...] = ()) -> dict:
    """Validate `changes` against the stored document and write only those paths.

    Derived fields are written alongside them. When they depend on stock the
    caller did not touch, the write only applies while stock is unchanged.
    """
    try:
        validated = model.model_validate({**doc, **changes})
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        raise ValidationFailed(errors=errors)

    data = validated.model_dump()
    fields = {key: data[key] for key in list(changes) + list(derived)}
    query = {"_id": doc["_id"]}
    if derived and "stock" not in changes:
        query["stock"] = doc.get("stock", 0)
    result = get_db()[collection].update_one(query, {"$set": {**fields, "updated_at": utcnow()}})
    if result.matched_count == 0:
        raise Conflict("Stock changed while updating, please retry")
    return serialize(find_by_id(collection, str(doc["_id"])))


def _soft_delete(collection: str, doc: dict) -> None:
    get_db()[collection].update_one({"_id": doc["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})


def _list_own(collection: str, principal: Principal, page: int, limit: int) -> Tuple[List[dict], dict]:
    # Includes soft-deleted and inactive entries; the vendor still manages them.
    profile = get_vendor_profile(principal)
    docs, pagination = paginate(collection, {"vendor_id": str(profile["_id"])}, page, limit)
    return [serialize(d) for d in docs], pagination


# Products

def create_product(principal: Principal, payload: ProductCreate) -> dict:
    profile = get_vendor_profile(principal)
    product = Product(vendor_id=str(profile["_id"]), **payload.model_dump())
    product_id = create_document("product", product)
    logger.info("Product %s created by vendor %s", product_id, product.vendor_id)
    return serialize(find_by_id("product", product_id))


def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    page: int = 1,
    limit: int = 12,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[dict], dict]:
    query = {"is_active": True}
    if category:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    price = {}
    if min_price is not None:
        price["$gte"] = float(min_price)
    if max_price is not None:
        price["$lte"] = float(max_price)
    if price:
        query["price"] = price
    docs, pagination = paginate("product", query, page, limit, sort_by, sort_order)
    return [serialize(d) for d in docs], pagination


def list_vendor_products(principal: Principal, page: int = 1, limit: int = 10) -> Tuple[List[dict], dict]:
    return _list_own("product", principal, page, limit)


def get_product(product_id: str) -> dict:
    doc = find_by_id("product", product_id)
    if not doc or not doc.get("is_active", True):
        raise NotFound("Product not found")
    if not doc.get("is_available") or doc.get("status") != "active":
        raise NotFound("Product is not available")
    return serialize(doc)


def update_product(principal: Principal, product_id: str, payload: ProductUpdate) -> dict:
    doc = _owned("product", principal, product_id, "Product")
    changes = payload.model_dump(exclude_unset=True)
    return _apply("product", doc, changes, Product, derived=("is_available", "availability_status"))


def delete_product(principal: Principal, product_id: str) -> None:
    doc = _owned("product", principal, product_id, "Product")
    _soft_delete("product", doc)
    logger.info("Product %s deactivated", product_id)


# Services

def create_service(principal: Principal, payload: ServiceCreate) -> dict:
    profile = get_vendor_profile(principal)
    service = Service(vendor_id=str(profile["_id"]), **payload.model_dump())
    service_id = create_document("service", service)
    logger.info("Service %s created by vendor %s", service_id, service.vendor_id)
    return serialize(find_by_id("service", service_id))


def list_services(
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 12,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[dict], dict]:
    query = {"is_active": True}
    if category:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    docs, pagination = paginate("service", query, page, limit, sort_by, sort_order)
    return [serialize(d) for d in docs], pagination


def list_vendor_services(principal: Principal, page: int = 1, limit: int = 10) -> Tuple[List[dict], dict]:
    return _list_own("service", principal, page, limit)


def get_service(service_id: str) -> dict:
    doc = find_by_id("service", service_id)
    if not doc or not doc.get("is_active", True):
        raise NotFound("Service not found")
    return serialize(doc)


def service_available_at(service_id: str, day: str, at: str) -> bool:
    doc = find_by_id("service", service_id)
    if not doc or not doc.get("is_active", True):
        raise NotFound("Service not found")
    return Service.model_validate(doc).is_available_at(day, at)


def update_service(principal: Principal, service_id: str, payload: ServiceUpdate) -> dict:
    doc = _owned("service", principal, service_id, "Service")
    return _apply("service", doc, payload.model_dump(exclude_unset=True), Service)


def delete_service(principal: Principal, service_id: str) -> None:
    doc = _owned("service", principal, service_id, "Service")
    _soft_delete("service", doc)
    logger.info("Service %s deactivated", service_id)
