"""
Order lifecycle

Placing an order from a cart (split into one order per vendor), listing and
reading orders for either party, vendor status updates and cancellation.
Stock moves through the inventory module only.
"""
import logging
from typing import Dict, List, Optional, Tuple

from bson import ObjectId

import inventory
from auth import Principal, find_vendor_profile, get_vendor_profile
from database import (
    create_document,
    find_by_id,
    find_many_by_id,
    generate_reference,
    get_db,
    paginate,
    serialize,
    utcnow,
)
from errors import Conflict, Forbidden, NotFound
from schemas import Order, OrderCreate, OrderItem, StatusHistoryEntry

logger = logging.getLogger(__name__)

ORDER_PREFIX = "ORD"

ORDER_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("preparing", "ready", "cancelled"),
    "preparing": ("ready", "cancelled"),
    "ready": ("delivered", "cancelled"),
    "delivered": (),
    "cancelled": (),
}

NON_CANCELLABLE = ("delivered", "cancelled")


def can_be_cancelled(status: str) -> bool:
    return status not in NON_CANCELLABLE


# -----------------
# Helpers
# -----------------

def populate_orders(docs: List[dict]) -> List[dict]:
    """Attach customer, vendor and product summaries to raw order documents."""
    customers = find_many_by_id("user", [d["customer_id"] for d in docs], {"name": 1, "email": 1, "phone": 1})
    vendors = find_many_by_id(
        "vendorprofile", [d["vendor_id"] for d in docs],
        {"business_name": 1, "phone": 1, "email": 1, "address": 1},
    )
    products = find_many_by_id(
        "product", [i["product_id"] for d in docs for i in d.get("items", [])], {"name": 1, "images": 1},
    )

    result = []
    for doc in docs:
        out = serialize(doc)
        out["customer"] = serialize(customers.get(doc["customer_id"]))
        out["vendor"] = serialize(vendors.get(doc["vendor_id"]))
        items = []
        for item in doc.get("items", []):
            item = dict(item)
            item["product"] = serialize(products.get(item["product_id"]))
            items.append(item)
        out["items"] = items
        result.append(out)
    return result


def _load(order_id: str) -> dict:
    doc = find_by_id("order", order_id)
    if not doc:
        raise NotFound("Order not found")
    return doc


def _party(principal: Principal, doc: dict) -> Optional[str]:
    """Which side of the order the principal is on, if any."""
    if doc["customer_id"] == principal.id:
        return "customer"
    profile = find_vendor_profile(principal)
    if profile is not None and doc["vendor_id"] == str(profile["_id"]):
        return "vendor"
    return None


def _save(oid: ObjectId, order: Order, expected_status: str) -> None:
    # Re-validate so the derived totals are recomputed right before the write.
    order = Order.model_validate(order.model_dump())
    result = get_db()["order"].update_one(
        {"_id": oid, "status": expected_status},
        {"$set": {**order.model_dump(), "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise Conflict("Order was changed by another request, please retry")


def _rollback(reserved: List[Tuple[str, int]], created_ids: List[str]) -> None:
    logger.warning(
        "Rolling back cart: releasing %d reservation(s), removing %d order(s)",
        len(reserved), len(created_ids),
    )
    for product_id, quantity in reversed(reserved):
        try:
            inventory.release(product_id, quantity)
        except Exception:
            logger.exception("Could not release %s units of product %s", quantity, product_id)
    if created_ids:
        get_db()["order"].delete_many({"_id": {"$in": [ObjectId(i) for i in created_ids]}})


# -----------------
# Operations
# -----------------

def create_orders(principal: Principal, payload: OrderCreate) -> List[dict]:
    """Place a cart, creating one order per vendor.

    Every line is checked before anything is written. Stock is then reserved
    vendor group by vendor group; if any step fails, the reservations and
    orders already made for this cart are undone before the error propagates.
    """
    requested: Dict[str, int] = {}
    for line in payload.items:
        requested[line.product] = requested.get(line.product, 0) + line.quantity

    products: Dict[str, dict] = {}
    for product_id, quantity in requested.items():
        product = find_by_id("product", product_id) if ObjectId.is_valid(product_id) else None
        if not product or not product.get("is_active", True):
            raise NotFound(f"Product with ID {product_id} not found")
        if product.get("status") != "active" or not product.get("is_available"):
            raise Conflict(f"Product {product.get('name')} is no longer available")
        if product.get("stock", 0) < quantity:
            raise Conflict(
                f"Insufficient stock for {product.get('name')}. "
                f"Available: {product.get('stock', 0)}, Requested: {quantity}"
            )
        products[product_id] = product

    groups: Dict[str, List[OrderItem]] = {}
    for product_id, quantity in requested.items():
        product = products[product_id]
        groups.setdefault(product["vendor_id"], []).append(OrderItem(
            product_id=product_id,
            name=product["name"],
            price=float(product["price"]),
            quantity=quantity,
            unit=product.get("unit"),
        ))

    reserved: List[Tuple[str, int]] = []
    created_ids: List[str] = []
    try:
        for vendor_id, items in groups.items():
            for item in items:
                inventory.reserve(item.product_id, item.quantity)
                reserved.append((item.product_id, item.quantity))

            order = Order(
                order_number=generate_reference(ORDER_PREFIX),
                customer_id=principal.id,
                vendor_id=vendor_id,
                items=items,
                delivery_type=payload.delivery_type,
                payment_method=payload.payment_method,
                delivery_address=payload.delivery_address if payload.delivery_type == "home-delivery" else None,
                notes=payload.notes,
                status_history=[StatusHistoryEntry(
                    status="pending", timestamp=utcnow(), note="Order placed", updated_by=principal.id,
                )],
            )
            created_ids.append(create_document("order", order))
            logger.info("Order %s placed for vendor %s (%d item(s))", order.order_number, vendor_id, len(items))
    except Exception:
        _rollback(reserved, created_ids)
        raise

    docs = [find_by_id("order", order_id) for order_id in created_ids]
    return populate_orders(docs)


def list_orders(
    principal: Principal,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[dict], dict]:
    if principal.role == "vendor":
        query = {"vendor_id": str(get_vendor_profile(principal)["_id"])}
    else:
        query = {"customer_id": principal.id}
    if status:
        query["status"] = status
    docs, pagination = paginate("order", query, page, limit, sort_by, sort_order)
    return populate_orders(docs), pagination


def get_order(principal: Principal, order_id: str) -> dict:
    doc = _load(order_id)
    if _party(principal, doc) is None:
        raise Forbidden("Access denied")
    return populate_orders([doc])[0]


def update_order_status(principal: Principal, order_id: str, new_status: str, note: Optional[str] = None) -> dict:
    profile = get_vendor_profile(principal)
    doc = _load(order_id)
    if doc["vendor_id"] != str(profile["_id"]):
        raise Forbidden("Access denied")

    if new_status == "cancelled":
        return cancel_order(principal, order_id, note)

    order = Order.model_validate(doc)
    previous = order.status
    if new_status not in ORDER_TRANSITIONS.get(previous, ()):
        raise Conflict(f"Cannot change order status from {previous} to {new_status}")

    now = utcnow()
    order.status = new_status
    order.status_history.append(StatusHistoryEntry(
        status=new_status, timestamp=now, note=note, updated_by=principal.id,
    ))
    if new_status == "delivered":
        order.delivered_at = now
    _save(doc["_id"], order, previous)
    logger.info("Order %s: %s -> %s", order.order_number, previous, new_status)
    return populate_orders([_load(order_id)])[0]


def cancel_order(principal: Principal, order_id: str, reason: Optional[str] = None) -> dict:
    doc = _load(order_id)
    if _party(principal, doc) is None:
        raise Forbidden("Access denied")

    order = Order.model_validate(doc)
    previous = order.status
    if not can_be_cancelled(previous):
        raise Conflict(f"Cannot cancel order with status: {previous}")

    now = utcnow()
    order.status = "cancelled"
    order.cancelled_at = now
    order.cancelled_by = principal.id
    order.cancellation_reason = reason
    order.status_history.append(StatusHistoryEntry(
        status="cancelled", timestamp=now, note=reason or "Order cancelled", updated_by=principal.id,
    ))
    # Claim the cancellation before touching stock so it is restored once.
    _save(doc["_id"], order, previous)
    for item in order.items:
        inventory.release(item.product_id, item.quantity)
    logger.info("Order %s cancelled by %s", order.order_number, principal.role)
    return populate_orders([_load(order_id)])[0]
