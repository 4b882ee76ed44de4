"""
Inventory adjustment for product stock.

Only the order lifecycle calls into this module: `reserve` when an order is
placed and `release` when it is cancelled or rolled back.
"""
import logging
from typing import Optional

from pymongo import ReturnDocument

from database import get_db, to_obj_id, utcnow
from errors import Conflict, NotFound
from schemas import availability_for

logger = logging.getLogger(__name__)

__all__ = ["reserve", "release", "availability_for"]


def _sync_availability(product: dict) -> dict:
    is_available, status = availability_for(product.get("stock", 0))
    if product.get("is_available") == is_available and product.get("availability_status") == status:
        return product
    # Only applies while stock still holds the value we derived from; a later
    # writer recomputes for its own value.
    get_db()["product"].update_one(
        {"_id": product["_id"], "stock": product.get("stock", 0)},
        {"$set": {"is_available": is_available, "availability_status": status, "updated_at": utcnow()}},
    )
    product["is_available"] = is_available
    product["availability_status"] = status
    return product


def reserve(product_id: str, quantity: int) -> dict:
    """Take `quantity` units out of stock in one conditional write."""
    if quantity < 1:
        raise Conflict("Quantity must be at least 1")
    oid = to_obj_id(product_id)
    product = get_db()["product"].find_one_and_update(
        {"_id": oid, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if product is None:
        current = get_db()["product"].find_one({"_id": oid}, {"name": 1, "stock": 1})
        if current is None:
            raise NotFound(f"Product with ID {product_id} not found")
        raise Conflict(
            f"Insufficient stock for {current.get('name', 'product')}. "
            f"Available: {current.get('stock', 0)}, Requested: {quantity}"
        )
    logger.debug("Reserved %s x %s, stock now %s", quantity, product_id, product["stock"])
    return _sync_availability(product)


def release(product_id: str, quantity: int) -> Optional[dict]:
    """Put `quantity` units back. Missing products are skipped."""
    product = get_db()["product"].find_one_and_update(
        {"_id": to_obj_id(product_id)},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if product is None:
        logger.warning("Cannot restore %s units: product %s no longer exists", quantity, product_id)
        return None
    logger.debug("Released %s x %s, stock now %s", quantity, product_id, product["stock"])
    return _sync_availability(product)
