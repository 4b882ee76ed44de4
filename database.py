"""
Database helpers

MongoDB connection plus the small helper layer shared by the API modules.
Collections are named after the lowercase schema class name:
- VendorProfile -> "vendorprofile"
- Product -> "product"
- Service -> "service"
- Order -> "order"
- Booking -> "booking"
"""
import math
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ASCENDING, DESCENDING, MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def utcnow() -> datetime:
    # Naive UTC, which is what pymongo hands back on reads.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_reference(prefix: str) -> str:
    """Human readable document number, e.g. ORD2610189F3A61C2D4."""
    return f"{prefix}{utcnow():%y%m%d}{uuid.uuid4().hex[:10].upper()}"


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def serialize(doc: dict):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def create_document(collection_name: str, data) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    database = get_db()
    if hasattr(data, "model_dump"):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def find_by_id(collection_name: str, id_str: str) -> Optional[dict]:
    return get_db()[collection_name].find_one({"_id": to_obj_id(id_str)})


def find_many_by_id(collection_name: str, ids, projection: Optional[dict] = None) -> Dict[str, dict]:
    """Look up several documents at once, keyed by string id. Invalid ids are ignored."""
    oids = [ObjectId(i) for i in set(ids) if i and ObjectId.is_valid(i)]
    if not oids:
        return {}
    cursor = get_db()[collection_name].find({"_id": {"$in": oids}}, projection)
    return {str(doc["_id"]): doc for doc in cursor}


def paginate(
    collection_name: str,
    filter_dict: Dict[str, Any],
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[dict], dict]:
    """Offset pagination over a filtered collection.

    Returns the page of raw documents and a pagination block with
    current/pages/total/has_next/has_prev.
    """
    database = get_db()
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
    skip = (page - 1) * limit
    direction = ASCENDING if sort_order == "asc" else DESCENDING

    docs = list(
        database[collection_name]
        .find(filter_dict)
        .sort([(sort_by, direction), ("_id", direction)])
        .skip(skip)
        .limit(limit)
    )
    total = database[collection_name].count_documents(filter_dict)
    pagination = {
        "current": page,
        "pages": math.ceil(total / limit),
        "total": total,
        "has_next": skip + len(docs) < total,
        "has_prev": page > 1,
    }
    return docs, pagination


def ensure_indexes(database=None):
    """Create the indexes the lifecycle code relies on for uniqueness."""
    database = database if database is not None else get_db()
    database["vendorprofile"].create_index("user_id", unique=True)
    database["product"].create_index("vendor_id")
    database["service"].create_index("vendor_id")
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index("customer_id")
    database["order"].create_index("vendor_id")
    database["booking"].create_index("booking_number", unique=True)
    database["booking"].create_index("customer_id")
    database["booking"].create_index([("vendor_id", ASCENDING), ("scheduled_date", ASCENDING)])
    # Only non-terminal bookings carry a slot_key, so one live booking per slot.
    database["booking"].create_index("slot_key", unique=True, sparse=True)
