"""
Booking lifecycle

Booking a service slot, listing and reading bookings, vendor status updates,
cancellation, rescheduling and the vendor dashboard numbers.

A slot is the exact (vendor, date, time) triple. Besides the lookup done
before each write, every live booking carries a `slot_key` covered by a
unique index, so the second of two racing writes for one slot fails.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

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
from schemas import (
    SLOT_RELEASING_STATUSES,
    Booking,
    BookingCreate,
    BookingReschedule,
    CustomerInfo,
    RescheduleEntry,
    ServiceDetails,
    StatusHistoryEntry,
    as_day,
)

logger = logging.getLogger(__name__)

BOOKING_PREFIX = "BKG"

BOOKING_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("confirmed", "cancelled", "rescheduled", "no-show"),
    "confirmed": ("in-progress", "rescheduled", "cancelled", "no-show"),
    "rescheduled": ("confirmed", "rescheduled", "cancelled", "no-show"),
    "in-progress": ("completed",),
    "completed": (),
    "cancelled": (),
    "no-show": (),
    "refunded": (),
}

SLOT_TAKEN = "This time slot is already booked. Please choose a different time."


# -----------------
# Helpers
# -----------------

def populate_bookings(docs: List[dict]) -> List[dict]:
    customers = find_many_by_id("user", [d["customer_id"] for d in docs], {"name": 1, "email": 1, "phone": 1})
    vendors = find_many_by_id(
        "vendorprofile", [d["vendor_id"] for d in docs],
        {"business_name": 1, "phone": 1, "email": 1, "address": 1},
    )
    services = find_many_by_id("service", [d["service_id"] for d in docs], {"title": 1, "images": 1, "category": 1})

    result = []
    for doc in docs:
        out = serialize(doc)
        out.pop("slot_key", None)
        out["customer"] = serialize(customers.get(doc["customer_id"]))
        out["vendor"] = serialize(vendors.get(doc["vendor_id"]))
        out["service"] = serialize(services.get(doc["service_id"]))
        result.append(out)
    return result


def _load(booking_id: str) -> dict:
    doc = find_by_id("booking", booking_id)
    if not doc:
        raise NotFound("Booking not found")
    return doc


def _party(principal: Principal, doc: dict) -> Optional[str]:
    if doc["customer_id"] == principal.id:
        return "customer"
    profile = find_vendor_profile(principal)
    if profile is not None and doc["vendor_id"] == str(profile["_id"]):
        return "vendor"
    return None


def _ensure_future(day: datetime, hhmm: str, message: str) -> None:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    if day + timedelta(hours=hours, minutes=minutes) <= utcnow():
        raise Conflict(message)


def _ensure_slot_free(vendor_id: str, day: datetime, hhmm: str, message: str, exclude: Optional[ObjectId] = None) -> None:
    query = {
        "vendor_id": vendor_id,
        "scheduled_date": day,
        "scheduled_time": hhmm,
        "status": {"$nin": list(SLOT_RELEASING_STATUSES)},
    }
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if get_db()["booking"].find_one(query):
        raise Conflict(message)


def _save(oid: ObjectId, booking: Booking, expected_status: str, slot_message: str = SLOT_TAKEN) -> None:
    # Re-validate so end time, amount and slot key are recomputed right before the write.
    booking = Booking.model_validate(booking.model_dump())
    data = booking.model_dump()
    update = {"$set": {**data, "updated_at": utcnow()}}
    if data["slot_key"] is None:
        del update["$set"]["slot_key"]
        update["$unset"] = {"slot_key": ""}
    try:
        result = get_db()["booking"].update_one({"_id": oid, "status": expected_status}, update)
    except DuplicateKeyError:
        raise Conflict(slot_message)
    if result.matched_count == 0:
        raise Conflict("Booking was changed by another request, please retry")


# -----------------
# Operations
# -----------------

def create_booking(principal: Principal, payload: BookingCreate) -> dict:
    service = find_by_id("service", payload.service_id)
    if not service or not service.get("is_active", True):
        raise NotFound("Service not found")
    if not service.get("is_available") or service.get("status") != "active":
        raise Conflict("Service is not available for booking")

    vendor_id = service["vendor_id"]
    day = as_day(payload.scheduled_date)
    _ensure_future(day, payload.scheduled_time, "Scheduled date and time must be in the future")
    _ensure_slot_free(vendor_id, day, payload.scheduled_time, SLOT_TAKEN)

    customer_info = payload.customer_info or CustomerInfo(
        name=principal.name, phone=principal.phone, email=principal.email, address=principal.address,
    )
    booking = Booking(
        booking_number=generate_reference(BOOKING_PREFIX),
        customer_id=principal.id,
        vendor_id=vendor_id,
        service_id=str(service["_id"]),
        service_details=ServiceDetails(
            name=service["title"],
            description=service.get("description"),
            price=float(service["base_price"]),
            duration=int(service["duration"]),
            category=service.get("category"),
        ),
        scheduled_date=day,
        scheduled_time=payload.scheduled_time,
        customer_info=customer_info,
        service_location=payload.service_location,
        service_address=payload.service_address if payload.service_location == "customer-location" else None,
        payment_method=payload.payment_method,
        special_requests=payload.special_requests,
        status_history=[StatusHistoryEntry(
            status="pending", timestamp=utcnow(), note="Booking created", updated_by="customer",
        )],
    )
    try:
        booking_id = create_document("booking", booking)
    except DuplicateKeyError:
        raise Conflict(SLOT_TAKEN)
    logger.info(
        "Booking %s created for vendor %s on %s %s",
        booking.booking_number, vendor_id, f"{day:%Y-%m-%d}", booking.scheduled_time,
    )
    return populate_bookings([find_by_id("booking", booking_id)])[0]


def list_bookings(
    principal: Principal,
    status: Optional[str] = None,
    on_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
) -> Tuple[List[dict], dict]:
    """Customer bookings (newest first) or vendor bookings (soonest first, optional day filter)."""
    if principal.role == "vendor":
        query = {"vendor_id": str(get_vendor_profile(principal)["_id"])}
        if on_date is not None:
            start = as_day(on_date)
            query["scheduled_date"] = {"$gte": start, "$lt": start + timedelta(days=1)}
        sort_by = sort_by or "scheduled_date"
        sort_order = sort_order or "asc"
    else:
        query = {"customer_id": principal.id}
        sort_by = sort_by or "created_at"
        sort_order = sort_order or "desc"
    if status:
        query["status"] = status
    docs, pagination = paginate("booking", query, page, limit, sort_by, sort_order)
    return populate_bookings(docs), pagination


def get_booking(principal: Principal, booking_id: str) -> dict:
    doc = _load(booking_id)
    if _party(principal, doc) is None:
        raise Forbidden("Access denied")
    return populate_bookings([doc])[0]


def update_booking_status(principal: Principal, booking_id: str, new_status: str, notes: Optional[str] = None) -> dict:
    profile = get_vendor_profile(principal)
    doc = _load(booking_id)
    if doc["vendor_id"] != str(profile["_id"]):
        raise Forbidden("Access denied")

    booking = Booking.model_validate(doc)
    previous = booking.status
    if new_status not in BOOKING_TRANSITIONS.get(previous, ()):
        raise Conflict(f"Cannot change booking status from {previous} to {new_status}")

    now = utcnow()
    booking.status = new_status
    booking.status_history.append(StatusHistoryEntry(
        status=new_status, timestamp=now, note=notes or "", updated_by="vendor",
    ))
    if new_status == "in-progress":
        booking.service_start_time = now
    elif new_status == "completed":
        booking.service_end_time = now
        if booking.service_start_time:
            elapsed = booking.service_end_time - booking.service_start_time
            booking.actual_duration = round(elapsed.total_seconds() / 60)
    elif new_status == "cancelled":
        booking.cancelled_at = now
        booking.cancellation_reason = notes

    _save(doc["_id"], booking, previous)
    logger.info("Booking %s: %s -> %s", booking.booking_number, previous, new_status)
    return populate_bookings([_load(booking_id)])[0]


def cancel_booking(principal: Principal, booking_id: str, reason: Optional[str] = None) -> dict:
    doc = _load(booking_id)
    if _party(principal, doc) is None:
        raise Forbidden("Access denied")

    booking = Booking.model_validate(doc)
    previous = booking.status
    if not booking.can_be_cancelled():
        raise Conflict(f"Cannot cancel booking with status: {previous}")

    now = utcnow()
    booking.status = "cancelled"
    booking.cancelled_at = now
    booking.cancellation_reason = reason
    booking.status_history.append(StatusHistoryEntry(
        status="cancelled", timestamp=now, note=reason or "Booking cancelled", updated_by=principal.role,
    ))
    _save(doc["_id"], booking, previous)
    logger.info("Booking %s cancelled by %s", booking.booking_number, principal.role)
    return populate_bookings([_load(booking_id)])[0]


def reschedule_booking(principal: Principal, booking_id: str, payload: BookingReschedule) -> dict:
    doc = _load(booking_id)
    if _party(principal, doc) is None:
        raise Forbidden("Access denied")

    booking = Booking.model_validate(doc)
    previous = booking.status
    if not booking.can_be_rescheduled():
        raise Conflict(f"Cannot reschedule booking with status: {previous}")

    new_day = as_day(payload.scheduled_date)
    new_time = payload.scheduled_time
    taken = "The new time slot is already booked. Please choose a different time."
    _ensure_future(new_day, new_time, "New scheduled date and time must be in the future")
    _ensure_slot_free(booking.vendor_id, new_day, new_time, taken, exclude=doc["_id"])

    now = utcnow()
    booking.reschedule_history.append(RescheduleEntry(
        original_date=booking.scheduled_date,
        original_time=booking.scheduled_time,
        new_date=new_day,
        new_time=new_time,
        reason=payload.reason,
        requested_by=principal.id,
        timestamp=now,
    ))
    booking.scheduled_date = new_day
    booking.scheduled_time = new_time
    booking.status = "rescheduled"
    booking.status_history.append(StatusHistoryEntry(
        status="rescheduled",
        timestamp=now,
        note=f"Rescheduled: {payload.reason}" if payload.reason else "Booking rescheduled",
        updated_by=principal.role,
    ))
    _save(doc["_id"], booking, previous, slot_message=taken)
    logger.info("Booking %s rescheduled to %s %s", booking.booking_number, f"{new_day:%Y-%m-%d}", new_time)
    return populate_bookings([_load(booking_id)])[0]


def vendor_booking_stats(principal: Principal) -> dict:
    profile = get_vendor_profile(principal)
    base = {"vendor_id": str(profile["_id"])}
    collection = get_db()["booking"]

    today = as_day(utcnow())
    tomorrow = today + timedelta(days=1)
    next_week = today + timedelta(days=7)

    revenue = list(collection.aggregate([
        {"$match": {**base, "status": "completed"}},
        {"$group": {"_id": None, "total_revenue": {"$sum": "$total_amount"}}},
    ]))

    return {
        "total": collection.count_documents(base),
        "pending": collection.count_documents({**base, "status": "pending"}),
        "confirmed": collection.count_documents({**base, "status": "confirmed"}),
        "completed": collection.count_documents({**base, "status": "completed"}),
        "cancelled": collection.count_documents({**base, "status": "cancelled"}),
        "today": collection.count_documents({
            **base,
            "scheduled_date": {"$gte": today, "$lt": tomorrow},
            "status": {"$nin": ["cancelled", "no-show"]},
        }),
        "upcoming": collection.count_documents({
            **base,
            "scheduled_date": {"$gte": today, "$lt": next_week},
            "status": {"$nin": ["cancelled", "completed", "no-show"]},
        }),
        "total_revenue": revenue[0]["total_revenue"] if revenue else 0,
    }
