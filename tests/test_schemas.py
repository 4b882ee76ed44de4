from datetime import date, datetime

import pytest
from pydantic import ValidationError

from schemas import (
    Booking,
    BookingCreate,
    Order,
    OrderCreate,
    Product,
    Service,
    add_minutes,
    availability_for,
)


def product(stock, **kwargs):
    return Product(
        vendor_id="v1", name="Milk", description="Toned milk 1L", category="dairy",
        price=30, stock=stock, unit="liter", **kwargs,
    )


@pytest.mark.parametrize("stock,available,status", [
    (0, False, "out-of-stock"),
    (1, True, "limited-stock"),
    (5, True, "limited-stock"),
    (6, True, "in-stock"),
    (250, True, "in-stock"),
])
def test_product_availability_follows_stock(stock, available, status):
    p = product(stock)
    assert (p.is_available, p.availability_status) == (available, status)
    assert availability_for(stock) == (available, status)


def test_product_ignores_caller_supplied_availability():
    p = product(0, is_available=True, availability_status="in-stock")
    assert p.is_available is False
    assert p.availability_status == "out-of-stock"


def test_product_rejects_negative_stock():
    with pytest.raises(ValidationError):
        product(-1)


def order(**kwargs):
    fields = dict(
        order_number="ORD1",
        customer_id="c1",
        vendor_id="v1",
        items=[
            {"product_id": "p1", "name": "Rice", "price": 52.5, "quantity": 2},
            {"product_id": "p2", "name": "Dal", "price": 110, "quantity": 1},
        ],
        delivery_type="self-pickup",
        payment_method="pay-at-shop",
    )
    fields.update(kwargs)
    return Order(**fields)


def test_order_totals_are_recomputed():
    o = order(subtotal=1, total_amount=99999, delivery_charges=20, discount=5)
    assert [i.total for i in o.items] == [105.0, 110.0]
    assert o.subtotal == 215.0
    assert o.total_amount == 215.0 + 20 - 5


def test_order_revalidation_restores_totals_after_tampering():
    o = order()
    o.total_amount = 1
    o.items[0].quantity = 4
    again = Order.model_validate(o.model_dump())
    assert again.total_amount == pytest.approx(52.5 * 4 + 110)


def test_order_create_requires_address_for_home_delivery():
    with pytest.raises(ValidationError):
        OrderCreate(items=[{"product": "p1", "quantity": 1}], delivery_type="home-delivery",
                    payment_method="cash-on-delivery")
    ok = OrderCreate(items=[{"product": "p1", "quantity": 1}], delivery_type="self-pickup",
                     payment_method="pay-at-shop")
    assert ok.delivery_address is None


def test_order_create_rejects_empty_cart_and_zero_quantity():
    with pytest.raises(ValidationError):
        OrderCreate(items=[], delivery_type="self-pickup", payment_method="pay-at-shop")
    with pytest.raises(ValidationError):
        OrderCreate(items=[{"product": "p1", "quantity": 0}], delivery_type="self-pickup",
                    payment_method="pay-at-shop")


def booking(**kwargs):
    fields = dict(
        booking_number="BKG1",
        customer_id="c1",
        vendor_id="v1",
        service_id="s1",
        service_details={"name": "Tap Repair", "price": 400, "duration": 90},
        scheduled_date=date(2030, 3, 4),
        scheduled_time="9:15",
        service_location="vendor-location",
        payment_method="pay-at-shop",
    )
    fields.update(kwargs)
    return Booking(**fields)


def test_booking_derived_fields():
    b = booking(additional_charges=50, discount=20)
    assert b.scheduled_time == "09:15"
    assert b.scheduled_date == datetime(2030, 3, 4)
    assert b.estimated_end_time == "10:45"
    assert b.total_amount == 430
    assert b.slot_key == "v1|2030-03-04|09:15"


def test_booking_end_time_wraps_past_midnight():
    assert booking(scheduled_time="23:30").estimated_end_time == "01:00"
    assert add_minutes("22:00", 120) == "00:00"


def test_booking_end_time_follows_reschedule_on_revalidation():
    b = booking()
    b.scheduled_time = "14:00"
    assert Booking.model_validate(b.model_dump()).estimated_end_time == "15:30"


@pytest.mark.parametrize("status", ["cancelled", "completed", "no-show"])
def test_closed_bookings_release_their_slot(status):
    assert booking(status=status).slot_key is None


@pytest.mark.parametrize("status,allowed", [
    ("pending", True),
    ("confirmed", True),
    ("rescheduled", True),
    ("no-show", True),
    ("in-progress", False),
    ("completed", False),
    ("cancelled", False),
    ("refunded", False),
])
def test_booking_cancel_and_reschedule_predicates(status, allowed):
    b = booking(status=status)
    assert b.can_be_cancelled() is allowed
    assert b.can_be_rescheduled() is allowed


def test_booking_rejects_bad_time():
    with pytest.raises(ValidationError):
        booking(scheduled_time="25:00")


def test_booking_create_requires_address_at_customer_location():
    base = dict(service_id="s1", scheduled_date="2030-01-01", scheduled_time="10:00",
                service_location="customer-location", payment_method="cash-on-service")
    with pytest.raises(ValidationError):
        BookingCreate(**base)
    with pytest.raises(ValidationError):
        BookingCreate(**base, service_address={"street": "MG Road", "city": "Pune", "pincode": "4110"})
    created = BookingCreate(**base, service_address={"street": "MG Road", "city": "Pune", "pincode": "411001"})
    assert created.service_address.city == "Pune"


def test_service_available_at():
    service = Service(
        vendor_id="v1", title="Tap Repair", description="Fix taps", category="plumbing",
        pricing_type="fixed", base_price=300, price_unit="per-visit", duration=60,
        available_slots=[{"day": "monday", "time_slots": [
            {"start_time": "09:00", "end_time": "13:00"},
            {"start_time": "15:00", "end_time": "18:00", "is_available": False},
        ]}],
    )
    assert service.is_available_at("Monday", "9:30")
    assert not service.is_available_at("monday", "16:00")
    assert not service.is_available_at("tuesday", "10:00")
    service.is_available = False
    assert not service.is_available_at("monday", "10:00")
