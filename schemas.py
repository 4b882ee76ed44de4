"""
Database Schemas for Local Link

Each Pydantic model represents a collection in MongoDB. The collection name is the lowercase of the class name.

Collections:
- vendorprofile
- product
- service
- order
- booking

Derived fields (product availability, order totals, booking end time, amount
and slot key) are recomputed by model validators, so every document is
validated through its model right before it is written.
"""

import re
from datetime import date, datetime, time
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

LIMITED_STOCK_THRESHOLD = 5

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")

ProductCategory = Literal[
    "groceries", "vegetables", "fruits", "dairy", "bakery",
    "clothing", "footwear", "accessories",
    "electronics", "mobile", "computers",
    "pharmacy", "medicines", "health",
    "stationery", "books", "office",
    "home-appliances", "furniture",
    "other",
]
ProductUnit = Literal["piece", "kg", "gram", "liter", "ml", "packet", "box", "dozen"]
CatalogStatus = Literal["active", "inactive", "pending-approval", "rejected"]
AvailabilityStatus = Literal["in-stock", "limited-stock", "out-of-stock"]

ServiceCategory = Literal[
    "plumbing", "electrical", "carpentry", "painting", "cleaning",
    "appliance-repair", "ac-repair", "computer-repair", "mobile-repair",
    "home-maintenance", "gardening", "pest-control",
    "tutoring", "music-lessons", "fitness-training",
    "beauty-services", "massage", "healthcare",
    "photography", "event-planning", "catering",
    "transportation", "delivery", "moving",
    "other",
]
PricingType = Literal["fixed", "hourly", "per-visit", "negotiable"]
PriceUnit = Literal["per-hour", "per-visit", "per-project", "per-day"]
Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "delivered", "cancelled"]
DeliveryType = Literal["home-delivery", "self-pickup"]
OrderPaymentMethod = Literal["cash-on-delivery", "pay-at-shop"]
PaymentStatus = Literal["unpaid", "paid"]

BookingStatus = Literal[
    "pending", "confirmed", "rescheduled", "in-progress",
    "completed", "cancelled", "no-show", "refunded",
]
ServiceLocation = Literal["customer-location", "vendor-location", "online"]
BookingPaymentMethod = Literal["cash-on-service", "pay-at-shop"]

# Bookings in these states no longer hold their (vendor, date, time) slot.
SLOT_RELEASING_STATUSES = ("cancelled", "completed", "no-show")


def availability_for(stock: int) -> Tuple[bool, str]:
    """Map a stock level to (is_available, availability_status)."""
    if stock <= 0:
        return False, "out-of-stock"
    if stock <= LIMITED_STOCK_THRESHOLD:
        return True, "limited-stock"
    return True, "in-stock"


def normalize_time(value: str) -> str:
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError("Invalid time format (use HH:MM)")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def add_minutes(hhmm: str, minutes: int) -> str:
    hours, mins = (int(part) for part in hhmm.split(":"))
    total = (hours * 60 + mins + int(minutes)) % (24 * 60)
    return f"{total // 60:02d}:{total % 60:02d}"


def as_day(value: Union[date, datetime]) -> datetime:
    """Midnight (naive UTC) of the given calendar day."""
    if isinstance(value, datetime):
        value = value.replace(tzinfo=None).date()
    return datetime.combine(value, time.min)


# -----------------------------
# Shared sub-documents
# -----------------------------
class StatusHistoryEntry(BaseModel):
    status: str
    timestamp: datetime
    note: Optional[str] = None
    updated_by: Optional[str] = Field(None, description="User id or role that made the change")


class RescheduleEntry(BaseModel):
    original_date: datetime
    original_time: str
    new_date: datetime
    new_time: str
    reason: Optional[str] = None
    requested_by: Optional[str] = None
    timestamp: datetime


class DeliveryAddress(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=r"^[0-9]{10}$")
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=r"^[0-9]{6}$")
    landmark: Optional[str] = None


class ServiceAddress(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=r"^[0-9]{6}$")
    landmark: Optional[str] = None


# -----------------------------
# Vendors & catalog
# -----------------------------
class VendorProfile(BaseModel):
    user_id: str = Field(..., description="Owning user id (one profile per vendor user)")
    business_name: str = Field(..., min_length=2, max_length=100)
    business_type: Literal["shop", "service"]
    category: str = Field(..., description="Business category, e.g. grocery, plumber")
    description: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[Union[Dict[str, Any], str]] = None
    service_radius: int = Field(5, ge=1, le=50, description="Service radius in km")
    is_verified: bool = False
    is_active: bool = True


class Product(BaseModel):
    vendor_id: str = Field(..., description="VendorProfile id")
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., max_length=1000)
    category: ProductCategory
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    unit: ProductUnit
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    status: CatalogStatus = "active"
    is_active: bool = Field(True, description="False once soft-deleted")
    is_available: bool = True
    availability_status: AvailabilityStatus = "in-stock"

    @model_validator(mode="after")
    def derive_availability(self):
        self.is_available, self.availability_status = availability_for(self.stock)
        return self


class TimeWindow(BaseModel):
    start_time: str
    end_time: str
    is_available: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return normalize_time(v)


class DaySlots(BaseModel):
    day: Weekday
    time_slots: List[TimeWindow] = Field(default_factory=list)


class Service(BaseModel):
    vendor_id: str = Field(..., description="VendorProfile id of the provider")
    title: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., max_length=1000)
    category: ServiceCategory
    pricing_type: PricingType
    base_price: float = Field(..., ge=0)
    price_unit: PriceUnit
    duration: int = Field(..., ge=1, description="Estimated duration in minutes")
    images: List[str] = Field(default_factory=list)
    available_slots: List[DaySlots] = Field(default_factory=list)
    is_available: bool = True
    status: CatalogStatus = "active"
    is_active: bool = True

    def is_available_at(self, day: str, at: str) -> bool:
        """True when `at` (HH:MM) falls inside an open window on `day`."""
        if not self.is_available:
            return False
        at = normalize_time(at)
        for slot in self.available_slots:
            if slot.day != day.lower():
                continue
            return any(
                window.is_available and window.start_time <= at <= window.end_time
                for window in slot.time_slots
            )
        return False


# -----------------------------
# Orders
# -----------------------------
class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0, description="Unit price at order time")
    quantity: int = Field(..., ge=1)
    unit: Optional[str] = None
    total: float = Field(0, ge=0)


class Order(BaseModel):
    order_number: str
    customer_id: str
    vendor_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: float = 0
    delivery_charges: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total_amount: float = 0
    delivery_address: Optional[DeliveryAddress] = None
    delivery_type: DeliveryType
    payment_method: OrderPaymentMethod
    payment_status: PaymentStatus = "unpaid"
    status: OrderStatus = "pending"
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=500)
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None

    @model_validator(mode="after")
    def compute_totals(self):
        for item in self.items:
            item.total = round(item.price * item.quantity, 2)
        self.subtotal = round(sum(item.total for item in self.items), 2)
        self.total_amount = round(self.subtotal + self.delivery_charges - self.discount, 2)
        return self


# -----------------------------
# Bookings
# -----------------------------
class ServiceDetails(BaseModel):
    """Copy of the service taken when the booking is made."""
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    duration: int = Field(..., ge=1, description="Minutes")
    category: Optional[str] = None


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[Union[Dict[str, Any], str]] = None


class Booking(BaseModel):
    booking_number: str
    customer_id: str
    vendor_id: str
    service_id: str
    service_details: ServiceDetails
    scheduled_date: datetime
    scheduled_time: str
    estimated_end_time: Optional[str] = None
    additional_charges: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total_amount: float = 0
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)
    service_location: ServiceLocation
    service_address: Optional[ServiceAddress] = None
    payment_method: BookingPaymentMethod
    payment_status: PaymentStatus = "unpaid"
    status: BookingStatus = "pending"
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    reschedule_history: List[RescheduleEntry] = Field(default_factory=list)
    special_requests: Optional[str] = Field(None, max_length=1000)
    service_start_time: Optional[datetime] = None
    service_end_time: Optional[datetime] = None
    actual_duration: Optional[int] = Field(None, description="Minutes between start and end")
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    slot_key: Optional[str] = None

    @field_validator("scheduled_date", mode="before")
    @classmethod
    def midnight(cls, v):
        if isinstance(v, (date, datetime)):
            return as_day(v)
        return v

    @field_validator("scheduled_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return normalize_time(v)

    @model_validator(mode="after")
    def derive_fields(self):
        self.scheduled_date = as_day(self.scheduled_date)
        self.estimated_end_time = add_minutes(self.scheduled_time, self.service_details.duration)
        self.total_amount = round(self.service_details.price + self.additional_charges - self.discount, 2)
        if self.status in SLOT_RELEASING_STATUSES:
            self.slot_key = None
        else:
            self.slot_key = f"{self.vendor_id}|{self.scheduled_date:%Y-%m-%d}|{self.scheduled_time}"
        return self

    def can_be_cancelled(self) -> bool:
        return self.status not in ("completed", "cancelled", "refunded", "in-progress")

    def can_be_rescheduled(self) -> bool:
        return self.can_be_cancelled()


# -----------------------------
# Request payloads
# -----------------------------
class VendorProfileCreate(BaseModel):
    business_name: str = Field(..., min_length=2, max_length=100)
    business_type: Literal["shop", "service"]
    category: str = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=500)
    service_radius: int = Field(5, ge=1, le=50)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    category: ProductCategory
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    unit: ProductUnit
    images: List[str] = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    category: Optional[ProductCategory] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    unit: Optional[ProductUnit] = None
    images: Optional[List[str]] = Field(None, min_length=1)
    tags: Optional[List[str]] = None
    status: Optional[CatalogStatus] = None


class ServiceCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    category: ServiceCategory
    pricing_type: PricingType
    base_price: float = Field(..., ge=0)
    price_unit: PriceUnit
    duration: int = Field(..., ge=1)
    images: List[str] = Field(default_factory=list)
    available_slots: List[DaySlots] = Field(default_factory=list)


class ServiceUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    category: Optional[ServiceCategory] = None
    pricing_type: Optional[PricingType] = None
    base_price: Optional[float] = Field(None, ge=0)
    price_unit: Optional[PriceUnit] = None
    duration: Optional[int] = Field(None, ge=1)
    images: Optional[List[str]] = None
    available_slots: Optional[List[DaySlots]] = None
    is_available: Optional[bool] = None
    status: Optional[CatalogStatus] = None


class CartLine(BaseModel):
    product: str = Field(..., description="Product id")
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    items: List[CartLine] = Field(..., min_length=1)
    delivery_type: DeliveryType
    payment_method: OrderPaymentMethod
    delivery_address: Optional[DeliveryAddress] = None
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def address_for_delivery(self):
        if self.delivery_type == "home-delivery" and self.delivery_address is None:
            raise ValueError("Delivery address is required for home delivery")
        return self


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingCreate(BaseModel):
    service_id: str
    scheduled_date: date
    scheduled_time: str
    service_location: ServiceLocation
    payment_method: BookingPaymentMethod
    service_address: Optional[ServiceAddress] = None
    customer_info: Optional[CustomerInfo] = None
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("scheduled_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return normalize_time(v)

    @model_validator(mode="after")
    def address_for_customer_location(self):
        if self.service_location == "customer-location" and self.service_address is None:
            raise ValueError("Service address is required when the service is at the customer location")
        return self


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    notes: Optional[str] = None


class BookingReschedule(BaseModel):
    scheduled_date: date
    scheduled_time: str
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("scheduled_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return normalize_time(v)
