import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import bookings
import catalog
import database
import orders
from auth import Principal, get_current_user, require_role
from errors import AppError, Conflict
from schemas import (
    Booking,
    BookingCreate,
    BookingReschedule,
    BookingStatusUpdate,
    CancelRequest,
    Order,
    OrderCreate,
    OrderStatusUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    Service,
    ServiceCreate,
    ServiceUpdate,
    VendorProfile,
    VendorProfileCreate,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s",
)
logger = logging.getLogger("local_link")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    yield


app = FastAPI(title="Local Link API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

customer_only = require_role("customer")
vendor_only = require_role("vendor")

TIME_QUERY = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


def ok(data=None, message: Optional[str] = None, status_code: int = 200):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# -----------------
# Error envelope
# -----------------
@app.exception_handler(StarletteHTTPException)
def http_error(request: Request, exc: StarletteHTTPException):
    body = {"success": False, "message": str(exc.detail)}
    if isinstance(exc, Conflict):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.detail)
    if isinstance(exc, AppError) and exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
def validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "message": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# -----------------
# Health
# -----------------
@app.get("/")
def read_root():
    return {"message": "Local Link API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "indexes": {},
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = database.db.name
            response["connection_status"] = "Connected"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:20]
                # Uniqueness of order/booking numbers and booking slots rests on these.
                response["indexes"] = {
                    name: sorted(database.db[name].index_information())
                    for name in ("vendorprofile", "order", "booking")
                }
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@app.get("/schema")
def schema():
    return {
        "vendorprofile": VendorProfile.model_json_schema(),
        "product": Product.model_json_schema(),
        "service": Service.model_json_schema(),
        "order": Order.model_json_schema(),
        "booking": Booking.model_json_schema(),
    }


# -----------------
# Vendor profile
# -----------------
@app.post("/api/vendors/profile")
def create_vendor_profile(payload: VendorProfileCreate, principal: Principal = Depends(vendor_only)):
    profile = catalog.create_vendor_profile(principal, payload)
    return ok({"profile": profile}, "Vendor profile created", 201)


@app.get("/api/vendors/profile")
def get_vendor_profile(principal: Principal = Depends(vendor_only)):
    return ok({"profile": catalog.get_own_vendor_profile(principal)})


# -----------------
# Products
# -----------------
@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    items, pagination = catalog.list_products(category, search, min_price, max_price, page, limit, sort_by, sort_order)
    return ok({"products": items, "pagination": pagination})


@app.get("/api/products/vendor/mine")
def list_my_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(vendor_only),
):
    items, pagination = catalog.list_vendor_products(principal, page, limit)
    return ok({"products": items, "pagination": pagination})


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return ok({"product": catalog.get_product(product_id)})


@app.post("/api/products")
def create_product(payload: ProductCreate, principal: Principal = Depends(vendor_only)):
    return ok({"product": catalog.create_product(principal, payload)}, "Product created successfully", 201)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, principal: Principal = Depends(vendor_only)):
    return ok({"product": catalog.update_product(principal, product_id, payload)}, "Product updated successfully")


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, principal: Principal = Depends(vendor_only)):
    catalog.delete_product(principal, product_id)
    return ok(message="Product deleted successfully")


# -----------------
# Services
# -----------------
@app.get("/api/services")
def list_services(
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    items, pagination = catalog.list_services(category, search, page, limit, sort_by, sort_order)
    return ok({"services": items, "pagination": pagination})


@app.get("/api/services/vendor/mine")
def list_my_services(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(vendor_only),
):
    items, pagination = catalog.list_vendor_services(principal, page, limit)
    return ok({"services": items, "pagination": pagination})


@app.get("/api/services/{service_id}")
def get_service(service_id: str):
    return ok({"service": catalog.get_service(service_id)})


@app.get("/api/services/{service_id}/availability")
def service_availability(
    service_id: str,
    day: str = Query(..., pattern="^(monday|tuesday|wednesday|thursday|friday|saturday|sunday)$"),
    time: str = Query(..., pattern=TIME_QUERY),
):
    available = catalog.service_available_at(service_id, day, time)
    return ok({"available": available, "day": day, "time": time})


@app.post("/api/services")
def create_service(payload: ServiceCreate, principal: Principal = Depends(vendor_only)):
    return ok({"service": catalog.create_service(principal, payload)}, "Service created successfully", 201)


@app.put("/api/services/{service_id}")
def update_service(service_id: str, payload: ServiceUpdate, principal: Principal = Depends(vendor_only)):
    return ok({"service": catalog.update_service(principal, service_id, payload)}, "Service updated successfully")


@app.delete("/api/services/{service_id}")
def delete_service(service_id: str, principal: Principal = Depends(vendor_only)):
    catalog.delete_service(principal, service_id)
    return ok(message="Service deleted successfully")


# -----------------
# Orders
# -----------------
@app.post("/api/orders")
def create_order(payload: OrderCreate, principal: Principal = Depends(customer_only)):
    created = orders.create_orders(principal, payload)
    return ok({"orders": created}, f"{len(created)} order(s) placed successfully", 201)


@app.get("/api/orders")
def list_customer_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(customer_only),
):
    items, pagination = orders.list_orders(principal, status, page, limit, sort_by, sort_order)
    return ok({"orders": items, "pagination": pagination})


@app.get("/api/orders/vendor")
def list_vendor_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(vendor_only),
):
    items, pagination = orders.list_orders(principal, status, page, limit, sort_by, sort_order)
    return ok({"orders": items, "pagination": pagination})


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, principal: Principal = Depends(get_current_user)):
    return ok({"order": orders.get_order(principal, order_id)})


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, principal: Principal = Depends(vendor_only)):
    order = orders.update_order_status(principal, order_id, payload.status, payload.note)
    return ok({"order": order}, "Order status updated successfully")


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    payload: Optional[CancelRequest] = None,
    principal: Principal = Depends(get_current_user),
):
    order = orders.cancel_order(principal, order_id, payload.reason if payload else None)
    return ok({"order": order}, "Order cancelled successfully")


# -----------------
# Bookings
# -----------------
@app.post("/api/bookings")
def create_booking(payload: BookingCreate, principal: Principal = Depends(customer_only)):
    booking = bookings.create_booking(principal, payload)
    return ok({"booking": booking}, "Booking created successfully", 201)


@app.get("/api/bookings")
def list_customer_bookings(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = Query(None, pattern="^(asc|desc)$"),
    principal: Principal = Depends(customer_only),
):
    items, pagination = bookings.list_bookings(principal, status, None, page, limit, sort_by, sort_order)
    return ok({"bookings": items, "pagination": pagination})


@app.get("/api/bookings/vendor")
def list_vendor_bookings(
    status: Optional[str] = None,
    on_date: Optional[date] = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = Query(None, pattern="^(asc|desc)$"),
    principal: Principal = Depends(vendor_only),
):
    items, pagination = bookings.list_bookings(principal, status, on_date, page, limit, sort_by, sort_order)
    return ok({"bookings": items, "pagination": pagination})


@app.get("/api/bookings/vendor/stats")
def vendor_booking_stats(principal: Principal = Depends(vendor_only)):
    return ok(bookings.vendor_booking_stats(principal))


@app.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str, principal: Principal = Depends(get_current_user)):
    return ok({"booking": bookings.get_booking(principal, booking_id)})


@app.put("/api/bookings/{booking_id}/status")
def update_booking_status(booking_id: str, payload: BookingStatusUpdate, principal: Principal = Depends(vendor_only)):
    booking = bookings.update_booking_status(principal, booking_id, payload.status, payload.notes)
    return ok({"booking": booking}, "Booking status updated successfully")


@app.put("/api/bookings/{booking_id}/cancel")
def cancel_booking(
    booking_id: str,
    payload: Optional[CancelRequest] = None,
    principal: Principal = Depends(get_current_user),
):
    booking = bookings.cancel_booking(principal, booking_id, payload.reason if payload else None)
    return ok({"booking": booking}, "Booking cancelled successfully")


@app.put("/api/bookings/{booking_id}/reschedule")
def reschedule_booking(booking_id: str, payload: BookingReschedule, principal: Principal = Depends(get_current_user)):
    booking = bookings.reschedule_booking(principal, booking_id, payload)
    return ok({"booking": booking}, "Booking rescheduled successfully")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
