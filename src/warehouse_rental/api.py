from __future__ import annotations

from typing import Annotated

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.metrics import Metrics, MetricUnit
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.responses import Response

from warehouse_rental import availability, dal, dashboard, lifecycle, pricing, users
from warehouse_rental.errors import BookingRejected, IntegrityViolation, InvalidRange
from warehouse_rental.models import (
    Actor,
    AvailabilityDecision,
    Booking,
    BookingCreate,
    DashboardStats,
    Payment,
    PaymentDetails,
    Profile,
    ProfileCreate,
    ProfileUpdate,
    Quote,
    UserDetail,
    UserSummary,
    Warehouse,
    WarehouseCreate,
    WarehouseUpdate,
)

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="WarehouseRental")

app = FastAPI(title="Warehouse Rental API", version="0.1.0")

_STATUS_CODES: dict[str, int] = {
    "invalid-range": 400,
    "overlap": 409,
    "not-found": 404,
    "forbidden": 403,
    "payment-declined": 402,
    "invalid-transition": 409,
    "concurrent-update": 409,
}


@app.exception_handler(BookingRejected)
def handle_rejection(request: Request, exc: BookingRejected) -> JSONResponse:
    if exc.code == "overlap":
        metrics.add_metric(name="BookingRejected", value=1, unit=MetricUnit.Count)
    elif exc.code == "payment-declined":
        metrics.add_metric(name="PaymentDeclined", value=1, unit=MetricUnit.Count)
    return JSONResponse(
        status_code=_STATUS_CODES.get(exc.code, 400),
        content={"detail": exc.reason, "code": exc.code},
    )


_DATE_FIELDS = frozenset({"start_date", "end_date"})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # A present but unparseable booking date is a rejected range, not a malformed request.
    for error in exc.errors():
        loc = tuple(error.get("loc", ()))
        if len(loc) == 2 and loc[0] == "body" and loc[1] in _DATE_FIELDS and error.get("type") != "missing":
            return handle_rejection(request, InvalidRange(f"Invalid {loc[1]}: {error.get('input')!r}"))
    return await request_validation_exception_handler(request, exc)


@app.exception_handler(IntegrityViolation)
def handle_integrity_violation(request: Request, exc: IntegrityViolation) -> JSONResponse:
    logger.error("Integrity violation, transition aborted", exc_info=exc, extra={"path": request.url.path})
    metrics.add_metric(name="IntegrityViolation", value=1, unit=MetricUnit.Count)
    return JSONResponse(status_code=500, content={"detail": "Internal error", "code": "integrity-violation"})


def get_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor:
    # Identity headers are set by the upstream authorizer, never by the client.
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    role = "admin" if (x_user_role or "").lower() == "admin" else "customer"
    return Actor(user_id=x_user_id, role=role)


def get_optional_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor | None:
    if not x_user_id:
        return None
    return get_actor(x_user_id, x_user_role)


def require_admin(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return actor


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ---------- warehouses ----------


@tracer.capture_method
@app.post("/warehouses", response_model=Warehouse, status_code=201, dependencies=[Depends(require_admin)])
def create_warehouse(payload: WarehouseCreate) -> Warehouse:
    return dal.create_warehouse(payload)


@tracer.capture_method
@app.get("/warehouses", response_model=list[Warehouse])
def list_warehouses(
    actor: Annotated[Actor | None, Depends(get_optional_actor)],
    city: str | None = None,
    include_unavailable: bool = False,
) -> list[Warehouse]:
    show_all = include_unavailable and actor is not None and actor.is_admin
    warehouses = [
        w
        for w in dal.list_warehouses()
        if (show_all or w.is_available) and (city is None or w.city.lower() == city.lower())
    ]
    return sorted(warehouses, key=lambda w: w.created_at, reverse=True)


@tracer.capture_method
@app.get("/warehouses/{warehouse_id}", response_model=Warehouse)
def get_warehouse(warehouse_id: str) -> Warehouse:
    return dal.get_warehouse(warehouse_id)


@tracer.capture_method
@app.put("/warehouses/{warehouse_id}", response_model=Warehouse, dependencies=[Depends(require_admin)])
def update_warehouse(warehouse_id: str, payload: WarehouseUpdate) -> Warehouse:
    return dal.update_warehouse(warehouse_id, payload)


@tracer.capture_method
@app.delete("/warehouses/{warehouse_id}", dependencies=[Depends(require_admin)])
def delete_warehouse(warehouse_id: str) -> Response:
    dal.delete_warehouse(warehouse_id)
    return Response(status_code=204)


@tracer.capture_method
@app.get("/warehouses/{warehouse_id}/availability", response_model=AvailabilityDecision)
def check_availability(warehouse_id: str, start_date: str, end_date: str) -> AvailabilityDecision:
    return availability.can_book(warehouse_id, start_date, end_date)


@tracer.capture_method
@app.get("/warehouses/{warehouse_id}/quote", response_model=Quote)
def quote(warehouse_id: str, start_date: str, end_date: str) -> Quote:
    warehouse = dal.get_warehouse(warehouse_id)
    start = availability.coerce_date(start_date)
    end = availability.coerce_date(end_date)
    return pricing.quote(warehouse.price_per_month, start, end)


# ---------- bookings ----------


@tracer.capture_method
@app.post("/bookings", response_model=Booking, status_code=201)
def create_booking(payload: BookingCreate, actor: Annotated[Actor, Depends(get_actor)]) -> Booking:
    booking = lifecycle.create_booking(actor, payload)
    metrics.add_metric(name="BookingCreated", value=1, unit=MetricUnit.Count)
    return booking


@tracer.capture_method
@app.get("/bookings/{booking_id}", response_model=Booking)
def get_booking(booking_id: str, actor: Annotated[Actor, Depends(get_actor)]) -> Booking:
    return lifecycle.get_booking(actor, booking_id)


@tracer.capture_method
@app.get("/users/{user_id}/bookings", response_model=list[Booking])
def list_bookings(user_id: str, actor: Annotated[Actor, Depends(get_actor)]) -> list[Booking]:
    return lifecycle.list_bookings_for_user(actor, user_id)


@tracer.capture_method
@app.post("/bookings/{booking_id}/payment", response_model=Booking)
def pay_booking(booking_id: str, details: PaymentDetails, actor: Annotated[Actor, Depends(get_actor)]) -> Booking:
    booking = lifecycle.confirm_payment(actor, booking_id, details)
    metrics.add_metric(name="PaymentConfirmed", value=1, unit=MetricUnit.Count)
    return booking


@tracer.capture_method
@app.get("/bookings/{booking_id}/payments", response_model=list[Payment])
def list_payments(booking_id: str, actor: Annotated[Actor, Depends(get_actor)]) -> list[Payment]:
    booking = lifecycle.get_booking(actor, booking_id)
    return dal.list_payments_for_booking(booking.booking_id)


@tracer.capture_method
@app.post("/bookings/{booking_id}/cancel", response_model=Booking)
def cancel_booking(booking_id: str, actor: Annotated[Actor, Depends(get_actor)]) -> Booking:
    booking = lifecycle.cancel_booking(actor, booking_id)
    metrics.add_metric(name="BookingCancelled", value=1, unit=MetricUnit.Count)
    return booking


@tracer.capture_method
@app.post("/bookings/{booking_id}/approve", response_model=Booking)
def approve_booking(booking_id: str, actor: Annotated[Actor, Depends(require_admin)]) -> Booking:
    return lifecycle.approve_booking(actor, booking_id)


# ---------- profile ----------


@tracer.capture_method
@app.post("/profile", response_model=Profile)
def ensure_profile(payload: ProfileCreate, actor: Annotated[Actor, Depends(get_actor)]) -> Profile:
    return dal.ensure_profile(actor.user_id, payload)


@tracer.capture_method
@app.get("/profile", response_model=Profile)
def get_profile(actor: Annotated[Actor, Depends(get_actor)]) -> Profile:
    return dal.get_profile(actor.user_id)


# ---------- admin ----------


@tracer.capture_method
@app.get("/admin/stats", response_model=DashboardStats, dependencies=[Depends(require_admin)])
def admin_stats() -> DashboardStats:
    return dashboard.build_stats(dal.list_warehouses(), dal.list_bookings(), dal.list_profiles())


@tracer.capture_method
@app.get("/admin/users", response_model=list[UserSummary], dependencies=[Depends(require_admin)])
def admin_list_users() -> list[UserSummary]:
    return users.list_users()


@tracer.capture_method
@app.get("/admin/users/{user_id}", response_model=UserDetail, dependencies=[Depends(require_admin)])
def admin_get_user(user_id: str) -> UserDetail:
    return users.get_user(user_id)


@tracer.capture_method
@app.put("/admin/users/{user_id}", response_model=Profile)
def admin_update_user(
    user_id: str,
    payload: ProfileUpdate,
    actor: Annotated[Actor, Depends(require_admin)],
) -> Profile:
    profile = dal.update_profile(user_id, payload)
    logger.info("User updated by admin", extra={"user_id": user_id, "admin_id": actor.user_id})
    return profile
