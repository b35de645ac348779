"""Booking state transitions and the warehouse availability flag that follows them.

pending -> confirmed (payment or admin approval), pending/confirmed -> cancelled.
``completed`` is set by an external process and never entered here. Each
transition is a single DynamoDB transaction, so it commits wholly or not at all.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime

from aws_lambda_powertools import Logger

from . import availability, dal, pricing
from .errors import ConcurrentUpdate, Forbidden, IntegrityViolation, InvalidTransition, NotFound, Overlap
from .models import Actor, Booking, BookingCreate, Payment, PaymentDetails
from .payments import PaymentGateway, default_gateway

logger = Logger()

TERMINAL_STATUSES = frozenset({"cancelled", "completed"})


def _load_owned(actor: Actor, booking_id: str) -> Booking:
    booking = dal.get_booking(booking_id)
    if not actor.is_admin and booking.user_id != actor.user_id:
        # other users' bookings are indistinguishable from missing ones
        raise NotFound(dal.BOOKING_NOT_FOUND)
    return booking


def get_booking(actor: Actor, booking_id: str) -> Booking:
    return _load_owned(actor, booking_id)


def list_bookings_for_user(actor: Actor, user_id: str) -> list[Booking]:
    if not actor.is_admin and actor.user_id != user_id:
        raise Forbidden("You can only list your own bookings")
    bookings = dal.list_bookings_for_user(user_id)
    return sorted(bookings, key=lambda b: b.created_at, reverse=True)


def create_booking(actor: Actor, payload: BookingCreate, *, today: date | None = None) -> Booking:
    today = today or availability.today_utc()
    # Consistent read: booking_version and reserved describe the same committed state.
    warehouse = dal.get_warehouse(payload.warehouse_id)
    reserved = availability.still_reserved(warehouse.reserved, today)

    decision = availability.evaluate(reserved, payload.start_date, payload.end_date, today=today)
    if not decision.allowed:
        logger.info(
            "Booking rejected",
            extra={"warehouse_id": warehouse.warehouse_id, "reason": decision.reason},
        )
    availability.raise_for_decision(decision, payload.start_date, payload.end_date)

    booking = Booking(
        booking_id=str(uuid.uuid4()),
        warehouse_id=warehouse.warehouse_id,
        user_id=actor.user_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        total_amount=pricing.compute_total(warehouse.price_per_month, payload.start_date, payload.end_date),
        status="pending",
        payment_status="pending",
        notes=payload.notes or None,
        created_at=datetime.now(UTC),
    )
    reserved.append(availability.reserve(booking))
    try:
        dal.insert_booking(
            booking,
            expected_version=warehouse.booking_version,
            reserved=reserved,
            is_available=availability.is_available(reserved, today),
        )
    except dal.WriteConflict as exc:
        # Another booking for this warehouse committed between our check and write.
        logger.warning(
            "Booking insert lost a race",
            extra={"warehouse_id": warehouse.warehouse_id, "booking_id": booking.booking_id},
        )
        raise Overlap() from exc
    return booking


def confirm_payment(
    actor: Actor,
    booking_id: str,
    details: PaymentDetails,
    *,
    gateway: PaymentGateway | None = None,
) -> Booking:
    booking = _load_owned(actor, booking_id)
    if booking.payment_status != "pending" or booking.status in TERMINAL_STATUSES:
        raise InvalidTransition(
            f"Booking is {booking.status} with payment {booking.payment_status}; it cannot be paid"
        )

    # PaymentDeclined propagates with nothing written
    gateway = gateway or default_gateway
    result = gateway.charge(booking.total_amount, details)
    if result.amount != booking.total_amount:
        logger.error(
            "Charged amount does not match booking total",
            extra={
                "booking_id": booking.booking_id,
                "charged": str(result.amount),
                "total_amount": str(booking.total_amount),
                "transaction_id": result.transaction_id,
            },
        )
        raise IntegrityViolation(
            f"Charged {result.amount} for booking {booking.booking_id} totalling {booking.total_amount}"
        )

    payment = Payment(
        payment_id=str(uuid.uuid4()),
        booking_id=booking.booking_id,
        amount=booking.total_amount,
        payment_method="credit_card",
        transaction_id=result.transaction_id,
        status=result.status,
        created_at=datetime.now(UTC),
    )
    try:
        confirmed = dal.record_payment(booking, payment)
    except dal.WriteConflict as exc:
        # The card was charged but nothing was recorded; reverse the charge.
        logger.error(
            "Booking changed during payment, refunding charge",
            extra={
                "booking_id": booking.booking_id,
                "transaction_id": result.transaction_id,
                "amount": str(result.amount),
            },
        )
        gateway.refund(result.transaction_id, result.amount)
        raise ConcurrentUpdate() from exc

    logger.info(
        "Payment recorded",
        extra={"booking_id": booking.booking_id, "payment_id": payment.payment_id},
    )
    return confirmed


def cancel_booking(actor: Actor, booking_id: str, *, today: date | None = None) -> Booking:
    booking = dal.get_booking(booking_id)
    is_owner = booking.user_id == actor.user_id
    if not actor.is_admin and not is_owner:
        raise Forbidden("You cannot cancel another user's booking")
    if booking.status in TERMINAL_STATUSES:
        raise InvalidTransition(f"Booking is already {booking.status}")
    if not actor.is_admin and booking.status != "pending":
        raise Forbidden("Only pending bookings can be cancelled; contact an administrator")

    today = today or availability.today_utc()
    try:
        warehouse = dal.get_warehouse(booking.warehouse_id)
    except NotFound:
        warehouse = None

    try:
        if warehouse is None:
            cancelled = dal.set_booking_status(booking, "cancelled")
        else:
            remaining = [
                r
                for r in availability.still_reserved(warehouse.reserved, today)
                if r.booking_id != booking.booking_id
            ]
            cancelled = dal.set_booking_status(
                booking,
                "cancelled",
                warehouse_version=warehouse.booking_version,
                reserved=remaining,
                is_available=availability.is_available(remaining, today),
            )
    except dal.WriteConflict as exc:
        raise ConcurrentUpdate() from exc

    logger.info(
        "Booking cancelled",
        extra={"booking_id": booking.booking_id, "by_admin": actor.is_admin},
    )
    return cancelled


def approve_booking(actor: Actor, booking_id: str) -> Booking:
    if not actor.is_admin:
        raise Forbidden("Only administrators can approve bookings")
    booking = dal.get_booking(booking_id)
    if booking.status != "pending":
        raise InvalidTransition(f"Only pending bookings can be approved; booking is {booking.status}")
    try:
        return dal.set_booking_status(booking, "confirmed")
    except dal.WriteConflict as exc:
        raise ConcurrentUpdate() from exc
