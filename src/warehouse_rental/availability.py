from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime

from aws_lambda_powertools import Logger

from . import dal
from .errors import InvalidRange, Overlap
from .models import AvailabilityDecision, Booking, ReservedRange

logger = Logger()

# Bookings in these states hold their date range against the warehouse.
ACTIVE_STATUSES = frozenset({"pending", "confirmed"})


def today_utc() -> date:
    return datetime.now(UTC).date()


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive test: ranges sharing a single calendar day overlap."""
    return a_start <= b_end and b_start <= a_end


def coerce_date(value: date | str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRange(f"Invalid date: {value!r}") from exc


def holding(entries: Iterable[Booking | ReservedRange]) -> list[Booking | ReservedRange]:
    """Entries that hold their dates: reserved ranges always, bookings only while active."""
    return [e for e in entries if not isinstance(e, Booking) or e.status in ACTIVE_STATUSES]


def reserve(booking: Booking) -> ReservedRange:
    return ReservedRange(booking_id=booking.booking_id, start_date=booking.start_date, end_date=booking.end_date)


def still_reserved(reserved: Iterable[ReservedRange], today: date) -> list[ReservedRange]:
    """Drop ranges that ended before today; no bookable range can reach them."""
    return [r for r in reserved if r.end_date >= today]


def evaluate(
    entries: Iterable[Booking | ReservedRange],
    start_date: date,
    end_date: date,
    *,
    today: date,
) -> AvailabilityDecision:
    """Decide whether ``[start_date, end_date]`` can be booked against ``entries``.

    Pure: callers pass the reserved ranges (or bookings) of one warehouse and the current date.
    """
    if end_date < start_date or start_date < today:
        return AvailabilityDecision(allowed=False, reason="invalid-range")

    for entry in holding(entries):
        if overlaps(entry.start_date, entry.end_date, start_date, end_date):
            return AvailabilityDecision(
                allowed=False,
                reason="overlap",
                conflicting_booking_id=entry.booking_id,
            )
    return AvailabilityDecision(allowed=True)


def raise_for_decision(decision: AvailabilityDecision, start_date: date, end_date: date) -> None:
    if decision.allowed:
        return
    if decision.reason == "overlap":
        raise Overlap()
    if end_date < start_date:
        raise InvalidRange("End date must not be before start date")
    raise InvalidRange("Start date must not be in the past")


def can_book(
    warehouse_id: str,
    start_date: date | str,
    end_date: date | str,
    *,
    today: date | None = None,
) -> AvailabilityDecision:
    try:
        start = coerce_date(start_date)
        end = coerce_date(end_date)
    except InvalidRange:
        return AvailabilityDecision(allowed=False, reason="invalid-range")

    # NotFound propagates for unknown warehouses
    warehouse = dal.get_warehouse(warehouse_id)
    decision = evaluate(warehouse.reserved, start, end, today=today or today_utc())
    if not decision.allowed:
        logger.info(
            "Availability check rejected",
            extra={"warehouse_id": warehouse_id, "reason": decision.reason},
        )
    return decision


def is_available(entries: Iterable[Booking | ReservedRange], today: date) -> bool:
    """Recomputed availability flag: nothing held still covers today or later."""
    return not any(e.end_date >= today for e in holding(entries))
