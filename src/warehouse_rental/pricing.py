from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from .errors import InvalidRange
from .models import Quote

# Average month length; deliberately not calendar accurate.
AVERAGE_DAYS_PER_MONTH = Decimal("30.44")

_CENTS = Decimal("0.01")
_MONTH_PLACES = Decimal("0.0001")


def _as_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 stays 0.1 instead of its binary expansion
    return Decimal(str(value))


def day_count(start_date: date, end_date: date) -> int:
    """Number of rented days, counting both endpoints."""
    if end_date < start_date:
        raise InvalidRange("End date must not be before start date")
    return (end_date - start_date).days + 1


def compute_total(monthly_rate: Decimal | int | float | str, start_date: date, end_date: date) -> Decimal:
    """Pro-rate ``monthly_rate`` over the inclusive day count, rounded half-up to cents.

    A one-day booking yields a small nonzero amount; there is no minimum charge.
    """
    days = day_count(start_date, end_date)
    amount = _as_decimal(monthly_rate) * days / AVERAGE_DAYS_PER_MONTH
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def quote(monthly_rate: Decimal | int | float | str, start_date: date, end_date: date) -> Quote:
    days = day_count(start_date, end_date)
    months = (Decimal(days) / AVERAGE_DAYS_PER_MONTH).quantize(_MONTH_PLACES, rounding=ROUND_HALF_UP)
    return Quote(
        day_count=days,
        month_equivalent=months,
        total_amount=compute_total(monthly_rate, start_date, end_date),
    )
