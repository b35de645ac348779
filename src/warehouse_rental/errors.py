from __future__ import annotations


class BookingRejected(Exception):
    """Recoverable rejection surfaced to the caller with a readable reason.

    Raising one of these guarantees nothing was written.
    """

    code = "rejected"
    default_reason = "Request rejected"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class InvalidRange(BookingRejected):
    code = "invalid-range"
    default_reason = "Invalid date range"


class Overlap(BookingRejected):
    code = "overlap"
    default_reason = "Warehouse is already booked for the selected dates"


class NotFound(BookingRejected):
    code = "not-found"
    default_reason = "Not found"


class Forbidden(BookingRejected):
    code = "forbidden"
    default_reason = "Not allowed"


class PaymentDeclined(BookingRejected):
    code = "payment-declined"
    default_reason = "Payment failed. Please try again."


class InvalidTransition(BookingRejected):
    code = "invalid-transition"
    default_reason = "Booking cannot make this transition from its current state"


class ConcurrentUpdate(BookingRejected):
    code = "concurrent-update"
    default_reason = "Booking changed while the request was in flight"


class IntegrityViolation(Exception):
    """Fatal: the operation was aborted and must be alerted on, never shown as validation."""
