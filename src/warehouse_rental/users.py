"""Admin views over user profiles and the bookings they hold."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal

from . import dal
from .models import Booking, Profile, UserDetail, UserSummary


def summarize(profile: Profile, bookings: Iterable[Booking]) -> UserSummary:
    summary = UserSummary(profile=profile)
    spent = Decimal("0")
    for booking in bookings:
        summary.booking_count += 1
        if booking.status == "confirmed":
            summary.confirmed_bookings += 1
        # only settled money counts, matching dashboard revenue
        if booking.payment_status == "paid":
            spent += booking.total_amount
    summary.total_spent = spent
    return summary


def list_users() -> list[UserSummary]:
    by_user: dict[str, list[Booking]] = defaultdict(list)
    for booking in dal.list_bookings():
        by_user[booking.user_id].append(booking)
    profiles = sorted(dal.list_profiles(), key=lambda p: p.created_at, reverse=True)
    return [summarize(p, by_user.get(p.user_id, [])) for p in profiles]


def get_user(user_id: str) -> UserDetail:
    profile = dal.get_profile(user_id)
    bookings = sorted(dal.list_bookings_for_user(user_id), key=lambda b: b.created_at, reverse=True)
    summary = summarize(profile, bookings)
    return UserDetail(**summary.model_dump(), bookings=bookings)
