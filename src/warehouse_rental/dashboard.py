from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from .models import Booking, DashboardStats, Profile, Warehouse


def build_stats(
    warehouses: Iterable[Warehouse],
    bookings: Iterable[Booking],
    profiles: Iterable[Profile] = (),
) -> DashboardStats:
    stats = DashboardStats(total_users=sum(1 for _ in profiles))
    for warehouse in warehouses:
        stats.total_warehouses += 1
        if warehouse.is_available:
            stats.available_warehouses += 1

    revenue = Decimal("0")
    for booking in bookings:
        stats.total_bookings += 1
        if booking.status == "pending":
            stats.pending_bookings += 1
        if booking.payment_status == "paid":
            revenue += booking.total_amount
    stats.total_revenue = revenue
    return stats
