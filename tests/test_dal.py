from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from conftest import booking_factory, profile_factory

from warehouse_rental import dal
from warehouse_rental.errors import NotFound
from warehouse_rental.models import ProfileCreate, ProfileUpdate, ReservedRange, WarehouseCreate, WarehouseUpdate


def _warehouse_payload(**overrides) -> WarehouseCreate:
    base = dict(
        name="North Hub",
        address="9 Freight Way",
        city="Reno",
        state="NV",
        zip_code="89502",
        size_sqft=8000,
        price_per_month=Decimal("2500.00"),
        features=["forklift_access"],
    )
    base.update(overrides)
    return WarehouseCreate(**base)


def test_create_and_get_warehouse(store):
    created = dal.create_warehouse(_warehouse_payload())
    fetched = dal.get_warehouse(created.warehouse_id)
    assert fetched.name == "North Hub"
    assert fetched.price_per_month == Decimal("2500.00")
    assert fetched.booking_version == 0
    assert fetched.is_available is True
    assert fetched.created_at.tzinfo is not None


def test_get_warehouse_not_found(store):
    with pytest.raises(NotFound):
        dal.get_warehouse("does-not-exist")


def test_update_warehouse_changes_only_given_fields(store):
    created = dal.create_warehouse(_warehouse_payload())
    updated = dal.update_warehouse(
        created.warehouse_id,
        WarehouseUpdate(price_per_month=Decimal("2750"), features=["forklift_access", "parking"]),
    )
    assert updated.price_per_month == Decimal("2750")
    assert updated.features == ["forklift_access", "parking"]
    assert updated.city == "Reno"


def test_update_warehouse_noop_returns_current(store):
    created = dal.create_warehouse(_warehouse_payload())
    assert dal.update_warehouse(created.warehouse_id, WarehouseUpdate()).name == created.name


def test_update_missing_warehouse_raises_not_found(store):
    with pytest.raises(NotFound):
        dal.update_warehouse("missing", WarehouseUpdate(name="x"))


def test_delete_warehouse_then_get_raises(store):
    created = dal.create_warehouse(_warehouse_payload())
    dal.delete_warehouse(created.warehouse_id)
    with pytest.raises(NotFound):
        dal.get_warehouse(created.warehouse_id)


def _range(booking_id="b-123", start=date(2024, 1, 1), end=date(2024, 1, 10)) -> ReservedRange:
    return ReservedRange(booking_id=booking_id, start_date=start, end_date=end)


def test_get_warehouse_reads_consistently(store, warehouse):
    dal.get_warehouse(warehouse.warehouse_id)
    assert store.warehouses.consistent_reads[-1] is True


def test_insert_booking_reserves_dates_and_bumps_version(store, warehouse):
    booking = booking_factory(notes="ground floor please")
    dal.insert_booking(booking, expected_version=0, reserved=[_range()], is_available=False)

    stored = dal.get_booking(booking.booking_id)
    assert stored.notes == "ground floor please"
    assert stored.start_date == date(2024, 1, 1)
    assert stored.total_amount == Decimal("985.55")

    w = dal.get_warehouse(warehouse.warehouse_id)
    assert w.is_available is False
    assert w.booking_version == 1
    assert w.reserved == [_range()]
    assert store.warehouses.items["w-1"]["reserved"] == [
        {"booking_id": "b-123", "start_date": "2024-01-01", "end_date": "2024-01-10"}
    ]


def test_reserved_ranges_stay_out_of_the_api_shape(store, warehouse):
    dal.insert_booking(booking_factory(), expected_version=0, reserved=[_range()], is_available=False)
    assert "reserved" not in dal.get_warehouse(warehouse.warehouse_id).model_dump()


def test_insert_booking_with_stale_version_writes_nothing(store, warehouse):
    dal.insert_booking(
        booking_factory(booking_id="first"), expected_version=0, reserved=[_range("first")], is_available=False
    )

    with pytest.raises(dal.WriteConflict):
        dal.insert_booking(
            booking_factory(booking_id="second"), expected_version=0, reserved=[_range("second")], is_available=False
        )

    assert "second" not in store.bookings.items
    w = dal.get_warehouse(warehouse.warehouse_id)
    assert w.booking_version == 1
    assert [r.booking_id for r in w.reserved] == ["first"]


def test_list_bookings_for_user(store, warehouse):
    dal.insert_booking(
        booking_factory(booking_id="b1", user_id="u1"), expected_version=0, reserved=[], is_available=False
    )
    dal.insert_booking(
        booking_factory(booking_id="b2", user_id="u2", start_date=date(2024, 2, 1), end_date=date(2024, 2, 2)),
        expected_version=1,
        reserved=[],
        is_available=False,
    )
    assert [b.booking_id for b in dal.list_bookings_for_user("u1")] == ["b1"]
    assert len(dal.list_bookings()) == 2  # noqa: PLR2004


def test_set_booking_status_requires_expected_status(store, warehouse):
    booking = booking_factory()
    dal.insert_booking(booking, expected_version=0, reserved=[_range()], is_available=False)
    dal.set_booking_status(booking, "confirmed")

    # booking object still says pending, store says confirmed
    with pytest.raises(dal.WriteConflict):
        dal.set_booking_status(booking, "cancelled")
    assert dal.get_booking(booking.booking_id).status == "confirmed"


def test_set_booking_status_rewrites_reserved_ranges(store, warehouse):
    booking = booking_factory()
    dal.insert_booking(booking, expected_version=0, reserved=[_range()], is_available=False)
    dal.set_booking_status(booking, "cancelled", warehouse_version=1, reserved=[], is_available=True)

    w = dal.get_warehouse(warehouse.warehouse_id)
    assert w.reserved == []
    assert w.is_available is True
    assert w.booking_version == 2  # noqa: PLR2004


def test_ensure_profile_creates_customer_once(store):
    created = dal.ensure_profile("u-9", ProfileCreate(email="kim@example.com", full_name="Kim Park"))
    assert created.role == "customer"

    again = dal.ensure_profile("u-9", ProfileCreate(email="other@example.com"))
    assert again.email == "kim@example.com"
    assert again.full_name == "Kim Park"
    assert len(store.profiles.items) == 1


def test_update_profile_changes_role_and_details(store):
    store.profiles.put_item(Item=dal._profile_to_item(profile_factory()))
    updated = dal.update_profile("u-1", ProfileUpdate(role="admin", phone="555-0199"))
    assert updated.role == "admin"
    assert updated.phone == "555-0199"
    assert updated.email == "dana@example.com"
    assert [p.user_id for p in dal.list_profiles()] == ["u-1"]


def test_update_missing_profile_raises_not_found(store):
    with pytest.raises(NotFound):
        dal.update_profile("ghost", ProfileUpdate(full_name="x"))
    with pytest.raises(NotFound):
        dal.get_profile("ghost")


def test_warehouse_update_ignores_availability_flag():
    # the flag is derived from reserved ranges and cannot be set by hand
    assert "is_available" not in WarehouseUpdate.model_fields
    assert WarehouseUpdate.model_validate({"is_available": False}).model_fields_set == set()
