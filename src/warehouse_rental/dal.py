from __future__ import annotations

import os
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypedDict, cast

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    # Only for static type checking; not imported at runtime
    from mypy_boto3_dynamodb.client import DynamoDBClient
    from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    # Fallbacks to satisfy annotations at runtime
    DynamoDBClient = Any  # type: ignore[assignment]
    DynamoDBServiceResource = Any  # type: ignore[assignment]
    DynamoDBTable = Any  # type: ignore[assignment]

from .errors import NotFound
from .models import (
    Booking,
    BookingStatus,
    Payment,
    Profile,
    ProfileCreate,
    ProfileUpdate,
    ReservedRange,
    Warehouse,
    WarehouseCreate,
    WarehouseUpdate,
)

logger = Logger()
_WAREHOUSES_TABLE = os.environ.get("WAREHOUSES_TABLE", "warehouses")
_BOOKINGS_TABLE = os.environ.get("BOOKINGS_TABLE", "bookings")
_PAYMENTS_TABLE = os.environ.get("PAYMENTS_TABLE", "payments")
_PROFILES_TABLE = os.environ.get("PROFILES_TABLE", "profiles")

_dynamodb: DynamoDBServiceResource = boto3.resource("dynamodb")
# The resource's client serializes plain Python values, transactions included.
_client: DynamoDBClient = _dynamodb.meta.client
_warehouses: DynamoDBTable = _dynamodb.Table(_WAREHOUSES_TABLE)
_bookings: DynamoDBTable = _dynamodb.Table(_BOOKINGS_TABLE)
_payments: DynamoDBTable = _dynamodb.Table(_PAYMENTS_TABLE)
_profiles: DynamoDBTable = _dynamodb.Table(_PROFILES_TABLE)

WAREHOUSE_NOT_FOUND = "Warehouse not found"
BOOKING_NOT_FOUND = "Booking not found"
PROFILE_NOT_FOUND = "User not found"


class WriteConflict(Exception):
    """A transactional write was cancelled because one of its conditions failed."""


class WarehouseItem(TypedDict, total=False):
    warehouse_id: str
    name: str
    description: str
    address: str
    city: str
    state: str
    zip_code: str
    size_sqft: int
    price_per_month: Decimal
    features: list[str]
    images: list[str]
    is_available: bool
    booking_version: int
    reserved: list[dict[str, str]]
    created_at: str


class BookingItem(TypedDict, total=False):
    booking_id: str
    warehouse_id: str
    user_id: str
    start_date: str
    end_date: str
    total_amount: Decimal
    status: str
    payment_status: str
    notes: str
    created_at: str


def _dt_to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def _iso_to_dt(s: str) -> datetime:
    return datetime.fromisoformat(s)


def _scan_all(table: DynamoDBTable) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    kwargs: dict[str, Any] = {}
    while True:
        resp = cast(dict[str, Any], table.scan(**kwargs))
        items.extend(it for it in resp.get("Items", []) if isinstance(it, dict))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def _query_all(table: DynamoDBTable, index: str, attr: str, value: str) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    kwargs: dict[str, Any] = {
        "IndexName": index,
        "KeyConditionExpression": f"{attr} = :v",
        "ExpressionAttributeValues": {":v": value},
    }
    while True:
        resp = cast(dict[str, Any], table.query(**kwargs))
        items.extend(it for it in resp.get("Items", []) if isinstance(it, dict))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def _update_fields(table: DynamoDBTable, key: dict[str, str], fields: dict[str, Any], not_found: str) -> dict[str, Any]:
    """SET the given attributes on an existing item and return the item as stored."""
    set_parts: list[str] = []
    names: dict[str, str] = {}
    values: dict[str, Any] = {}

    def set_attr(name: str, value: Any) -> None:
        names[f"#_{name}"] = name
        values[f":{name}"] = value
        set_parts.append(f"#_{name} = :{name}")

    for name, value in fields.items():
        set_attr(name, value)

    (key_attr,) = key
    try:
        resp = cast(
            dict[str, Any],
            table.update_item(
                Key=key,
                UpdateExpression="SET " + ", ".join(set_parts),
                ReturnValues="ALL_NEW",
                ConditionExpression=f"attribute_exists({key_attr})",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            ),
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            raise NotFound(not_found) from exc
        raise
    return cast(dict[str, Any], resp.get("Attributes") or {})


def _given_fields(payload: WarehouseUpdate | ProfileUpdate) -> dict[str, Any]:
    return {
        name: getattr(payload, name) for name in payload.model_fields_set if getattr(payload, name) is not None
    }


def _transact(items: list[dict[str, Any]]) -> None:
    try:
        _client.transact_write_items(TransactItems=items)  # type: ignore[arg-type]
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "TransactionCanceledException":
            raise WriteConflict(str(exc)) from exc
        raise


# ---------- warehouses ----------


def create_warehouse(payload: WarehouseCreate) -> Warehouse:
    warehouse = Warehouse(
        warehouse_id=str(uuid.uuid4()),
        created_at=datetime.now(UTC),
        booking_version=0,
        **payload.model_dump(),
    )
    logger.info("Creating warehouse", extra={"warehouse_id": warehouse.warehouse_id})
    _warehouses.put_item(  # type: ignore
        Item=_warehouse_to_item(warehouse),
        ConditionExpression="attribute_not_exists(warehouse_id)",
    )
    return warehouse


def get_warehouse(warehouse_id: str) -> Warehouse:
    # Strongly consistent: booking_version and reserved must reflect every committed booking.
    resp = cast(
        dict[str, Any],
        _warehouses.get_item(Key={"warehouse_id": warehouse_id}, ConsistentRead=True),
    )
    item = resp.get("Item")
    if not isinstance(item, dict):
        raise NotFound(WAREHOUSE_NOT_FOUND)
    return _to_warehouse(cast(WarehouseItem, item))


def list_warehouses() -> list[Warehouse]:
    return [_to_warehouse(cast(WarehouseItem, it)) for it in _scan_all(_warehouses)]


def update_warehouse(warehouse_id: str, payload: WarehouseUpdate) -> Warehouse:
    fields = _given_fields(payload)
    if not fields:
        return get_warehouse(warehouse_id)
    attrs = _update_fields(_warehouses, {"warehouse_id": warehouse_id}, fields, WAREHOUSE_NOT_FOUND)
    return _to_warehouse(cast(WarehouseItem, attrs))


def delete_warehouse(warehouse_id: str) -> None:
    _warehouses.delete_item(Key={"warehouse_id": warehouse_id})


# ---------- bookings ----------


def get_booking(booking_id: str) -> Booking:
    resp = cast(dict[str, Any], _bookings.get_item(Key={"booking_id": booking_id}))
    item = resp.get("Item")
    if not isinstance(item, dict):
        raise NotFound(BOOKING_NOT_FOUND)
    return _to_booking(cast(BookingItem, item))


def list_bookings() -> list[Booking]:
    return [_to_booking(cast(BookingItem, it)) for it in _scan_all(_bookings)]


def list_bookings_for_user(user_id: str) -> list[Booking]:
    items = _query_all(_bookings, "user_id_index", "user_id", user_id)
    return [_to_booking(cast(BookingItem, it)) for it in items]


def _warehouse_guard(
    warehouse_id: str,
    expected_version: int,
    reserved: list[ReservedRange],
    is_available: bool,
) -> dict[str, Any]:
    # Fails the whole transaction if any other booking write touched this warehouse
    # since expected_version was read.
    return {
        "Update": {
            "TableName": _WAREHOUSES_TABLE,
            "Key": {"warehouse_id": warehouse_id},
            "UpdateExpression": "SET #rs = :reserved, #avail = :avail, #bv = :next_bv",
            "ConditionExpression": "attribute_exists(warehouse_id) AND #bv = :bv",
            "ExpressionAttributeNames": {
                "#rs": "reserved",
                "#avail": "is_available",
                "#bv": "booking_version",
            },
            "ExpressionAttributeValues": {
                ":reserved": [_range_to_item(r) for r in reserved],
                ":avail": is_available,
                ":bv": expected_version,
                ":next_bv": expected_version + 1,
            },
        }
    }


def _booking_transition(
    booking_id: str,
    expected_status: BookingStatus,
    changes: dict[str, Any],
    expected_payment_status: str | None = None,
) -> dict[str, Any]:
    names = {"#s": "status"}
    values: dict[str, Any] = {":expected_s": expected_status}
    condition = "attribute_exists(booking_id) AND #s = :expected_s"
    if expected_payment_status is not None:
        names["#ps"] = "payment_status"
        values[":expected_ps"] = expected_payment_status
        condition += " AND #ps = :expected_ps"

    set_parts: list[str] = []
    for name, value in changes.items():
        names[f"#_{name}"] = name
        values[f":{name}"] = value
        set_parts.append(f"#_{name} = :{name}")

    return {
        "Update": {
            "TableName": _BOOKINGS_TABLE,
            "Key": {"booking_id": booking_id},
            "UpdateExpression": "SET " + ", ".join(set_parts),
            "ConditionExpression": condition,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
    }


def insert_booking(
    booking: Booking,
    *,
    expected_version: int,
    reserved: list[ReservedRange],
    is_available: bool,
) -> Booking:
    """Persist a new booking and replace its warehouse's reserved ranges in one transaction.

    ``reserved`` is the full new list, the booking's own range included.
    Raises WriteConflict when the warehouse's booking set changed after
    ``expected_version`` was read, i.e. the availability check lost a race.
    """
    logger.info(
        "Inserting booking",
        extra={"booking_id": booking.booking_id, "warehouse_id": booking.warehouse_id},
    )
    _transact(
        [
            {
                "Put": {
                    "TableName": _BOOKINGS_TABLE,
                    "Item": _booking_to_item(booking),
                    "ConditionExpression": "attribute_not_exists(booking_id)",
                }
            },
            _warehouse_guard(booking.warehouse_id, expected_version, reserved, is_available),
        ]
    )
    return booking


def record_payment(booking: Booking, payment: Payment) -> Booking:
    _transact(
        [
            _booking_transition(
                booking.booking_id,
                booking.status,
                {"status": "confirmed", "payment_status": "paid"},
                expected_payment_status="pending",
            ),
            {
                "Put": {
                    "TableName": _PAYMENTS_TABLE,
                    "Item": _payment_to_item(payment),
                    "ConditionExpression": "attribute_not_exists(payment_id)",
                }
            },
        ]
    )
    return booking.model_copy(update={"status": "confirmed", "payment_status": "paid"})


def set_booking_status(
    booking: Booking,
    status: BookingStatus,
    *,
    warehouse_version: int | None = None,
    reserved: list[ReservedRange] | None = None,
    is_available: bool = True,
) -> Booking:
    """Move ``booking`` to ``status``; with ``warehouse_version`` also rewrite the warehouse's ranges."""
    items = [_booking_transition(booking.booking_id, booking.status, {"status": status})]
    if warehouse_version is not None:
        items.append(_warehouse_guard(booking.warehouse_id, warehouse_version, reserved or [], is_available))
    _transact(items)
    return booking.model_copy(update={"status": status})


def list_payments_for_booking(booking_id: str) -> list[Payment]:
    items = _query_all(_payments, "booking_id_index", "booking_id", booking_id)
    return [_to_payment(it) for it in items]


# ---------- profiles ----------


def ensure_profile(user_id: str, payload: ProfileCreate) -> Profile:
    """Create the caller's profile on first sign-in; an existing profile is returned unchanged."""
    profile = Profile(
        user_id=user_id,
        email=payload.email,
        full_name=payload.full_name,
        role="customer",
        created_at=datetime.now(UTC),
    )
    try:
        _profiles.put_item(  # type: ignore
            Item=_profile_to_item(profile),
            ConditionExpression="attribute_not_exists(user_id)",
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            return get_profile(user_id)
        raise
    logger.info("Created profile", extra={"user_id": user_id})
    return profile


def get_profile(user_id: str) -> Profile:
    resp = cast(dict[str, Any], _profiles.get_item(Key={"user_id": user_id}))
    item = resp.get("Item")
    if not isinstance(item, dict):
        raise NotFound(PROFILE_NOT_FOUND)
    return _to_profile(item)


def list_profiles() -> list[Profile]:
    return [_to_profile(it) for it in _scan_all(_profiles)]


def update_profile(user_id: str, payload: ProfileUpdate) -> Profile:
    fields = _given_fields(payload)
    if not fields:
        return get_profile(user_id)
    if "role" in fields:
        logger.info("Changing user role", extra={"user_id": user_id, "role": fields["role"]})
    return _to_profile(_update_fields(_profiles, {"user_id": user_id}, fields, PROFILE_NOT_FOUND))


# ---------- item mapping ----------


def _range_to_item(reserved: ReservedRange) -> dict[str, str]:
    return {
        "booking_id": reserved.booking_id,
        "start_date": reserved.start_date.isoformat(),
        "end_date": reserved.end_date.isoformat(),
    }


def _to_range(item: dict[str, str]) -> ReservedRange:
    return ReservedRange(
        booking_id=item["booking_id"],
        start_date=date.fromisoformat(item["start_date"]),
        end_date=date.fromisoformat(item["end_date"]),
    )


def _warehouse_to_item(warehouse: Warehouse) -> WarehouseItem:
    # model_dump leaves out `reserved`, which never goes over the API
    item = cast(WarehouseItem, warehouse.model_dump(exclude={"created_at"}))
    item["reserved"] = [_range_to_item(r) for r in warehouse.reserved]
    item["created_at"] = _dt_to_iso(warehouse.created_at)
    return item


def _to_warehouse(item: WarehouseItem) -> Warehouse:
    return Warehouse(
        warehouse_id=item["warehouse_id"],
        name=item["name"],
        description=item.get("description", ""),
        address=item["address"],
        city=item["city"],
        state=item["state"],
        zip_code=item.get("zip_code", ""),
        size_sqft=int(item["size_sqft"]),
        price_per_month=Decimal(item["price_per_month"]),
        features=list(item.get("features") or []),
        images=list(item.get("images") or []),
        is_available=bool(item.get("is_available", True)),
        booking_version=int(item.get("booking_version", 0)),
        reserved=[_to_range(r) for r in item.get("reserved") or []],
        created_at=_iso_to_dt(item["created_at"]),
    )


def _booking_to_item(booking: Booking) -> BookingItem:
    item: BookingItem = {
        "booking_id": booking.booking_id,
        "warehouse_id": booking.warehouse_id,
        "user_id": booking.user_id,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "total_amount": booking.total_amount,
        "status": booking.status,
        "payment_status": booking.payment_status,
        "created_at": _dt_to_iso(booking.created_at),
    }
    if booking.notes:
        item["notes"] = booking.notes
    return item


def _to_booking(item: BookingItem) -> Booking:
    return Booking(
        booking_id=item["booking_id"],
        warehouse_id=item["warehouse_id"],
        user_id=item["user_id"],
        start_date=date.fromisoformat(item["start_date"]),
        end_date=date.fromisoformat(item["end_date"]),
        total_amount=Decimal(item["total_amount"]),
        status=item.get("status", "pending"),  # type: ignore[arg-type]
        payment_status=item.get("payment_status", "pending"),  # type: ignore[arg-type]
        notes=item.get("notes"),
        created_at=_iso_to_dt(item["created_at"]),
    )


def _payment_to_item(payment: Payment) -> dict[str, Any]:
    item = payment.model_dump(exclude={"created_at"})
    item["created_at"] = _dt_to_iso(payment.created_at)
    return item


def _to_payment(item: dict[str, Any]) -> Payment:
    return Payment(
        payment_id=item["payment_id"],
        booking_id=item["booking_id"],
        amount=Decimal(item["amount"]),
        payment_method=item.get("payment_method", "credit_card"),
        transaction_id=item["transaction_id"],
        status=item["status"],
        created_at=_iso_to_dt(item["created_at"]),
    )


def _profile_to_item(profile: Profile) -> dict[str, Any]:
    item = profile.model_dump(exclude={"created_at"})
    item["created_at"] = _dt_to_iso(profile.created_at)
    return item


def _to_profile(item: dict[str, Any]) -> Profile:
    return Profile(
        user_id=item["user_id"],
        email=item.get("email", ""),
        full_name=item.get("full_name") or "",
        company=item.get("company") or "",
        phone=item.get("phone") or "",
        role="admin" if item.get("role") == "admin" else "customer",
        created_at=_iso_to_dt(item["created_at"]),
    )
