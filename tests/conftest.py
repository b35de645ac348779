from __future__ import annotations

import copy
import os
import re
from datetime import UTC, date, datetime
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import pytest
from botocore.exceptions import ClientError

# boto3.resource() needs a region at import time
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "WarehouseRental")

from warehouse_rental import dal  # noqa: E402
from warehouse_rental.models import Booking, Profile, Warehouse  # noqa: E402

_EXISTS = re.compile(r"attribute_(not_)?exists\((\S+)\)")


def _condition_holds(
    item: dict[str, Any] | None,
    expression: str | None,
    names: dict[str, str],
    values: dict[str, Any],
) -> bool:
    # Understands the subset the DAL writes: attribute_[not_]exists(x) and "#a = :v", joined by AND.
    if not expression:
        return True
    for clause in (c.strip() for c in expression.split(" AND ")):
        m = _EXISTS.fullmatch(clause)
        if m:
            attr = names.get(m.group(2), m.group(2))
            present = item is not None and attr in item
            if present == bool(m.group(1)):
                return False
            continue
        left, right = (s.strip() for s in clause.split("="))
        attr = names.get(left, left)
        if item is None or item.get(attr) != values[right]:
            return False
    return True


def _apply_set(item: dict[str, Any], expression: str, names: dict[str, str], values: dict[str, Any]) -> None:
    set_part = expression.split("SET", 1)[1]
    for assign in (s.strip() for s in set_part.split(",") if s.strip()):
        name, val = (s.strip() for s in assign.split("="))
        item[names.get(name, name)] = copy.deepcopy(values[val])


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "The conditional request failed"}}, operation)


class FakeTable:
    def __init__(self, key: str):
        self.key = key
        self.items: dict[str, dict[str, Any]] = {}
        self.consistent_reads: list[bool] = []

    def put_item(self, Item, ConditionExpression=None, **kwargs):  # noqa NOSONAR
        current = self.items.get(Item[self.key])
        if not _condition_holds(current, ConditionExpression, {}, {}):
            raise _client_error("ConditionalCheckFailedException", "PutItem")
        self.items[Item[self.key]] = copy.deepcopy(dict(Item))

    def get_item(self, Key, ConsistentRead=False):  # noqa NOSONAR
        self.consistent_reads.append(ConsistentRead)
        item = self.items.get(Key[self.key])
        return {"Item": copy.deepcopy(item)} if item else {}

    def update_item(self, **kwargs):
        key = kwargs["Key"][self.key]
        names = kwargs.get("ExpressionAttributeNames") or {}
        values = kwargs.get("ExpressionAttributeValues") or {}
        current = self.items.get(key)
        if not _condition_holds(current, kwargs.get("ConditionExpression"), names, values):
            raise _client_error("ConditionalCheckFailedException", "UpdateItem")
        attrs = current if current is not None else {self.key: key}
        _apply_set(attrs, kwargs["UpdateExpression"], names, values)
        self.items[key] = attrs
        return {"Attributes": copy.deepcopy(attrs)}

    def delete_item(self, Key):  # noqa NOSONAR
        self.items.pop(Key[self.key], None)

    def query(self, **kwargs):
        attr, placeholder = (s.strip() for s in kwargs["KeyConditionExpression"].split("="))
        value = kwargs["ExpressionAttributeValues"][placeholder]
        return {"Items": [copy.deepcopy(it) for it in self.items.values() if it.get(attr) == value]}

    def scan(self, **kwargs):
        return {"Items": [copy.deepcopy(it) for it in self.items.values()]}


class FakeClient:
    """transact_write_items over FakeTables: every condition is checked before anything is applied."""

    def __init__(self, tables: dict[str, FakeTable]):
        self.tables = tables
        self.transactions: list[list[dict[str, Any]]] = []

    def transact_write_items(self, TransactItems):  # noqa NOSONAR
        for entry in TransactItems:
            (op, spec), = entry.items()
            table = self.tables[spec["TableName"]]
            key = (spec["Item"] if op == "Put" else spec["Key"])[table.key]
            holds = _condition_holds(
                table.items.get(key),
                spec.get("ConditionExpression"),
                spec.get("ExpressionAttributeNames") or {},
                spec.get("ExpressionAttributeValues") or {},
            )
            if not holds:
                raise _client_error("TransactionCanceledException", "TransactWriteItems")

        for entry in TransactItems:
            (op, spec), = entry.items()
            table = self.tables[spec["TableName"]]
            if op == "Put":
                table.items[spec["Item"][table.key]] = copy.deepcopy(dict(spec["Item"]))
            elif op == "Update":
                key = spec["Key"][table.key]
                attrs = table.items.setdefault(key, {table.key: key})
                _apply_set(
                    attrs,
                    spec["UpdateExpression"],
                    spec.get("ExpressionAttributeNames") or {},
                    spec.get("ExpressionAttributeValues") or {},
                )
        self.transactions.append(TransactItems)
        return {}


@pytest.fixture()
def store(monkeypatch: pytest.MonkeyPatch) -> SimpleNamespace:
    warehouses = FakeTable("warehouse_id")
    bookings = FakeTable("booking_id")
    payments = FakeTable("payment_id")
    profiles = FakeTable("user_id")
    monkeypatch.setattr(dal, "_warehouses", warehouses)
    monkeypatch.setattr(dal, "_bookings", bookings)
    monkeypatch.setattr(dal, "_payments", payments)
    monkeypatch.setattr(dal, "_profiles", profiles)
    client = FakeClient(
        {
            dal._WAREHOUSES_TABLE: warehouses,
            dal._BOOKINGS_TABLE: bookings,
            dal._PAYMENTS_TABLE: payments,
            dal._PROFILES_TABLE: profiles,
        }
    )
    monkeypatch.setattr(dal, "_client", client)
    return SimpleNamespace(
        warehouses=warehouses, bookings=bookings, payments=payments, profiles=profiles, client=client
    )


@pytest.fixture()
def warehouse(store: SimpleNamespace) -> Warehouse:
    w = warehouse_factory()
    store.warehouses.put_item(Item=dal._warehouse_to_item(w))
    return w


def warehouse_factory(**overrides: Any) -> Warehouse:
    base: dict[str, Any] = dict(
        warehouse_id="w-1",
        name="Riverside Depot",
        description="Dry storage near the port",
        address="1 Dock Rd",
        city="Oakland",
        state="CA",
        zip_code="94607",
        size_sqft=12000,
        price_per_month=Decimal("3000"),
        features=["loading_dock", "security_cameras"],
        images=[],
        is_available=True,
        booking_version=0,
        created_at=datetime(2023, 12, 1, tzinfo=UTC),
    )
    base.update(overrides)
    return Warehouse(**base)


def booking_factory(**overrides: Any) -> Booking:
    base: dict[str, Any] = dict(
        booking_id="b-123",
        warehouse_id="w-1",
        user_id="u-1",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 10),
        total_amount=Decimal("985.55"),
        status="pending",
        payment_status="pending",
        notes=None,
        created_at=datetime(2023, 12, 15, tzinfo=UTC),
    )
    base.update(overrides)
    return Booking(**base)


def profile_factory(**overrides: Any) -> Profile:
    base: dict[str, Any] = dict(
        user_id="u-1",
        email="dana@example.com",
        full_name="Dana Lee",
        company="Lee Logistics",
        phone="555-0100",
        role="customer",
        created_at=datetime(2023, 11, 1, tzinfo=UTC),
    )
    base.update(overrides)
    return Profile(**base)
