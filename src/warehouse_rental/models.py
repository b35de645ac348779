from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
Role = Literal["customer", "admin"]
RejectionReason = Literal["overlap", "invalid-range"]


class Actor(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: Role = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class WarehouseCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = ""
    size_sqft: int = Field(..., gt=0)
    price_per_month: Decimal = Field(..., gt=0)
    features: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)


class WarehouseUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    address: str | None = Field(default=None, min_length=1)
    city: str | None = Field(default=None, min_length=1)
    state: str | None = Field(default=None, min_length=1)
    zip_code: str | None = None
    size_sqft: int | None = Field(default=None, gt=0)
    price_per_month: Decimal | None = Field(default=None, gt=0)
    features: list[str] | None = None
    images: list[str] | None = None


class ReservedRange(BaseModel):
    booking_id: str
    start_date: date
    end_date: date


class Warehouse(WarehouseCreate):
    warehouse_id: str
    created_at: datetime
    # derived from `reserved`, never set directly
    is_available: bool = True
    # bumped by every booking write; guards check-then-write races
    booking_version: int = 0
    # date ranges held by pending/confirmed bookings, written in the same
    # transaction as the booking so a consistent read sees all of them
    reserved: list[ReservedRange] = Field(default_factory=list, exclude=True)


class BookingCreate(BaseModel):
    warehouse_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    notes: str | None = Field(default=None, max_length=2000)


class Booking(BaseModel):
    booking_id: str
    warehouse_id: str
    user_id: str
    start_date: date
    end_date: date
    total_amount: Decimal
    status: BookingStatus = "pending"
    payment_status: PaymentStatus = "pending"
    notes: str | None = None
    created_at: datetime


class PaymentDetails(BaseModel):
    card_number: str = Field(..., min_length=12, max_length=23, pattern=r"^[0-9 ]+$")
    expiry_month: str = Field(..., pattern=r"^(0[1-9]|1[0-2])$")
    expiry_year: str = Field(..., pattern=r"^[0-9]{4}$")
    cvv: str = Field(..., pattern=r"^[0-9]{3,4}$")
    cardholder_name: str = ""
    billing_address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""


class GatewayResult(BaseModel):
    transaction_id: str
    status: str
    amount: Decimal


class Payment(BaseModel):
    payment_id: str
    booking_id: str
    amount: Decimal
    payment_method: str = "credit_card"
    transaction_id: str
    status: str
    created_at: datetime


class AvailabilityDecision(BaseModel):
    allowed: bool
    reason: RejectionReason | None = None
    conflicting_booking_id: str | None = None


class Quote(BaseModel):
    day_count: int
    month_equivalent: Decimal
    total_amount: Decimal


class ProfileCreate(BaseModel):
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    full_name: str = ""


class ProfileUpdate(BaseModel):
    # email is owned by the identity provider and stays read-only
    full_name: str | None = None
    company: str | None = None
    phone: str | None = None
    role: Role | None = None


class Profile(BaseModel):
    user_id: str
    email: str
    full_name: str = ""
    company: str = ""
    phone: str = ""
    role: Role = "customer"
    created_at: datetime


class UserSummary(BaseModel):
    profile: Profile
    booking_count: int = 0
    confirmed_bookings: int = 0
    total_spent: Decimal = Decimal("0")


class UserDetail(UserSummary):
    bookings: list[Booking] = Field(default_factory=list)


class DashboardStats(BaseModel):
    total_users: int = 0
    total_warehouses: int = 0
    available_warehouses: int = 0
    total_bookings: int = 0
    pending_bookings: int = 0
    total_revenue: Decimal = Decimal("0")
