"""Pydantic data models used by the booking flow and in API responses.

These models are the canonical internal representation of backend data.
They are separate from the raw backend payloads (see ``normalize``) so
the rest of the code never has to guess at response shapes. Attributes are
snake_case; JSON output uses the camelCase names the portal frontend
expects.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Occupant statuses that take up a bed.
ACTIVE_OCCUPANT_STATUSES = frozenset({"approved", "checked_in"})

# Payment statuses after which nothing more is owed.
SETTLED_PAYMENT_STATUSES = frozenset({"paid", "success", "settlement", "verified"})


class PortalModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class RoomCategory(str, Enum):
    FEMALE = "perempuan"
    MALE = "laki_laki"
    VIP = "VIP"
    MEETING_ROOM = "ruang_rapat"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "RoomCategory":
        for member in cls:
            if member.value == name:
                return member
        return cls.OTHER


class RentalPeriod(str, Enum):
    DAILY = "harian"
    MONTHLY = "bulanan"


class Classification(PortalModel):
    classification_id: Optional[int] = None
    name: str = ""
    display_name: Optional[str] = None

    @property
    def category(self) -> RoomCategory:
        return RoomCategory.from_name(self.name)


class RentalType(PortalModel):
    rental_type_id: Optional[int] = None
    name: str = RentalPeriod.DAILY.value

    @property
    def period(self) -> RentalPeriod:
        if self.name == RentalPeriod.MONTHLY.value:
            return RentalPeriod.MONTHLY
        return RentalPeriod.DAILY


class Occupant(PortalModel):
    tenant_id: Optional[int] = None
    name: Optional[str] = None
    status: str = ""
    check_in: Optional[date] = None
    check_out: Optional[date] = None

    @property
    def is_active(self) -> bool:
        """Only approved and checked-in occupants count toward occupancy."""
        return self.status in ACTIVE_OCCUPANT_STATUSES


class Room(PortalModel):
    room_id: int
    name: str
    classification: Classification = Classification()
    rental_type: RentalType = RentalType()
    rate: float = 0.0
    capacity: int
    occupants: List[Occupant] = []
    description: Optional[str] = None

    @property
    def is_meeting_room(self) -> bool:
        return self.classification.category is RoomCategory.MEETING_ROOM

    @property
    def occupied_count(self) -> int:
        return sum(1 for o in self.occupants if o.is_active)


class Occupancy(PortalModel):
    capacity: int
    occupied_slots: int
    available_slots: int
    occupancy_percentage: int
    is_fully_booked: bool
    status: str
    over_capacity: bool = False


class Tenant(PortalModel):
    tenant_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    tenant_type: Optional[str] = None
    nim: Optional[str] = None
    gender: Optional[str] = None


class BookingDraft(PortalModel):
    """A booking being filled in. Never persisted locally."""

    room_id: int
    tenant_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None


class Booking(PortalModel):
    booking_id: Optional[int] = None
    room_id: Optional[int] = None
    tenant_id: Optional[int] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    total_amount: Optional[float] = None
    status: Optional[str] = None
    payment_status: str = "pending"


class TenantRegistration(PortalModel):
    """Sign-up form for a new tenant. Accepts snake_case or camelCase keys."""

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    password: str = Field(min_length=8)
    phone: str = Field(min_length=1, max_length=20)
    address: str = Field(min_length=1)
    gender: Literal["L", "P"]
    tenant_type: Literal["mahasiswa", "non-mahasiswa"]
    nim: Optional[str] = Field(default=None, max_length=255)
    home_latitude: float
    home_longitude: float
    type_id: Literal[1, 2]

    @model_validator(mode="after")
    def _student_needs_nim(self) -> "TenantRegistration":
        if self.tenant_type == "mahasiswa" and not (self.nim or "").strip():
            raise ValueError("NIM is required for student tenants")
        return self


class Invoice(PortalModel):
    invoice_id: Optional[int] = None
    invoice_no: Optional[str] = None
    booking_id: Optional[int] = None
    amount: Optional[float] = None
    issued_at: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[str] = None


class Payment(PortalModel):
    payment_id: Optional[int] = None
    invoice_id: Optional[int] = None
    booking_id: Optional[int] = None
    amount: Optional[float] = None
    status: Optional[str] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_date: Optional[date] = None
    created_at: Optional[date] = None
    notes: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_PAYMENT_STATUSES


class TenantDocument(PortalModel):
    document_id: Optional[str] = None
    doc_type_id: Optional[int] = None
    document_type: Optional[str] = None
    file_name: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[date] = None


class RateQuote(PortalModel):
    room_id: int
    rental_type_id: int
    period: RentalPeriod
    amount: float = 0.0
    is_set: bool = False


class DateSpan(PortalModel):
    """An inclusive range of calendar days."""

    start: date
    end: date

    def intersects(self, start: date, end: date) -> bool:
        return self.start <= end and start <= self.end


class AvailabilityResult(PortalModel):
    is_date_available: bool
    is_capacity_available: bool
    available_slots: Optional[int] = None
    unavailable_dates: List[DateSpan] = []
    capacity_checked: bool = False
    warnings: List[str] = []


class Notice(PortalModel):
    """A user-facing message produced by the booking flow."""

    level: str
    title: str
    message: str
