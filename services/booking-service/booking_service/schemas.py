import re
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .availability import parse_time_to_minutes
from .statuses import BookingKind, BookingStatus, DAY_NAMES, HOLD_REASONS

_HHMM = re.compile(r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$")
_PHONE = re.compile(r"^\+?[1-9]\d{1,14}$")


class Actor(BaseModel):
    role: str  # partner / admin / customer / system
    id: Optional[str] = None
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or (f"{self.role}:{self.id}" if self.id else self.role)


SYSTEM_ACTOR = Actor(role="system", name="system")


class Point(BaseModel):
    lat: float
    lng: float


# ---- Booking ----

class AddressIn(BaseModel):
    label: str
    full_address: str
    area: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class BookingItemRequest(BaseModel):
    variant_code: str
    quantity: int = Field(default=1, ge=1, le=10)


class CreateBookingRequest(BaseModel):
    address: AddressIn
    kind: BookingKind
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    items: List[BookingItemRequest]
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("scheduled_time")
    @classmethod
    def _time_parses(cls, value):
        if value is not None and parse_time_to_minutes(value) is None:
            raise ValueError("scheduled_time must be HH:mm or HH:mm AM/PM")
        return value

    @model_validator(mode="after")
    def _check_schedule(self):
        if not self.items:
            raise ValueError("at least one item is required")
        if self.kind == BookingKind.SCHEDULED and (not self.scheduled_date or not self.scheduled_time):
            raise ValueError("scheduled_date and scheduled_time are required for scheduled bookings")
        return self


class RescheduleRequest(BaseModel):
    scheduled_date: date
    scheduled_time: str

    @field_validator("scheduled_time")
    @classmethod
    def _time_parses(cls, value):
        if parse_time_to_minutes(value) is None:
            raise ValueError("scheduled_time must be HH:mm or HH:mm AM/PM")
        return value


class OrderItemResponse(BaseModel):
    id: int
    service_name: str
    variant_name: str
    quantity: int
    final_price: float
    customer_visit_required: bool
    assigned_partner_id: Optional[int] = None
    assigned_location_id: Optional[int] = None
    status: BookingStatus
    hold_history: List[dict] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    active_work_seconds: Optional[int] = None


class BookingResponse(BaseModel):
    booking_id: str
    customer_id: str
    kind: BookingKind
    status: BookingStatus
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    address: AddressIn
    total_amount: float
    total_original_amount: float
    reschedule_count: int
    action_log: List[dict] = Field(default_factory=list)
    items: List[OrderItemResponse] = Field(default_factory=list)


# ---- Item actions ----

class OtpRequest(BaseModel):
    otp: str = Field(min_length=4, max_length=4)


class ProgressUpdate(BaseModel):
    status: BookingStatus

    @field_validator("status")
    @classmethod
    def _provider_statuses(cls, value):
        if value not in (BookingStatus.EN_ROUTE, BookingStatus.REACHED):
            raise ValueError("Use start/end endpoints for other statuses")
        return value


class AdminStatusUpdate(BaseModel):
    status: BookingStatus


class HoldRequest(BaseModel):
    reason: str
    remark: Optional[str] = None

    @model_validator(mode="after")
    def _check_reason(self):
        if self.reason not in HOLD_REASONS:
            raise ValueError(f"Invalid hold reason. Allowed: {list(HOLD_REASONS)}")
        if self.reason == "Other" and not (self.remark or "").strip():
            raise ValueError("A remark is required when the reason is 'Other'")
        return self


class ManualAssignRequest(BaseModel):
    partner_id: int


class JobView(BaseModel):
    """An order item joined with the booking data a partner needs on site."""
    item_id: int
    booking_id: str
    service_name: str
    variant_name: str
    status: BookingStatus
    kind: BookingKind
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    address: str
    coordinates: Optional[Point] = None
    notes: Optional[str] = None


# ---- Partners ----

class AvailabilityEntry(BaseModel):
    day: str
    start_time: str
    end_time: str
    is_available: bool = False

    @field_validator("day")
    @classmethod
    def _day(cls, value):
        day = (value or "").strip().lower()
        if day not in DAY_NAMES:
            raise ValueError(f"Invalid day: {value}")
        return day

    @field_validator("start_time", "end_time")
    @classmethod
    def _hhmm(cls, value):
        if not _HHMM.match(value or ""):
            raise ValueError("Time must be in HH:mm format")
        return value


class CreatePartnerRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    phone: str
    email: Optional[str] = None
    services: List[str] = Field(min_length=1)
    service_regions: List[int] = Field(default_factory=list)
    availability: Optional[List[AvailabilityEntry]] = None
    push_token: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _phone(cls, value):
        value = (value or "").strip()
        if not _PHONE.match(value):
            raise ValueError("Please provide a valid phone number")
        return value


class UpdatePartnerRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = None
    email: Optional[str] = None
    services: Optional[List[str]] = None
    service_regions: Optional[List[int]] = None
    is_active: Optional[bool] = None
    push_token: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _phone(cls, value):
        if value is None:
            return value
        value = value.strip()
        if not _PHONE.match(value):
            raise ValueError("Please provide a valid phone number")
        return value


class SetAvailability(BaseModel):
    availability: List[AvailabilityEntry]


class PartnerResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    name: str
    phone: str
    email: Optional[str] = None
    services: List[str]
    service_regions: List[int]
    availability: List[dict]
    is_active: bool
    last_assigned_at: Optional[datetime] = None


# ---- Push ----

class PushMessage(BaseModel):
    token: str
    title: str
    body: str
    data: dict[str, str]
    sound: Optional[str] = None  # None = silent
    channel: str
    priority: str
