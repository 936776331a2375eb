from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
)
from sqlalchemy.orm import validates

from .db import Base
from .statuses import AlertStatus, BookingKind, BookingStatus, DAY_NAMES, PaymentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_availability() -> list[dict]:
    return [
        {"day": day, "start_time": "09:00", "end_time": "17:00", "is_available": False}
        for day in DAY_NAMES
    ]


def _status_enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=32, validate_strings=True)


class ServiceRegion(Base):
    __tablename__ = "service_regions"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    city = Column(String, nullable=False)
    polygon = Column(JSON, nullable=False)  # [{"lat": .., "lng": ..}, ...]
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    code = Column(String, unique=True, nullable=False, index=True)  # referenced by partner.services
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class ServiceVariant(Base):
    __tablename__ = "service_variants"

    id = Column(Integer, primary_key=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    code = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    original_price = Column(Float, nullable=False)
    final_price = Column(Float, nullable=False)
    credit_value = Column(Float, nullable=False, default=0)
    estimated_time_minutes = Column(Integer, nullable=False, default=60)
    customer_visit_required = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True)
    phone = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(String, nullable=False, default="partner")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ServicePartner(Base):
    __tablename__ = "service_partners"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True, unique=True)
    name = Column(String, nullable=False)
    phone = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=True)

    services = Column(JSON, nullable=False, default=list)  # service codes
    service_regions = Column(JSON, nullable=False, default=list)  # region ids, empty = everywhere
    availability = Column(JSON, nullable=False, default=default_availability)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    rating = Column(Float, nullable=False, default=0)
    last_assigned_at = Column(DateTime(timezone=True), nullable=True)

    push_token = Column(String, nullable=True)
    push_token_updated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    booking_ref = Column(String, unique=True, nullable=False, index=True)  # BOOK-YYYYMMDD-NNN
    customer_id = Column(String, nullable=False, index=True)

    address_label = Column(String, nullable=False)
    address_full = Column(String, nullable=False)
    address_area = Column(String, nullable=True)
    address_lat = Column(Float, nullable=True)
    address_lng = Column(Float, nullable=True)

    kind = Column(_status_enum(BookingKind), nullable=False)
    scheduled_date = Column(Date, nullable=True)
    scheduled_time = Column(String, nullable=True)

    status = Column(_status_enum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    payment_status = Column(_status_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    total_amount = Column(Float, nullable=False, default=0)
    total_original_amount = Column(Float, nullable=False, default=0)
    item_total = Column(Float, nullable=False, default=0)
    credits_used = Column(Float, nullable=False, default=0)

    reschedule_count = Column(Integer, nullable=False, default=0)
    action_log = Column(JSON, nullable=False, default=list)
    notes = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def coordinates(self) -> dict | None:
        if self.address_lat is None or self.address_lng is None:
            return None
        return {"lat": self.address_lat, "lng": self.address_lng}

    def log_action(self, action: str, actor: str, detail: str | None = None, at: datetime | None = None):
        entry = {
            "action": action,
            "actor": actor,
            "at": (at or utcnow()).isoformat(),
            "detail": detail,
        }
        # reassign so the JSON column is flagged dirty
        self.action_log = [*(self.action_log or []), entry]


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)

    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    service_variant_id = Column(Integer, ForeignKey("service_variants.id"), nullable=False)
    service_name = Column(String, nullable=False)
    variant_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    original_price = Column(Float, nullable=False)
    final_price = Column(Float, nullable=False)
    credit_value = Column(Float, nullable=False, default=0)
    estimated_time_minutes = Column(Integer, nullable=False, default=60)
    customer_visit_required = Column(Boolean, nullable=False, default=True)

    assigned_partner_id = Column(Integer, ForeignKey("service_partners.id"), nullable=True, index=True)
    assigned_location_id = Column(Integer, nullable=True)

    start_job_otp = Column(String(4), nullable=True)
    end_job_otp = Column(String(4), nullable=True)

    hold_history = Column(JSON, nullable=False, default=list)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(_status_enum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # compare-and-swap on every UPDATE; a stale writer gets StaleDataError
    __mapper_args__ = {"version_id_col": version}

    @validates("start_job_otp", "end_job_otp")
    def _otp_is_write_once(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"{key} is immutable once set")
        return value


class SOSAlert(Base):
    __tablename__ = "sos_alerts"

    id = Column(Integer, primary_key=True)
    customer_id = Column(String, nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, unique=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String, nullable=True)

    status = Column(_status_enum(AlertStatus), nullable=False, default=AlertStatus.TRIGGERED, index=True)
    logs = Column(JSON, nullable=False, default=list)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
