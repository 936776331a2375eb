"""Shared fixtures: a throwaway SQLite database, catalog factories and fakes."""
from datetime import date, datetime, timezone

import pytest

from shared.config import Settings
from shared.database import create_all, drop_all, get_engine, get_session

from booking_service import models  # noqa: F401  (registers tables)
from booking_service.models import (
    Booking,
    OrderItem,
    Service,
    ServicePartner,
    ServiceRegion,
    ServiceVariant,
    default_availability,
)
from booking_service.statuses import BookingKind, BookingStatus

# Monday 2024-06-10 in Asia/Kolkata and UTC
MONDAY = date(2024, 6, 10)
NOW = datetime(2024, 6, 10, 6, 0, tzinfo=timezone.utc)

# Square around (12.95, 77.60)
SQUARE = [
    {"lat": 12.90, "lng": 77.55},
    {"lat": 12.90, "lng": 77.65},
    {"lat": 13.00, "lng": 77.65},
    {"lat": 13.00, "lng": 77.55},
]
INSIDE = {"lat": 12.95, "lng": 77.60}
OUTSIDE = {"lat": 19.07, "lng": 72.87}


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, partner_id, message):
        self.sent.append((partner_id, message))


class FakeBroadcaster:
    def __init__(self):
        self.events = []

    async def emit_to_admin(self, event_name, payload):
        self.events.append((event_name, payload))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        rabbit_url=None,
        jwt_secret="test-secret",
        availability_window_enforced=True,
        business_timezone="Asia/Kolkata",
    )


@pytest.fixture
async def engine(settings):
    eng = get_engine(settings.database_url)
    await create_all(eng)
    yield eng
    await drop_all(eng)
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


def weekly(day="monday", start="09:00", end="17:00"):
    table = default_availability()
    for entry in table:
        if entry["day"] == day:
            entry.update(start_time=start, end_time=end, is_available=True)
    return table


async def add_region(db, polygon=SQUARE, name="Central", is_active=True):
    region = ServiceRegion(name=name, city="Bengaluru", polygon=polygon, is_active=is_active)
    db.add(region)
    await db.commit()
    return region


async def add_catalog(db, code="plumbing", variant_code="tap-repair", price=499.0, active=True):
    service = Service(code=code, name=code.title(), is_active=active)
    db.add(service)
    await db.flush()
    variant = ServiceVariant(
        service_id=service.id,
        code=variant_code,
        name=variant_code.replace("-", " ").title(),
        original_price=price + 100,
        final_price=price,
        credit_value=0,
        estimated_time_minutes=45,
        customer_visit_required=True,
        is_active=True,
    )
    db.add(variant)
    await db.commit()
    return service, variant


async def add_partner(db, name="Ravi", phone="+919800000001", services=("plumbing",), regions=(), **kw):
    partner = ServicePartner(
        name=name,
        phone=phone,
        services=list(services),
        service_regions=list(regions),
        availability=kw.pop("availability", weekly()),
        is_active=kw.pop("is_active", True),
        **kw,
    )
    db.add(partner)
    await db.commit()
    return partner


async def add_booking(db, service, *, statuses=(BookingStatus.PENDING,), kind=BookingKind.SCHEDULED,
                      ref="BOOK-20240610-001", coords=INSIDE, scheduled_date=MONDAY, scheduled_time="10:00",
                      partner_id=None):
    booking = Booking(
        booking_ref=ref,
        customer_id="cust-1",
        address_label="Home",
        address_full="12 MG Road",
        address_lat=coords["lat"] if coords else None,
        address_lng=coords["lng"] if coords else None,
        kind=kind,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        status=BookingStatus.PENDING,
        action_log=[],
    )
    db.add(booking)
    await db.flush()
    items = []
    for status in statuses:
        item = OrderItem(
            booking_id=booking.id,
            service_id=service.id,
            service_variant_id=1,
            service_name=service.name,
            variant_name="Tap Repair",
            quantity=1,
            original_price=599.0,
            final_price=499.0,
            start_job_otp="1234",
            end_job_otp="5678",
            assigned_partner_id=partner_id,
            status=status,
            hold_history=[],
        )
        db.add(item)
        items.append(item)
    await db.commit()
    return booking, items
