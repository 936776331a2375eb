"""
Booking creation, rescheduling and administrative cancellation.

A new booking snapshots catalog names and prices into its items, gets a
daily sequential reference (``BOOK-YYYYMMDD-NNN``) and is then handed to the
assignment engine. Assignment is best effort: the booking is already
committed when it runs and any failure there is only logged.
"""

import logging
import secrets
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from shared.config import Settings

from .assignment import assign_partners
from .exceptions import ConcurrentUpdate, NotFound, RuleViolation, ValidationFailed
from .lookups import booking_items
from .models import Booking, OrderItem, Service, ServiceVariant, SOSAlert
from .schemas import (
    Actor,
    AddressIn,
    BookingResponse,
    CreateBookingRequest,
    OrderItemResponse,
    RescheduleRequest,
)
from .state_machine import TransitionContext, check_transition
from .status_sync import sync_booking_status
from .statuses import AlertStatus, BookingKind, BookingStatus as S
from .worktime import active_work_seconds

logger = logging.getLogger(__name__)

RESCHEDULABLE = frozenset({S.PENDING, S.CONFIRMED, S.ASSIGNED})


async def generate_booking_ref(db: AsyncSession, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    prefix = f"BOOK-{now.astimezone(timezone.utc):%Y%m%d}-"
    res = await db.execute(
        select(func.count()).select_from(Booking).where(Booking.booking_ref.like(f"{prefix}%"))
    )
    return f"{prefix}{res.scalar_one() + 1:03d}"


def generate_job_otp() -> str:
    return str(1000 + secrets.randbelow(9000))


def ensure_visible(booking: Booking, actor: Actor):
    # customers only see their own bookings
    if actor.role == "customer" and booking.customer_id != str(actor.id):
        raise NotFound("Booking", booking.booking_ref)


async def _catalog_entry(db: AsyncSession, variant_code: str):
    res = await db.execute(
        select(ServiceVariant, Service)
        .join(Service, Service.id == ServiceVariant.service_id)
        .where(ServiceVariant.code == variant_code)
    )
    row = res.first()
    if not row:
        raise NotFound("Service variant", variant_code)
    variant, service = row
    if not variant.is_active or not service.is_active:
        raise ValidationFailed(f"Service variant '{variant_code}' is not available")
    return variant, service


async def create_booking(
    db: AsyncSession,
    customer_id: str,
    req: CreateBookingRequest,
    *,
    settings: Settings,
    notifier=None,
    broadcaster=None,
    now: datetime | None = None,
) -> Booking:
    now = now or datetime.now(timezone.utc)

    entries = [(line, *await _catalog_entry(db, line.variant_code)) for line in req.items]

    scheduled = req.kind == BookingKind.SCHEDULED
    booking = Booking(
        booking_ref=await generate_booking_ref(db, now),
        customer_id=str(customer_id),
        address_label=req.address.label,
        address_full=req.address.full_address,
        address_area=req.address.area,
        address_lat=req.address.lat,
        address_lng=req.address.lng,
        kind=req.kind,
        scheduled_date=req.scheduled_date if scheduled else None,
        scheduled_time=req.scheduled_time if scheduled else None,
        status=S.PENDING,
        notes=req.notes,
        created_at=now,
        updated_at=now,
    )

    items = []
    for line, variant, service in entries:
        items.append(OrderItem(
            service_id=service.id,
            service_variant_id=variant.id,
            service_name=service.name,
            variant_name=variant.name,
            quantity=line.quantity,
            original_price=variant.original_price,
            final_price=variant.final_price,
            credit_value=variant.credit_value,
            estimated_time_minutes=variant.estimated_time_minutes,
            customer_visit_required=variant.customer_visit_required,
            start_job_otp=generate_job_otp(),
            end_job_otp=generate_job_otp(),
            status=S.PENDING,
            hold_history=[],
        ))

    booking.total_original_amount = sum(i.original_price * i.quantity for i in items)
    booking.item_total = sum(i.final_price * i.quantity for i in items)
    booking.total_amount = booking.item_total - (booking.credits_used or 0)
    booking.log_action("CREATED", f"customer:{customer_id}", at=now)

    db.add(booking)
    await db.flush()
    for item in items:
        item.booking_id = booking.id
        db.add(item)

    if req.kind == BookingKind.SOS and booking.coordinates:
        db.add(SOSAlert(
            customer_id=booking.customer_id,
            booking_id=booking.id,
            latitude=booking.address_lat,
            longitude=booking.address_lng,
            address=booking.address_full,
            status=AlertStatus.TRIGGERED,
            logs=[{
                "action": AlertStatus.TRIGGERED.value,
                "timestamp": now.isoformat(),
                "performed_by": f"customer:{customer_id}",
                "details": "SOS booking created",
            }],
        ))

    await db.commit()
    logger.info("booking created with %d items", len(items), extra={"booking_id": booking.booking_ref})

    try:
        await assign_partners(
            db, booking, items, settings=settings, notifier=notifier, broadcaster=broadcaster, now=now
        )
    except Exception:
        logger.exception("auto-assignment failed", extra={"booking_id": booking.booking_ref})

    await db.refresh(booking)
    return booking


async def reschedule_booking(db: AsyncSession, booking: Booking, req: RescheduleRequest, actor: Actor) -> Booking:
    if booking.kind == BookingKind.SOS:
        raise RuleViolation("SOS bookings cannot be rescheduled")

    items = await booking_items(db, booking.id)
    blocked = [i for i in items if S(i.status) not in RESCHEDULABLE]
    if blocked:
        raise RuleViolation("Booking can only be rescheduled before work has started")

    old = f"{booking.scheduled_date} {booking.scheduled_time}" if booking.scheduled_date else "ASAP"
    booking.scheduled_date = req.scheduled_date
    booking.scheduled_time = req.scheduled_time
    booking.kind = BookingKind.SCHEDULED
    booking.reschedule_count = (booking.reschedule_count or 0) + 1
    booking.log_action(
        "RESCHEDULED", actor.label, f"{old} -> {req.scheduled_date} {req.scheduled_time}"
    )
    await db.commit()
    logger.info("booking rescheduled", extra={"booking_id": booking.booking_ref})
    return booking


async def cancel_booking(db: AsyncSession, booking: Booking, actor: Actor, *, reason: str | None = None, broadcaster=None) -> Booking:
    """Cancel every item, or none of them."""
    items = await booking_items(db, booking.id)
    open_items = [i for i in items if S(i.status) != S.CANCELLED]
    if not open_items:
        raise RuleViolation("Booking is already cancelled")

    ctx = TransitionContext(actor_role=actor.role, actor_id=actor.id)
    for item in open_items:
        check_transition(item, S.CANCELLED, ctx)

    for item in open_items:
        item.status = S.CANCELLED
    booking.log_action("CANCELLED", actor.label, reason)
    booking_id = booking.id
    booking_ref = booking.booking_ref

    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise ConcurrentUpdate(",".join(str(i.id) for i in open_items))

    logger.info("booking cancelled by %s", actor.label, extra={"booking_id": booking_ref})
    await sync_booking_status(db, booking_id, actor, broadcaster=broadcaster)
    await db.refresh(booking)
    return booking


def item_response(item: OrderItem) -> OrderItemResponse:
    return OrderItemResponse(
        id=item.id,
        service_name=item.service_name,
        variant_name=item.variant_name,
        quantity=item.quantity,
        final_price=item.final_price,
        customer_visit_required=item.customer_visit_required,
        assigned_partner_id=item.assigned_partner_id,
        assigned_location_id=item.assigned_location_id,
        status=item.status,
        hold_history=item.hold_history or [],
        started_at=item.started_at,
        completed_at=item.completed_at,
        active_work_seconds=active_work_seconds(item.started_at, item.completed_at, item.hold_history),
    )


def booking_response(booking: Booking, items) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.booking_ref,
        customer_id=booking.customer_id,
        kind=booking.kind,
        status=booking.status,
        scheduled_date=booking.scheduled_date,
        scheduled_time=booking.scheduled_time,
        address=AddressIn(
            label=booking.address_label,
            full_address=booking.address_full,
            area=booking.address_area,
            lat=booking.address_lat,
            lng=booking.address_lng,
        ),
        total_amount=booking.total_amount,
        total_original_amount=booking.total_original_amount,
        reschedule_count=booking.reschedule_count or 0,
        action_log=booking.action_log or [],
        items=[item_response(i) for i in items],
    )
