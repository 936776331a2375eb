"""
Partner onboarding, profile and availability edits, and the partner job list.

A partner always comes with a login-capable user account; both rows are
written in one transaction and a phone number may only exist once across
partners and accounts.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import parse_time_to_minutes
from .exceptions import Conflict, ValidationFailed
from .lookups import require_partner
from .models import Booking, OrderItem, ServicePartner, UserAccount, default_availability
from .schemas import (
    AvailabilityEntry,
    CreatePartnerRequest,
    JobView,
    PartnerResponse,
    Point,
    UpdatePartnerRequest,
)
from .statuses import DAY_NAMES, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


async def _phone_taken(db: AsyncSession, phone: str, *, partner_id=None, user_id=None) -> bool:
    q = select(ServicePartner.id).where(ServicePartner.phone == phone)
    if partner_id is not None:
        q = q.where(ServicePartner.id != partner_id)
    if (await db.execute(q)).first():
        return True

    q = select(UserAccount.id).where(UserAccount.phone == phone)
    if user_id is not None:
        q = q.where(UserAccount.id != user_id)
    return (await db.execute(q)).first() is not None


def normalize_availability(entries: list[AvailabilityEntry] | None) -> list[dict]:
    """Full seven-day table; days not given keep the default (unavailable) entry."""
    if not entries:
        return default_availability()

    by_day = {}
    for entry in entries:
        if entry.day in by_day:
            raise ValidationFailed(f"Duplicate availability entry for {entry.day}")
        if entry.is_available and parse_time_to_minutes(entry.end_time) <= parse_time_to_minutes(entry.start_time):
            raise ValidationFailed(f"end_time must be after start_time on {entry.day}")
        by_day[entry.day] = entry.model_dump()

    defaults = {e["day"]: e for e in default_availability()}
    return [by_day.get(day, defaults[day]) for day in DAY_NAMES]


async def create_partner(db: AsyncSession, req: CreatePartnerRequest) -> ServicePartner:
    if await _phone_taken(db, req.phone):
        raise Conflict(f"Phone number {req.phone} is already registered")

    availability = normalize_availability(req.availability)
    now = datetime.now(timezone.utc)

    try:
        account = UserAccount(phone=req.phone, name=req.name, email=req.email, role="partner")
        db.add(account)
        await db.flush()

        partner = ServicePartner(
            user_id=account.id,
            name=req.name,
            phone=req.phone,
            email=req.email,
            services=[s.strip() for s in req.services],
            service_regions=list(req.service_regions),
            availability=availability,
            is_active=True,
            push_token=req.push_token,
            push_token_updated_at=now if req.push_token else None,
        )
        db.add(partner)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict(f"Phone number {req.phone} is already registered")
    except Exception:
        await db.rollback()
        raise

    logger.info("partner onboarded", extra={"partner_id": partner.id})
    return partner


async def update_partner(db: AsyncSession, partner_id: int, req: UpdatePartnerRequest) -> ServicePartner:
    partner = await require_partner(db, partner_id)
    account = await db.get(UserAccount, partner.user_id) if partner.user_id else None
    changes = req.model_dump(exclude_unset=True)

    if "phone" in changes and changes["phone"] != partner.phone:
        if await _phone_taken(db, changes["phone"], partner_id=partner.id, user_id=partner.user_id):
            raise Conflict(f"Phone number {changes['phone']} is already registered")

    for field in ("name", "phone", "email", "is_active"):
        if field in changes and changes[field] is not None:
            setattr(partner, field, changes[field])
    if changes.get("services") is not None:
        partner.services = [s.strip() for s in changes["services"]]
    if changes.get("service_regions") is not None:
        partner.service_regions = list(changes["service_regions"])
    if "push_token" in changes:
        partner.push_token = changes["push_token"]
        partner.push_token_updated_at = datetime.now(timezone.utc) if changes["push_token"] else None

    # the paired account mirrors the contact details
    if account is not None:
        account.name = partner.name
        account.phone = partner.phone
        account.email = partner.email

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Phone number is already registered")

    logger.info("partner updated", extra={"partner_id": partner.id})
    return partner


async def set_availability(db: AsyncSession, partner_id: int, entries: list[AvailabilityEntry]) -> ServicePartner:
    partner = await require_partner(db, partner_id)
    partner.availability = normalize_availability(entries)
    await db.commit()
    logger.info("availability updated", extra={"partner_id": partner.id})
    return partner


async def partner_jobs(db: AsyncSession, partner_id: int, *, active_only: bool = False) -> list[JobView]:
    q = (
        select(OrderItem, Booking)
        .join(Booking, Booking.id == OrderItem.booking_id)
        .where(OrderItem.assigned_partner_id == partner_id)
        .order_by(Booking.created_at.desc(), OrderItem.id)
    )
    if active_only:
        q = q.where(OrderItem.status.notin_(list(TERMINAL_STATUSES)))

    rows = (await db.execute(q)).all()
    return [
        JobView(
            item_id=item.id,
            booking_id=booking.booking_ref,
            service_name=item.service_name,
            variant_name=item.variant_name,
            status=item.status,
            kind=booking.kind,
            scheduled_date=booking.scheduled_date,
            scheduled_time=booking.scheduled_time,
            address=booking.address_full,
            coordinates=Point(**booking.coordinates) if booking.coordinates else None,
            notes=booking.notes,
        )
        for item, booking in rows
    ]


def partner_response(partner: ServicePartner) -> PartnerResponse:
    return PartnerResponse(
        id=partner.id,
        user_id=partner.user_id,
        name=partner.name,
        phone=partner.phone,
        email=partner.email,
        services=partner.services or [],
        service_regions=partner.service_regions or [],
        availability=partner.availability or [],
        is_active=partner.is_active,
        last_assigned_at=partner.last_assigned_at,
    )
