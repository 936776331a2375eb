"""Typed lookups by ID; the ``require_*`` variants raise NotFound."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import NotFound
from .models import Booking, OrderItem, Service, ServicePartner, ServiceRegion, SOSAlert


async def get_booking(db: AsyncSession, booking_id: int) -> Booking | None:
    return await db.get(Booking, booking_id)


async def require_booking_by_ref(db: AsyncSession, booking_ref: str) -> Booking:
    res = await db.execute(select(Booking).where(Booking.booking_ref == booking_ref))
    booking = res.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking", booking_ref)
    return booking


async def booking_items(db: AsyncSession, booking_id: int) -> list[OrderItem]:
    res = await db.execute(
        select(OrderItem).where(OrderItem.booking_id == booking_id).order_by(OrderItem.id)
    )
    return list(res.scalars().all())


async def require_item(db: AsyncSession, item_id: int) -> OrderItem:
    item = await db.get(OrderItem, item_id)
    if not item:
        raise NotFound("Order item", item_id)
    return item


async def get_service(db: AsyncSession, service_id: int) -> Service | None:
    return await db.get(Service, service_id)


async def require_partner(db: AsyncSession, partner_id: int) -> ServicePartner:
    partner = await db.get(ServicePartner, partner_id)
    if not partner:
        raise NotFound("Service partner", partner_id)
    return partner


async def active_regions(db: AsyncSession) -> list[ServiceRegion]:
    res = await db.execute(select(ServiceRegion).where(ServiceRegion.is_active.is_(True)))
    return list(res.scalars().all())


async def alert_for_booking(db: AsyncSession, booking_id: int) -> SOSAlert | None:
    res = await db.execute(select(SOSAlert).where(SOSAlert.booking_id == booking_id))
    return res.scalar_one_or_none()
