"""
Auto-assignment of partners to order items.

Regions are matched once per booking; each item then gets the first eligible
partner (round-robin order) who is available at the booked time. Items are
processed one after another and in isolation: a failure on one item is logged
and the next item is still attempted. Nothing here raises to the caller.

The ``last_assigned_at`` bump is the only fairness mechanism. Two items of the
same booking can legitimately land on the same partner when that partner is
the only one passing both checks.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from shared.config import Settings

from .availability import is_available
from .eligibility import eligible_partners
from .exceptions import ConcurrentUpdate, TransitionRejected
from .geofence import matching_regions
from .lookups import active_regions, booking_items, get_booking, get_service, require_item, require_partner
from .notifications import build_assignment_message, business_today
from .schemas import Actor, SYSTEM_ACTOR
from .state_machine import TransitionContext, check_transition
from .status_sync import sync_booking_status
from .statuses import BookingStatus as S, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

_ADVANCE_ON_ASSIGN = {S.PENDING, S.CONFIRMED}


async def assign_partners(
    db: AsyncSession,
    booking,
    items,
    *,
    settings: Settings,
    notifier=None,
    broadcaster=None,
    now: datetime | None = None,
) -> dict[int, int | None]:
    """
    Try to give every item a partner. Returns ``{item_id: partner_id or None}``.
    """
    now = now or datetime.now(timezone.utc)
    # plain values up front: a rollback below expires ORM state
    booking_id = booking.id
    booking_ref = booking.booking_ref
    coordinates = booking.coordinates
    scheduled_date = booking.scheduled_date
    scheduled_time = booking.scheduled_time
    item_ids = [i.id for i in items]

    results: dict[int, int | None] = {item_id: None for item_id in item_ids}

    if not coordinates:
        logger.warning("no booking coordinates; skipping assignment", extra={"booking_id": booking_ref})
        return results

    region_ids = matching_regions(coordinates, await active_regions(db))
    logger.info("matched regions %s", sorted(region_ids), extra={"booking_id": booking_ref})

    for item_id in item_ids:
        try:
            results[item_id] = await _assign_item(
                db,
                item_id,
                region_ids,
                scheduled_date,
                scheduled_time,
                settings=settings,
                notifier=notifier,
                now=now,
            )
        except Exception:
            logger.exception("assignment failed for item", extra={"booking_id": booking_ref, "item_id": item_id})
            await db.rollback()

    try:
        await sync_booking_status(db, booking_id, SYSTEM_ACTOR, broadcaster=broadcaster)
    except Exception:
        logger.exception("status sync after assignment failed", extra={"booking_id": booking_ref})
        await db.rollback()

    return results


async def _assign_item(db, item_id, region_ids, scheduled_date, scheduled_time, *, settings, notifier, now):
    item = await require_item(db, item_id)

    service = await get_service(db, item.service_id)
    if not service:
        logger.warning("service not found; item skipped", extra={"item_id": item_id})
        return None

    candidates = await eligible_partners(db, service.code, region_ids)
    logger.info("%d eligible partners for %s", len(candidates), service.code, extra={"item_id": item_id})
    if not candidates:
        logger.warning("no eligible partners", extra={"item_id": item_id})
        return None

    partner = next(
        (
            p for p in candidates
            if is_available(p, scheduled_date, scheduled_time, enforce_window=settings.availability_window_enforced)
        ),
        None,
    )
    if partner is None:
        logger.warning("no partner available at requested time", extra={"item_id": item_id})
        return None

    item.assigned_partner_id = partner.id
    if S(item.status) in _ADVANCE_ON_ASSIGN:
        check_transition(item, S.ASSIGNED, TransitionContext(actor_role="system"))
        item.status = S.ASSIGNED
    partner.last_assigned_at = now
    partner_id = partner.id

    await db.commit()
    logger.info("partner assigned", extra={"item_id": item_id, "partner_id": partner_id})

    if notifier is not None:
        await _notify(db, notifier, partner, item, settings, now)

    return partner_id


async def _notify(db, notifier, partner, item, settings, now):
    try:
        booking = await get_booking(db, item.booking_id)
        message = build_assignment_message(
            partner, booking, item, today=business_today(settings.business_timezone, now)
        )
        if message is None:
            logger.warning("partner has no push token", extra={"partner_id": partner.id})
            return
        notifier.notify(partner.id, message)
    except Exception:
        logger.exception("could not queue push notification", extra={"partner_id": partner.id})


async def retry_assignment(db: AsyncSession, booking, *, settings: Settings, notifier=None, broadcaster=None):
    """Admin re-run for items still without a partner."""
    items = [
        i for i in await booking_items(db, booking.id)
        if i.assigned_partner_id is None and S(i.status) not in TERMINAL_STATUSES
    ]
    return await assign_partners(
        db, booking, items, settings=settings, notifier=notifier, broadcaster=broadcaster
    )


async def assign_manually(
    db: AsyncSession,
    item_id: int,
    partner_id: int,
    actor: Actor,
    *,
    settings: Settings,
    notifier=None,
    broadcaster=None,
    now: datetime | None = None,
):
    """Admin override: bypasses eligibility and schedule, never regresses status."""
    now = now or datetime.now(timezone.utc)
    item = await require_item(db, item_id)
    partner = await require_partner(db, partner_id)

    current = S(item.status)
    if current in TERMINAL_STATUSES:
        raise TransitionRejected(current, S.ASSIGNED, f"{current.value} is a final status")

    item.assigned_partner_id = partner.id
    if current in _ADVANCE_ON_ASSIGN:
        check_transition(item, S.ASSIGNED, TransitionContext(actor_role=actor.role, actor_id=actor.id))
        item.status = S.ASSIGNED
    partner.last_assigned_at = now

    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise ConcurrentUpdate(item_id)

    logger.info("partner assigned manually by %s", actor.label, extra={"item_id": item_id, "partner_id": partner_id})
    if notifier is not None:
        await _notify(db, notifier, partner, item, settings, now)

    await sync_booking_status(db, item.booking_id, actor, broadcaster=broadcaster)
    await db.refresh(item)
    return item
