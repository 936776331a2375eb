"""
Storage-backed order-item actions.

Every action validates through ``state_machine.check_transition``, writes the
item under its version check, then resynchronises the parent booking.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .exceptions import ConcurrentUpdate, NotFound
from .lookups import require_item
from .models import OrderItem
from .schemas import Actor
from .state_machine import TransitionContext, check_transition
from .status_sync import sync_booking_status
from .statuses import BookingStatus as S

logger = logging.getLogger(__name__)


def _scope_to_partner(item: OrderItem, actor: Actor):
    # partners only ever see their own jobs
    if actor.role == "partner" and str(item.assigned_partner_id) != str(actor.id):
        raise NotFound("Order item", item.id)


def apply_transition(item: OrderItem, target: S, actor: Actor, *, hold_reason=None, remark=None, now=None):
    """Mutate ``item`` for an already validated transition."""
    now = now or datetime.now(timezone.utc)
    current = S(item.status)

    if target == S.ON_HOLD:
        item.hold_history = [
            *(item.hold_history or []),
            {
                "reason": hold_reason,
                "remark": remark,
                "hold_started_at": now.isoformat(),
                "hold_ended_at": None,
                "held_by": actor.label,
            },
        ]
    elif current == S.ON_HOLD and target == S.IN_PROGRESS:
        history = [dict(e) for e in item.hold_history or []]
        for entry in reversed(history):
            if not entry.get("hold_ended_at"):
                entry["hold_ended_at"] = now.isoformat()
                break
        item.hold_history = history

    if target == S.IN_PROGRESS and item.started_at is None:
        item.started_at = now
    if target == S.COMPLETED:
        item.completed_at = now

    item.status = target


async def transition_item(
    db: AsyncSession,
    item_id: int,
    target: S,
    actor: Actor,
    *,
    otp: str | None = None,
    hold_reason: str | None = None,
    remark: str | None = None,
    broadcaster=None,
) -> OrderItem:
    item = await require_item(db, item_id)
    _scope_to_partner(item, actor)

    target = S(target)
    ctx = TransitionContext(actor_role=actor.role, actor_id=actor.id, otp=otp, hold_reason=hold_reason)
    previous = S(item.status)
    check_transition(item, target, ctx)

    apply_transition(item, target, actor, hold_reason=hold_reason, remark=remark)
    booking_id = item.booking_id
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise ConcurrentUpdate(item_id)

    logger.info(
        "item %s -> %s by %s", previous.value, target.value, actor.label,
        extra={"item_id": item_id, "status": target.value},
    )

    await sync_booking_status(db, booking_id, actor, broadcaster=broadcaster)
    await db.refresh(item)
    return item


async def report_progress(db, item_id, target, actor, *, broadcaster=None):
    """Partner travel updates: EN_ROUTE and REACHED."""
    return await transition_item(db, item_id, target, actor, broadcaster=broadcaster)


async def start_job(db, item_id, otp, actor, *, broadcaster=None):
    return await transition_item(db, item_id, S.IN_PROGRESS, actor, otp=otp, broadcaster=broadcaster)


async def end_job(db, item_id, otp, actor, *, broadcaster=None):
    return await transition_item(db, item_id, S.COMPLETED, actor, otp=otp, broadcaster=broadcaster)


async def hold_job(db, item_id, reason, actor, *, remark=None, broadcaster=None):
    return await transition_item(
        db, item_id, S.ON_HOLD, actor, hold_reason=reason, remark=remark, broadcaster=broadcaster
    )


async def resume_job(db, item_id, actor, *, broadcaster=None):
    return await transition_item(db, item_id, S.IN_PROGRESS, actor, broadcaster=broadcaster)
