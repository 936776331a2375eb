import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import NotFound
from .lookups import alert_for_booking, booking_items, get_booking
from .schemas import Actor, SYSTEM_ACTOR
from .statuses import (
    AlertStatus,
    BookingKind,
    BookingStatus as S,
    SETTLED_STATUSES,
)

logger = logging.getLogger(__name__)

# Most advanced first. Finished and paused work both read as "in progress"
# while sibling items are still open.
_PROGRESS_RANK = [
    ({S.IN_PROGRESS, S.ON_HOLD, S.COMPLETED}, S.IN_PROGRESS),
    ({S.REACHED}, S.REACHED),
    ({S.EN_ROUTE}, S.EN_ROUTE),
    ({S.ASSIGNED}, S.ASSIGNED),
    ({S.CONFIRMED}, S.CONFIRMED),
]

ALERT_STATUS_FOR_ITEM = {
    S.ASSIGNED: AlertStatus.PARTNER_ASSIGNED,
    S.EN_ROUTE: AlertStatus.EN_ROUTE,
    S.REACHED: AlertStatus.REACHED,
    S.IN_PROGRESS: AlertStatus.IN_PROGRESS,
    S.ON_HOLD: AlertStatus.IN_PROGRESS,
    S.COMPLETED: AlertStatus.RESOLVED,
    S.CANCELLED: AlertStatus.CANCELLED,
    S.REFUND_INITIATED: AlertStatus.CANCELLED,
    S.REFUNDED: AlertStatus.CANCELLED,
}

_CLOSED_ALERT = {AlertStatus.RESOLVED, AlertStatus.CANCELLED}


def derive_booking_status(statuses) -> S:
    statuses = [S(s) for s in statuses]
    present = set(statuses)

    if present == {S.CANCELLED}:
        return S.CANCELLED
    if present == {S.REFUNDED}:
        return S.REFUNDED
    if present == {S.REFUND_INITIATED}:
        return S.REFUND_INITIATED
    if present <= SETTLED_STATUSES:
        return S.COMPLETED

    for members, status in _PROGRESS_RANK:
        if present & members:
            return status
    return S.PENDING


def alert_event_name(status: AlertStatus) -> str:
    if status == AlertStatus.RESOLVED:
        return "sos.resolved"
    if status == AlertStatus.CANCELLED:
        return "sos.cancelled"
    return "sos.updated"


def mirror_into_alert(alert, item, actor: Actor, now: datetime | None = None) -> AlertStatus | None:
    """
    Copy the item's progress into the alert; returns the new alert status when
    anything was written, None otherwise.
    """
    target = ALERT_STATUS_FOR_ITEM.get(S(item.status))
    if target is None:
        return None

    current = AlertStatus(alert.status)
    if current in _CLOSED_ALERT and current != target:
        return None

    logs = list(alert.logs or [])
    last_action = logs[-1].get("action") if logs else None
    status_changed = current != target
    if not status_changed and last_action == target.value:
        return None

    now = now or datetime.now(timezone.utc)
    if status_changed:
        alert.status = target
        if target == AlertStatus.RESOLVED:
            alert.resolved_at = now
            alert.resolved_by = actor.label

    if last_action != target.value:
        logs.append({
            "action": target.value,
            "timestamp": now.isoformat(),
            "performed_by": actor.label,
            "details": f"Order item {item.id} is {S(item.status).value}",
        })
        alert.logs = logs

    return target


async def sync_booking_status(
    db: AsyncSession,
    booking_id: int,
    actor: Actor | None = None,
    *,
    broadcaster=None,
) -> S:
    actor = actor or SYSTEM_ACTOR
    booking = await get_booking(db, booking_id)
    if not booking:
        raise NotFound("Booking", booking_id)

    items = await booking_items(db, booking.id)
    if not items:
        logger.warning("booking has no items; status left as is", extra={"booking_id": booking.booking_ref})
        return S(booking.status)

    new_status = derive_booking_status(i.status for i in items)
    old_status = S(booking.status)
    booking_ref = booking.booking_ref

    if new_status != old_status:
        booking.status = new_status
        booking.log_action("STATUS_CHANGED", actor.label, f"{old_status.value} -> {new_status.value}")
        await db.commit()
        logger.info("booking status synced", extra={"booking_id": booking_ref, "status": new_status.value})

    if booking.kind == BookingKind.SOS:
        await _sync_alert(db, booking.id, booking_ref, items[0], actor, broadcaster)

    return new_status


async def _sync_alert(db: AsyncSession, booking_id: int, booking_ref: str, first_item, actor: Actor, broadcaster):
    try:
        alert = await alert_for_booking(db, booking_id)
        if not alert:
            return
        alert_status = mirror_into_alert(alert, first_item, actor)
        if alert_status is None:
            return
        alert_id = alert.id
        await db.commit()
    except Exception:
        logger.exception("sos alert mirroring failed", extra={"booking_id": booking_ref})
        await db.rollback()
        return

    if broadcaster is not None:
        await broadcaster.emit_to_admin(
            alert_event_name(alert_status),
            {
                "alert_id": alert_id,
                "booking_id": booking_ref,
                "status": alert_status.value,
                "item_id": first_item.id,
                "item_status": S(first_item.status).value,
            },
        )
