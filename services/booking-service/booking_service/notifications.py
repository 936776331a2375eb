"""
Outbound side effects: partner push notifications and admin broadcasts.

Both are best effort. Push delivery runs as a background task so a slow or
failing gateway never holds up the request that triggered it; broadcasts are
awaited but every error is logged and dropped.
"""

import asyncio
import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy import update

from shared.events import build_event, to_json

from .models import ServicePartner
from .schemas import PushMessage
from .statuses import BookingKind

logger = logging.getLogger(__name__)

CHANNELS = {
    "SOS_ALERTS": "sos_alerts",
    "JOB_ASSIGNMENTS": "job_assignments",
}

SOS_SOUND = "ambulance_alarm"
DEFAULT_SOUND = "default"

SENT = "sent"
FAILED = "failed"
INVALID_TOKEN = "invalid_token"


def business_today(tz_name: str, now: datetime | None = None) -> date:
    tz = ZoneInfo(tz_name)
    return (now.astimezone(tz) if now else datetime.now(tz)).date()


def build_assignment_message(partner, booking, item, *, today: date) -> PushMessage | None:
    """
    Push payload for a new assignment; None when the partner has no token.

    SOS jobs always ring with the alarm sound at high priority. Other jobs
    due today arrive silently, later jobs with the default sound.
    """
    if not partner.push_token:
        return None

    data = {
        "booking_id": booking.booking_ref,
        "item_id": str(item.id),
        "screen": "JobDetails",
    }

    if booking.kind == BookingKind.SOS:
        data["type"] = "SOS_ALERT"
        return PushMessage(
            token=partner.push_token,
            title="\U0001F6A8 SOS EMERGENCY ALERT",
            body=f"Emergency at {booking.address_full}",
            data=data,
            sound=SOS_SOUND,
            channel=CHANNELS["SOS_ALERTS"],
            priority="high",
        )

    job_day = booking.scheduled_date or today
    schedule_info = (
        f"Scheduled: {booking.scheduled_date.isoformat()} at {booking.scheduled_time}"
        if booking.scheduled_date and booking.scheduled_time
        else "ASAP"
    )
    data["type"] = "JOB_ASSIGNMENT"
    return PushMessage(
        token=partner.push_token,
        title="New Job Assigned",
        body=f"{item.variant_name} at {booking.address_full}. {schedule_info}",
        data=data,
        sound=None if job_day <= today else DEFAULT_SOUND,
        channel=CHANNELS["JOB_ASSIGNMENTS"],
        priority="normal",
    )


class PushSender:
    def __init__(self, gateway_url: str | None, server_key: str | None, timeout: float = 2.0, transport=None):
        self.gateway_url = gateway_url
        self.server_key = server_key
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.gateway_url and self.server_key)

    def _body(self, message: PushMessage) -> dict:
        data = dict(message.data)
        data.update({
            "title": message.title,
            "body": message.body,
            "channelId": message.channel,
            "sound": message.sound or "",
            "priority": message.priority,
        })
        return {
            "message": {
                "token": message.token,
                "data": data,
                "android": {
                    "priority": "high" if message.priority == "high" else "normal",
                    "ttl": "60s" if message.priority == "high" else "3600s",
                },
            }
        }

    async def send(self, message: PushMessage) -> str:
        if not self.configured:
            logger.warning("push gateway not configured; notification dropped")
            return FAILED

        headers = {"Authorization": f"Bearer {self.server_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(self.gateway_url, json=self._body(message), headers=headers)
        except httpx.HTTPError as e:
            logger.warning("push delivery failed: %s", e)
            return FAILED

        if r.status_code == 200:
            return SENT
        if r.status_code == 404 or "UNREGISTERED" in r.text:
            return INVALID_TOKEN
        logger.warning("push gateway answered %s: %s", r.status_code, r.text[:200])
        return FAILED


class Notifier:
    """Fire-and-forget push delivery; keeps task references until they finish."""

    def __init__(self, sender: PushSender, session_factory=None):
        self.sender = sender
        self.session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()

    def notify(self, partner_id: int, message: PushMessage) -> None:
        task = asyncio.create_task(self._deliver(partner_id, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, partner_id: int, message: PushMessage) -> None:
        try:
            outcome = await self.sender.send(message)
            if outcome == INVALID_TOKEN:
                await self._clear_token(partner_id, message.token)
            logger.info("push %s", outcome, extra={"partner_id": partner_id, "event": message.data.get("type")})
        except Exception:
            logger.exception("push delivery crashed", extra={"partner_id": partner_id})

    async def _clear_token(self, partner_id: int, token: str) -> None:
        if self.session_factory is None:
            return
        async with self.session_factory() as db:
            await db.execute(
                update(ServicePartner)
                .where(ServicePartner.id == partner_id, ServicePartner.push_token == token)
                .values(push_token=None, push_token_updated_at=None)
            )
            await db.commit()
        logger.info("removed invalid push token", extra={"partner_id": partner_id})

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AdminBroadcaster:
    """Real-time admin feed, published as domain events."""

    def __init__(self, publisher):
        self.publisher = publisher

    async def emit_to_admin(self, event_name: str, payload: dict) -> None:
        try:
            await self.publisher.publish(event_name, to_json(build_event(event_name, payload)))
        except Exception:
            logger.exception("admin broadcast failed", extra={"event": event_name})
