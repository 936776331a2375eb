from datetime import datetime, timezone

from dateutil import parser


def _parse(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = parser.isoparse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def total_hold_seconds(hold_history: list[dict] | None) -> int:
    """Closed holds only; an open hold has no measurable length yet."""
    total = 0.0
    for entry in hold_history or []:
        start = _parse(entry.get("hold_started_at"))
        end = _parse(entry.get("hold_ended_at"))
        if start and end:
            total += (end - start).total_seconds()
    return int(total)


def active_work_seconds(started_at, completed_at, hold_history) -> int | None:
    start = _parse(started_at)
    end = _parse(completed_at)
    if not start or not end:
        return None
    return max(0, int((end - start).total_seconds()) - total_hold_seconds(hold_history))

