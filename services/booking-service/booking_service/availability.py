import logging
import re
from datetime import date

from .statuses import DAY_NAMES

logger = logging.getLogger(__name__)

_TWELVE_HOUR = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*(AM|PM)\s*$", re.IGNORECASE)
_TWENTY_FOUR_HOUR = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_time_to_minutes(value: str | None) -> int | None:
    """
    Minutes since midnight for "HH:mm" or "HH:mm AM/PM"; None when unparseable.
    """
    if not value:
        return None

    m = _TWELVE_HOUR.match(value)
    if m:
        hours, minutes, period = int(m.group(1)), int(m.group(2)), m.group(3).upper()
        if not 1 <= hours <= 12 or minutes > 59:
            return None
        if period == "PM" and hours != 12:
            hours += 12
        if period == "AM" and hours == 12:
            hours = 0
        return hours * 60 + minutes

    m = _TWENTY_FOUR_HOUR.match(value)
    if m:
        hours, minutes = int(m.group(1)), int(m.group(2))
        if hours > 23 or minutes > 59:
            return None
        return hours * 60 + minutes

    return None


def day_entry(availability: list[dict] | None, scheduled_date: date) -> dict | None:
    day_name = DAY_NAMES[scheduled_date.weekday()]
    for entry in availability or []:
        if (entry.get("day") or "").lower() == day_name:
            return entry
    return None


def is_available(partner, scheduled_date: date | None, scheduled_time: str | None, *, enforce_window: bool = True) -> bool:
    # ASAP: timing is agreed with the partner directly
    if not scheduled_date or not scheduled_time:
        return True

    if not enforce_window:
        return True

    entry = day_entry(partner.availability, scheduled_date)
    if not entry or not entry.get("is_available"):
        return False

    requested = parse_time_to_minutes(scheduled_time)
    start = parse_time_to_minutes(entry.get("start_time"))
    end = parse_time_to_minutes(entry.get("end_time"))
    if requested is None or start is None or end is None:
        logger.warning(
            "unparseable schedule time; treating partner as unavailable",
            extra={"partner_id": getattr(partner, "id", None)},
        )
        return False

    return start <= requested <= end
