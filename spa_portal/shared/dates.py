"""Calendar-day helpers evaluated in the spa's local timezone"""

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from ..config import SPA_TIMEZONE


def spa_zone() -> ZoneInfo:
    return ZoneInfo(SPA_TIMEZONE)


def spa_today(now: Optional[datetime] = None) -> date:
    """Today's calendar date at the spa"""
    now = now or datetime.now(spa_zone())
    if now.tzinfo is not None:
        now = now.astimezone(spa_zone())
    return now.date()


def parse_calendar_date(value) -> date:
    """
    Read a calendar day from a date, datetime or ISO-8601 string.

    Timezone-aware timestamps (older rows were saved as UTC instants of local
    midnight) are converted to the spa's zone before the day is taken.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    elif isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported date value: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(spa_zone())
    return parsed.date()
