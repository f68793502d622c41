# app/utils/time_utils.py
from __future__ import annotations

import re
from datetime import date, datetime, time, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.errors import ValidationError

_TIME_RE = re.compile(r"^\d{2}:\d{2}$")

MINUTES_PER_DAY = 24 * 60

def valid_hhmm(hhmm: str) -> bool:
    if not isinstance(hhmm, str) or not _TIME_RE.match(hhmm):
        return False
    h, m = map(int, hhmm.split(":"))
    return 0 <= h <= 23 and 0 <= m <= 59

def hhmm_to_minutes(hhmm: str) -> int:
    if not valid_hhmm(hhmm):
        raise ValidationError(f"Invalid time of day {hhmm!r}; expected HH:MM 24-hour")
    h, m = map(int, hhmm.split(":"))
    return h * 60 + m

def minutes_to_hhmm(total_minutes: int) -> str:
    """Wraps at 24:00, so 25:30 -> 01:30."""
    total_minutes = int(total_minutes) % MINUTES_PER_DAY
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"

def at_time_of_day(day: date, hhmm: str, tz: Optional[tzinfo]) -> datetime:
    minutes = hhmm_to_minutes(hhmm)
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz)

def parse_iso(value: str) -> datetime:
    """Parse ISO8601; a trailing Z is accepted and naive values are taken as UTC."""
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid ISO8601 timestamp {value!r}")
    return ensure_aware(dt)

def ensure_aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)

def to_zone(dt: datetime, tz_name: str) -> datetime:
    try:
        zone = ZoneInfo(tz_name)
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown timezone {tz_name!r}")
    return ensure_aware(dt).astimezone(zone)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)
