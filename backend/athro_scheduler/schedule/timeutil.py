from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import ValidationError
from ..settings import settings

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def get_timezone(name: Optional[str] = None) -> ZoneInfo:
    key = name or settings.timezone
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"unknown timezone: {key}") from exc


def to_local(moment: datetime, tz: ZoneInfo) -> datetime:
    # Naive values are wall-clock times in the calendar's zone
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def at_local(day: date, clock: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, clock.replace(tzinfo=None), tzinfo=tz)


def week_start_for(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def require_monday(week_start: date) -> date:
    if isinstance(week_start, datetime):
        week_start = week_start.date()
    if week_start.weekday() != 0:
        raise ValidationError(f"week start {week_start.isoformat()} is not a Monday")
    return week_start


def parse_hhmm(text: str) -> time:
    match = _HHMM.match((text or "").strip())
    if not match:
        raise ValidationError(f"time must look like HH:mm, got {text!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"time out of range: {text!r}")
    return time(hour, minute)


def format_hhmm(clock: time) -> str:
    return f"{clock.hour:02d}:{clock.minute:02d}"


def minutes_of_day(clock: time) -> int:
    return clock.hour * 60 + clock.minute


def today_in(tz: ZoneInfo) -> date:
    """Calendar date right now in ``tz``, which can differ from the server's local date."""
    return datetime.now(tz).date()
