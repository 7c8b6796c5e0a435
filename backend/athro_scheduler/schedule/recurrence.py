"""Expansion of recurring study slots into dated events for one displayed week.

Expanded events are never stored. Their ids are derived from the slot id,
so expanding the same slot again always produces the same ids:
``slot-{slotId}`` for the first session and ``slot-{slotId}#{n}`` for the
n-th session of the day.
"""
from __future__ import annotations

from datetime import date, time, timedelta
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from ..errors import NotPersistableError
from ..settings import settings
from .slots import SYNTHETIC_PREFIX, CalendarEvent, EventType, PreferredStudySlot, make_event
from .timeutil import at_local, get_timezone, require_monday

_SESSION_SEPARATOR = "#"


def synthetic_id(slot_id: str, session: int = 1) -> str:
    if session <= 1:
        return f"{SYNTHETIC_PREFIX}{slot_id}"
    return f"{SYNTHETIC_PREFIX}{slot_id}{_SESSION_SEPARATOR}{session}"


def parse_synthetic_id(event_id: Optional[str]) -> Optional[str]:
    """Slot id behind a synthetic event id, or None for ordinary ids."""
    if not event_id or not event_id.startswith(SYNTHETIC_PREFIX):
        return None
    slot_id = event_id[len(SYNTHETIC_PREFIX):]
    base, sep, suffix = slot_id.rpartition(_SESSION_SEPARATOR)
    if sep and suffix.isdigit():
        slot_id = base
    return slot_id or None


def expand_slot(
    slot: PreferredStudySlot,
    week_start: date,
    *,
    tz: Optional[ZoneInfo] = None,
    break_minutes: Optional[int] = None,
    first_only: bool = False,
    title: Optional[str] = None,
) -> List[CalendarEvent]:
    if not slot.id:
        raise NotPersistableError("slot has no id yet; save it before expanding")
    tz = tz or get_timezone()
    gap = settings.slot_break_minutes if break_minutes is None else break_minutes
    week_start = require_monday(week_start)

    day = week_start + timedelta(days=slot.day_of_week - 1)
    first_start = at_local(day, time(slot.preferred_start_hour, 0), tz)
    length = timedelta(minutes=slot.slot_duration_minutes)
    step = length + timedelta(minutes=gap)
    subject = slot.subject or ""
    label = title or (f"{subject} Study Session" if subject else "Study Session")

    count = 1 if first_only else slot.slot_count
    events = []
    for index in range(count):
        start = first_start + index * step
        events.append(
            make_event(
                id=synthetic_id(slot.id, index + 1),
                title=label,
                subject=subject,
                start_time=start,
                end_time=start + length,
                event_type=EventType.STUDY_SESSION,
                source_slot_id=slot.id,
            )
        )
    return events


def expand_week(
    slots: Iterable[PreferredStudySlot],
    week_start: date,
    *,
    tz: Optional[ZoneInfo] = None,
    break_minutes: Optional[int] = None,
    first_only: bool = False,
) -> List[CalendarEvent]:
    events: List[CalendarEvent] = []
    for slot in slots:
        events.extend(expand_slot(slot, week_start, tz=tz, break_minutes=break_minutes, first_only=first_only))
    return events
