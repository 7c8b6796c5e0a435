"""Study plan generation.

Each chosen subject gets a number of sessions per week from the pupil's
confidence in it (less confident means more sessions). Sessions are dealt
out day by day, Monday first, onto the first study slot of each day, starting
with the next occurrence of that weekday after today. When a slot's first
session is already taken by another subject the next session of that slot is
used, and a day whose sessions are all taken is skipped. Subjects that do not
fit into one week spill into the following weeks.

Pupils who have not set up any slots get the default weekday slots.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from ..settings import settings
from .slots import CalendarEvent, EventType, PreferredStudySlot, make_event, make_slot
from .timeutil import at_local, get_timezone

logger = logging.getLogger(__name__)

CONFIDENCE_SESSIONS: Dict[str, int] = {
    "Very Low": 5,
    "Low": 4,
    "Neutral": 3,
    "High": 2,
    "Very High": 1,
}
DEFAULT_SESSIONS_PER_WEEK = 3
PLAN_WORK_MINUTES = 25
PLAN_BREAK_MINUTES = 5


class SubjectPreference(BaseModel):
    subject: str = Field(min_length=1)
    confidence: str = "Neutral"


class SubjectAllocation(BaseModel):
    subject: str
    confidence: str
    sessions_per_week: int


@dataclass
class StudyPlan:
    allocations: List[SubjectAllocation]
    events: List[CalendarEvent] = field(default_factory=list)
    used_default_slots: bool = False


def sessions_per_week(confidence: Optional[str]) -> int:
    return CONFIDENCE_SESSIONS.get(confidence or "", DEFAULT_SESSIONS_PER_WEEK)


def allocate(preferences: Iterable[SubjectPreference]) -> List[SubjectAllocation]:
    return [
        SubjectAllocation(
            subject=pref.subject,
            confidence=pref.confidence,
            sessions_per_week=sessions_per_week(pref.confidence),
        )
        for pref in preferences
    ]


def default_study_slots(user_id: Optional[str] = None) -> List[PreferredStudySlot]:
    """Monday to Friday, two 45 minute sessions from 16:00."""
    return [
        make_slot(
            user_id=user_id,
            day_of_week=day,
            slot_count=2,
            slot_duration_minutes=45,
            preferred_start_hour=16,
        )
        for day in range(1, 6)
    ]


def next_occurrence(today: date, iso_day: int) -> date:
    """The next date strictly after ``today`` that falls on ``iso_day``."""
    ahead = iso_day - today.isoweekday()
    if ahead <= 0:
        ahead += 7
    return today + timedelta(days=ahead)


def generate_plan(
    preferences: Sequence[SubjectPreference],
    slots: Sequence[PreferredStudySlot],
    *,
    today: date,
    tz: Optional[ZoneInfo] = None,
    break_minutes: Optional[int] = None,
) -> StudyPlan:
    tz = tz or get_timezone()
    gap = timedelta(minutes=settings.slot_break_minutes if break_minutes is None else break_minutes)
    allocations = allocate(preferences)
    used_default = not slots
    if used_default:
        slots = default_study_slots()

    by_day: Dict[int, PreferredStudySlot] = {}
    for slot in slots:
        by_day.setdefault(slot.day_of_week, slot)

    taken: Set[datetime] = set()
    events: List[CalendarEvent] = []
    for allocation in allocations:
        left = allocation.sessions_per_week
        week = 0
        while left > 0:
            for day in range(1, 8):
                if left == 0:
                    break
                slot = by_day.get(day)
                if slot is None:
                    continue
                start = _free_start(slot, next_occurrence(today, day) + timedelta(weeks=week), taken, tz, gap)
                if start is None:
                    continue
                taken.add(start)
                events.append(_plan_event(allocation.subject, start, slot.slot_duration_minutes))
                left -= 1
            week += 1

    events.sort(key=lambda e: e.start_time)
    logger.info(
        "Planned %s session(s) for %s subject(s)%s",
        len(events), len(allocations), " on default slots" if used_default else "",
    )
    return StudyPlan(allocations=allocations, events=events, used_default_slots=used_default)


def _free_start(
    slot: PreferredStudySlot, day: date, taken: Set[datetime], tz: ZoneInfo, gap: timedelta
) -> Optional[datetime]:
    first = at_local(day, time(slot.preferred_start_hour, 0), tz)
    step = timedelta(minutes=slot.slot_duration_minutes) + gap
    for index in range(slot.slot_count):
        start = first + index * step
        if start not in taken:
            return start
    return None


def _plan_event(subject: str, start: datetime, minutes: int) -> CalendarEvent:
    return make_event(
        title=f"{subject} Study Session",
        subject=subject,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        event_type=EventType.STUDY_SESSION,
        is_pomodoro=True,
        pomodoro_work_minutes=PLAN_WORK_MINUTES,
        pomodoro_break_minutes=PLAN_BREAK_MINUTES,
    )
