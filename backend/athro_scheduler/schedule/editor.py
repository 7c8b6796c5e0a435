"""Form logic behind the add/edit study session dialog.

The end time is always derived from start + duration; it cannot be edited
directly.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, List, Optional, Sequence
from zoneinfo import ZoneInfo

from ..errors import MissingFieldError, NotPersistableError, ValidationError
from .slots import CalendarEvent, EventType, is_synthetic_id, make_event
from .timeutil import at_local, format_hhmm, get_timezone, parse_hhmm, require_monday, to_local

if TYPE_CHECKING:
    from ..repository import CalendarRepository

DEFAULT_TITLE = "Study Session"
DEFAULT_START = time(15, 0)
DEFAULT_DURATION_MINUTES = 60


class SessionEditor:
    def __init__(self, subjects: Sequence[str], *, tz: Optional[ZoneInfo] = None) -> None:
        self.subjects: List[str] = list(subjects)
        self.tz = tz or get_timezone()
        self.event_id: Optional[str] = None
        self.day: Optional[date] = None
        self.title: str = ""
        self.subject: str = ""
        self.topic: str = ""
        self.start: Optional[time] = None
        self.duration_minutes: int = DEFAULT_DURATION_MINUTES
        self.event_type: EventType = EventType.STUDY_SESSION
        self._original: Optional[CalendarEvent] = None

    @property
    def is_new(self) -> bool:
        return not self.event_id

    def open_new(self, day: date, start: Optional[time] = None) -> "SessionEditor":
        self.event_id = None
        self._original = None
        self.day = day
        self.title = DEFAULT_TITLE
        self.subject = self.subjects[0] if self.subjects else ""
        self.topic = ""
        self.start = start or DEFAULT_START
        self.duration_minutes = DEFAULT_DURATION_MINUTES
        self.event_type = EventType.STUDY_SESSION
        return self

    def open_from_cell(self, week_start: date, day_index: int, clock: time) -> "SessionEditor":
        if not 0 <= day_index <= 6:
            raise ValidationError(f"day index must be 0-6, got {day_index}")
        return self.open_new(require_monday(week_start) + timedelta(days=day_index), clock)

    def open_existing(self, event: CalendarEvent) -> "SessionEditor":
        local_start = to_local(event.start_time, self.tz)
        self.event_id = event.id
        self._original = event
        self.day = local_start.date()
        self.title = event.title
        self.subject = event.subject or (self.subjects[0] if self.subjects else "")
        self.topic = event.topic
        self.start = local_start.time().replace(second=0, microsecond=0)
        self.duration_minutes = max(1, round(event.duration.total_seconds() / 60))
        self.event_type = event.event_type
        return self

    def set_title(self, title: str) -> None:
        self.title = title

    def set_subject(self, subject: str) -> None:
        self.subject = subject

    def set_topic(self, topic: Optional[str]) -> None:
        self.topic = topic or ""

    def set_start(self, text: str) -> None:
        self.start = parse_hhmm(text)

    def set_duration(self, minutes: int) -> None:
        if int(minutes) <= 0:
            raise ValidationError(f"duration must be a positive number of minutes, got {minutes}")
        self.duration_minutes = int(minutes)

    @property
    def start_at(self) -> Optional[datetime]:
        if self.day is None or self.start is None:
            return None
        return at_local(self.day, self.start, self.tz)

    @property
    def end_at(self) -> Optional[datetime]:
        start = self.start_at
        if start is None or self.duration_minutes <= 0:
            return None
        return start + timedelta(minutes=self.duration_minutes)

    @property
    def end_text(self) -> str:
        end = self.end_at
        return format_hhmm(end.time()) if end else ""

    def validate(self) -> None:
        missing = []
        if not (self.title or "").strip():
            missing.append("title")
        if not (self.subject or "").strip():
            missing.append("subject")
        if self.start_at is None:
            missing.append("start")
        if self.end_at is None:
            missing.append("end")
        if missing:
            raise MissingFieldError(missing)
        if self.subjects and self.subject not in self.subjects:
            raise ValidationError(f"unknown subject {self.subject!r}")

    def build_event(self) -> CalendarEvent:
        self.validate()
        extra = {}
        if self._original is not None:
            extra = {
                "is_pomodoro": self._original.is_pomodoro,
                "pomodoro_work_minutes": self._original.pomodoro_work_minutes,
                "pomodoro_break_minutes": self._original.pomodoro_break_minutes,
                "source_slot_id": self._original.source_slot_id,
            }
        return make_event(
            id=self.event_id,
            title=self.title.strip(),
            subject=self.subject,
            topic=self.topic.strip(),
            start_time=self.start_at,
            end_time=self.end_at,
            event_type=self.event_type,
            **extra,
        )

    async def save(self, repository: "CalendarRepository") -> CalendarEvent:
        event = self.build_event()
        if is_synthetic_id(event.id):
            raise NotPersistableError(
                "this session comes from a weekly study slot; edit the slot instead"
            )
        saved = await repository.save_event(event)
        self.event_id = saved.id
        self._original = saved
        return saved

    async def delete(self, repository: "CalendarRepository") -> bool:
        if self.is_new:
            raise NotPersistableError("cannot delete a session that was never saved")
        await repository.delete_event(self.event_id)
        return True
