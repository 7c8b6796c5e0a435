"""Record shapes for recurring study slots, concrete calendar events and blocked times.

Days of the week are ISO numbered everywhere in this package: 1 = Monday
through 7 = Sunday. Storage uses a different numbering; the conversion
lives in the persistence layer only.
"""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..settings import settings
from .timeutil import get_timezone

logger = logging.getLogger(__name__)

SYNTHETIC_PREFIX = "slot-"
OFFERED_DURATIONS: List[int] = [20, 30, 45, 60, 90, 120]
MONDAY, SUNDAY = 1, 7


class EventType(str, Enum):
    STUDY_SESSION = "study_session"
    QUIZ = "quiz"
    REVISION = "revision"

    @classmethod
    def coerce(cls, value: Optional[str]) -> "EventType":
        try:
            return cls(value or cls.STUDY_SESSION.value)
        except ValueError:
            return cls.STUDY_SESSION


class SlotPreset(BaseModel):
    name: str
    count: int
    duration: int

    @property
    def total_minutes(self) -> int:
        return self.count * self.duration


SLOT_PRESETS: List[SlotPreset] = [
    SlotPreset(name="One long session", count=1, duration=120),
    SlotPreset(name="Two focused sessions", count=2, duration=60),
    SlotPreset(name="Four short sessions", count=4, duration=30),
    SlotPreset(name="Six quick bursts", count=6, duration=20),
]


class PreferredStudySlot(BaseModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    day_of_week: int = Field(ge=MONDAY, le=SUNDAY)
    slot_count: int = Field(gt=0)
    slot_duration_minutes: int = Field(gt=0)
    preferred_start_hour: int = Field(ge=0, le=23)
    created_at: Optional[datetime] = None
    subject: Optional[str] = None

    @property
    def total_minutes(self) -> int:
        return self.slot_count * self.slot_duration_minutes


class CalendarEvent(BaseModel):
    id: Optional[str] = None
    title: str
    subject: str = ""
    topic: str = ""
    start_time: datetime
    end_time: datetime
    event_type: EventType = EventType.STUDY_SESSION
    source_slot_id: Optional[str] = None
    is_pomodoro: bool = True
    pomodoro_work_minutes: int = Field(default=25, gt=0)
    pomodoro_break_minutes: int = Field(default=5, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def _zone_aware(cls, value: datetime) -> datetime:
        # Naive timestamps are wall-clock times in the calendar's zone
        if value.tzinfo is None:
            return value.replace(tzinfo=get_timezone())
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> "CalendarEvent":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def is_synthetic(self) -> bool:
        return is_synthetic_id(self.id)


class BlockedTime(BaseModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    title: str = "Busy"
    day_of_week: int = Field(ge=MONDAY, le=SUNDAY)
    start_time: time
    end_time: time
    reason: str = ""
    priority: str = "medium"

    @field_validator("priority")
    @classmethod
    def _known_priority(cls, value: str) -> str:
        if value not in ("low", "medium", "high"):
            raise ValueError("priority must be low, medium or high")
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> "BlockedTime":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def covers(self, moment: time) -> bool:
        return self.start_time <= moment < self.end_time


def is_synthetic_id(event_id: Optional[str]) -> bool:
    return bool(event_id and event_id.startswith(SYNTHETIC_PREFIX))


def _build(model: type[BaseModel], data: dict[str, Any]):
    try:
        return model(**data)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"invalid {model.__name__}: {problems}") from exc


def make_slot(**data: Any) -> PreferredStudySlot:
    slot = _build(PreferredStudySlot, data)
    if slot.total_minutes > _daily_budget():
        logger.warning(
            "Slot on day %s plans %s minutes, above the daily budget of %s",
            slot.day_of_week, slot.total_minutes, _daily_budget(),
        )
    return slot


def make_event(**data: Any) -> CalendarEvent:
    return _build(CalendarEvent, data)


def make_blocked_time(**data: Any) -> BlockedTime:
    return _build(BlockedTime, data)


def slot_from_preset(preset: SlotPreset, *, day_of_week: int, preferred_start_hour: int, **extra: Any) -> PreferredStudySlot:
    return make_slot(
        day_of_week=day_of_week,
        slot_count=preset.count,
        slot_duration_minutes=preset.duration,
        preferred_start_hour=preferred_start_hour,
        **extra,
    )


def slot_budget_warnings(slots: Iterable[PreferredStudySlot], budget: Optional[int] = None) -> List[str]:
    limit = budget if budget is not None else _daily_budget()
    per_day: dict[int, int] = {}
    for slot in slots:
        per_day[slot.day_of_week] = per_day.get(slot.day_of_week, 0) + slot.total_minutes
    return [
        f"day {day} plans {minutes} minutes of study (budget {limit})"
        for day, minutes in sorted(per_day.items())
        if minutes > limit
    ]


def _daily_budget() -> int:
    return settings.max_daily_study_minutes
