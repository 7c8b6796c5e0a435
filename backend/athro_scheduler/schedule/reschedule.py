"""Moving an event to another grid cell while keeping its length."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING, Optional, Tuple
from zoneinfo import ZoneInfo

from ..errors import NotPersistableError
from .grid import cell_start
from .slots import CalendarEvent, is_synthetic_id

if TYPE_CHECKING:
    from ..repository import CalendarRepository


def compute_reschedule(
    event: CalendarEvent,
    week_start: date,
    day_index: int,
    cell_time: time,
    *,
    tz: Optional[ZoneInfo] = None,
) -> Tuple[datetime, datetime]:
    new_start = cell_start(week_start, day_index, cell_time, tz)
    return new_start, new_start + event.duration


def ensure_persisted(event: CalendarEvent) -> str:
    if not event.id:
        raise NotPersistableError("event has not been saved yet and cannot be moved")
    if is_synthetic_id(event.id):
        raise NotPersistableError(
            f"event {event.id} is generated from a weekly study slot and cannot be moved on its own"
        )
    return event.id


async def reschedule(
    repository: "CalendarRepository",
    event: CalendarEvent,
    week_start: date,
    day_index: int,
    cell_time: time,
    *,
    tz: Optional[ZoneInfo] = None,
) -> CalendarEvent:
    event_id = ensure_persisted(event)
    new_start, new_end = compute_reschedule(event, week_start, day_index, cell_time, tz=tz)
    await repository.move_event(event_id, new_start, new_end)
    return event.model_copy(update={"start_time": new_start, "end_time": new_end})
