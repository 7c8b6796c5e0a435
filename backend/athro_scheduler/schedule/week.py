from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from .grid import GridWindow, WeekGrid, build_grid, find_overlaps
from .recurrence import expand_week
from .slots import BlockedTime, CalendarEvent, PreferredStudySlot
from .timeutil import get_timezone


@dataclass
class WeekData:
    week_start: date
    slots: List[PreferredStudySlot] = field(default_factory=list)
    events: List[CalendarEvent] = field(default_factory=list)
    blocked: List[BlockedTime] = field(default_factory=list)


@dataclass
class WeekView:
    grid: WeekGrid
    events: List[CalendarEvent]
    overlaps: List[Tuple[CalendarEvent, CalendarEvent]]


def assemble_week(
    data: WeekData,
    *,
    window: Optional[GridWindow] = None,
    tz: Optional[ZoneInfo] = None,
    break_minutes: Optional[int] = None,
    first_only: bool = False,
) -> WeekView:
    """Stored events plus this week's slot expansions, bucketed into the grid."""
    tz = tz or get_timezone()
    expanded = expand_week(
        [slot for slot in data.slots if slot.id],
        data.week_start,
        tz=tz,
        break_minutes=break_minutes,
        first_only=first_only,
    )
    events = list(data.events) + expanded
    grid = build_grid(events, data.week_start, window=window, tz=tz, blocked=data.blocked)
    return WeekView(grid=grid, events=events, overlaps=find_overlaps(grid.placed_events()))
