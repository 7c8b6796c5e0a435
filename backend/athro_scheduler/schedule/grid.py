"""Bucketing of a week's events into the {time row x day column} render grid.

Columns are 0-6 for Monday-Sunday. Rows enumerate every interval from the
window's start hour up to and including its end hour, so the default
15:00-22:00 window at 20 minutes gives 22 rows, the last one being 22:00.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from ..errors import ValidationError
from ..settings import settings
from .slots import BlockedTime, CalendarEvent
from .timeutil import at_local, get_timezone, minutes_of_day, require_monday, to_local

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class GridWindow:
    start_hour: int = 15
    end_hour: int = 22
    interval_minutes: int = 20

    def __post_init__(self) -> None:
        if not (0 <= self.start_hour <= self.end_hour <= 23):
            raise ValidationError(f"grid hours must satisfy 0 <= start <= end <= 23, got {self.start_hour}-{self.end_hour}")
        if self.interval_minutes <= 0 or 60 % self.interval_minutes:
            raise ValidationError(f"grid interval must divide an hour, got {self.interval_minutes}")

    @classmethod
    def from_settings(cls) -> "GridWindow":
        return cls(settings.grid_start_hour, settings.grid_end_hour, settings.grid_interval_minutes)

    @property
    def first_minute(self) -> int:
        return self.start_hour * 60

    @property
    def last_minute(self) -> int:
        return self.end_hour * 60

    def row_times(self) -> List[time]:
        return [
            time(m // 60, m % 60)
            for m in range(self.first_minute, self.last_minute + 1, self.interval_minutes)
        ]

    def row_index(self, clock: time) -> Optional[int]:
        minute = minutes_of_day(clock)
        if minute < self.first_minute or minute >= self.last_minute + self.interval_minutes:
            return None
        return (minute - self.first_minute) // self.interval_minutes


@dataclass
class GridCell:
    day_index: int
    time: time
    start: datetime
    events: List[CalendarEvent] = field(default_factory=list)
    blocked: List[BlockedTime] = field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocked)


@dataclass
class WeekGrid:
    week_start: date
    window: GridWindow
    rows: List[List[GridCell]]
    dropped: List[CalendarEvent] = field(default_factory=list)

    def cell(self, day_index: int, clock: time) -> GridCell:
        _check_day_index(day_index)
        row = self.window.row_index(clock)
        if row is None:
            raise ValidationError(f"{clock.isoformat('minutes')} is outside the grid window")
        return self.rows[row][day_index]

    def placed_events(self) -> List[CalendarEvent]:
        return [event for row in self.rows for cell in row for event in cell.events]


def cell_start(week_start: date, day_index: int, clock: time, tz: Optional[ZoneInfo] = None) -> datetime:
    """Absolute start of the grid cell at ``day_index`` (0 = Monday) and ``clock``."""
    _check_day_index(day_index)
    week_start = require_monday(week_start)
    return at_local(week_start + timedelta(days=day_index), clock, tz or get_timezone())


def week_range(week_start: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    week_start = require_monday(week_start)
    return at_local(week_start, time(0), tz), at_local(week_start + timedelta(days=DAYS_PER_WEEK), time(0), tz)


def build_grid(
    events: Iterable[CalendarEvent],
    week_start: date,
    *,
    window: Optional[GridWindow] = None,
    tz: Optional[ZoneInfo] = None,
    blocked: Sequence[BlockedTime] = (),
) -> WeekGrid:
    window = window or GridWindow.from_settings()
    tz = tz or get_timezone()
    week_start = require_monday(week_start)
    begin, end = week_range(week_start, tz)

    rows = [
        [
            GridCell(day_index=day, time=clock, start=at_local(week_start + timedelta(days=day), clock, tz))
            for day in range(DAYS_PER_WEEK)
        ]
        for clock in window.row_times()
    ]
    grid = WeekGrid(week_start=week_start, window=window, rows=rows)

    for event in events:
        local = to_local(event.start_time, tz)
        row = window.row_index(local.time()) if begin <= local < end else None
        if row is None:
            grid.dropped.append(event)
            continue
        rows[row][local.weekday()].events.append(event)

    if blocked:
        _mark_blocked(grid, blocked)
    if grid.dropped:
        logger.debug("%d event(s) fall outside the week of %s or the grid window", len(grid.dropped), week_start)
    return grid


def _mark_blocked(grid: WeekGrid, blocked: Sequence[BlockedTime]) -> None:
    for row in grid.rows:
        for cell in row:
            cell_begin = minutes_of_day(cell.time)
            cell_end = cell_begin + grid.window.interval_minutes
            for block in blocked:
                if block.day_of_week - 1 != cell.day_index:
                    continue
                if minutes_of_day(block.start_time) < cell_end and cell_begin < minutes_of_day(block.end_time):
                    cell.blocked.append(block)


def find_overlaps(events: Iterable[CalendarEvent]) -> List[Tuple[CalendarEvent, CalendarEvent]]:
    """Pairs of events whose time ranges intersect. Nothing is rejected or merged."""
    ordered = sorted(events, key=lambda e: e.start_time)
    pairs: List[Tuple[CalendarEvent, CalendarEvent]] = []
    active: List[CalendarEvent] = []
    for event in ordered:
        active = [other for other in active if other.end_time > event.start_time]
        pairs.extend((other, event) for other in active)
        active.append(event)
    return pairs


def _check_day_index(day_index: int) -> None:
    if not 0 <= day_index < DAYS_PER_WEEK:
        raise ValidationError(f"day index must be 0-6 (Monday-Sunday), got {day_index}")
