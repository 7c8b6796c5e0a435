"""Tests for drag-rescheduling events between grid cells."""
from datetime import datetime, time, timedelta

import pytest

from athro_scheduler.errors import NotPersistableError
from athro_scheduler.schedule.reschedule import compute_reschedule, reschedule
from athro_scheduler.schedule.slots import make_event

from conftest import LONDON, WEEK_OF_JUNE_3


class MoveRecorder:
    def __init__(self):
        self.moves = []

    async def move_event(self, event_id, start, end):
        self.moves.append((event_id, start, end))


def _event(event_id="e1", minutes=30):
    start = datetime(2024, 6, 5, 16, 0, tzinfo=LONDON)
    return make_event(id=event_id, title="Study Session", start_time=start, end_time=start + timedelta(minutes=minutes))


def test_drag_to_thursday_five_pm():
    start, end = compute_reschedule(_event(), WEEK_OF_JUNE_3, 3, time(17, 0), tz=LONDON)
    assert start == datetime(2024, 6, 6, 17, 0, tzinfo=LONDON)
    assert end == datetime(2024, 6, 6, 17, 30, tzinfo=LONDON)


@pytest.mark.parametrize("minutes", [20, 45, 95, 240])
@pytest.mark.parametrize("day_index,clock", [(0, time(15)), (6, time(21, 40)), (2, time(16))])
def test_duration_is_preserved(minutes, day_index, clock):
    event = _event(minutes=minutes)
    start, end = compute_reschedule(event, WEEK_OF_JUNE_3, day_index, clock, tz=LONDON)
    assert start.date() == WEEK_OF_JUNE_3 + timedelta(days=day_index)
    assert (start.hour, start.minute) == (clock.hour, clock.minute)
    assert end - start == event.duration


@pytest.mark.asyncio
async def test_reschedule_updates_only_the_times():
    repo = MoveRecorder()
    moved = await reschedule(repo, _event(), WEEK_OF_JUNE_3, 3, time(17, 0), tz=LONDON)
    assert repo.moves == [("e1", moved.start_time, moved.end_time)]
    assert moved.title == "Study Session"
    assert moved.duration == timedelta(minutes=30)


@pytest.mark.asyncio
@pytest.mark.parametrize("event_id", [None, "slot-abc", "slot-abc#2"])
async def test_unpersisted_events_cannot_be_dragged(event_id):
    repo = MoveRecorder()
    with pytest.raises(NotPersistableError):
        await reschedule(repo, _event(event_id=event_id), WEEK_OF_JUNE_3, 3, time(17, 0), tz=LONDON)
    assert repo.moves == []
