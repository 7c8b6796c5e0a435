"""Tests for expanding weekly study slots into dated sessions."""
from datetime import datetime, timedelta

import pytest

from athro_scheduler.errors import NotPersistableError
from athro_scheduler.schedule.recurrence import expand_slot, expand_week, parse_synthetic_id, synthetic_id
from athro_scheduler.schedule.slots import make_slot

from conftest import LONDON, WEEK_OF_JUNE_3


def _slot(**overrides):
    data = dict(id="abc", day_of_week=3, slot_count=2, slot_duration_minutes=30, preferred_start_hour=16)
    data.update(overrides)
    return make_slot(**data)


def test_wednesday_slot_first_session():
    (event,) = expand_slot(_slot(), WEEK_OF_JUNE_3, tz=LONDON, first_only=True)
    assert event.start_time == datetime(2024, 6, 5, 16, 0, tzinfo=LONDON)
    assert event.end_time == datetime(2024, 6, 5, 16, 30, tzinfo=LONDON)
    assert event.id == "slot-abc"
    assert event.source_slot_id == "abc"
    assert event.is_synthetic


def test_all_sessions_are_expanded_with_breaks():
    events = expand_slot(_slot(slot_count=3), WEEK_OF_JUNE_3, tz=LONDON, break_minutes=10)
    assert [e.id for e in events] == ["slot-abc", "slot-abc#2", "slot-abc#3"]
    assert [e.start_time.strftime("%H:%M") for e in events] == ["16:00", "16:40", "17:20"]
    assert all(e.duration == timedelta(minutes=30) for e in events)


def test_first_session_is_the_same_in_both_modes():
    slot = _slot(slot_count=4)
    assert expand_slot(slot, WEEK_OF_JUNE_3, tz=LONDON)[0] == expand_slot(
        slot, WEEK_OF_JUNE_3, tz=LONDON, first_only=True
    )[0]


@pytest.mark.parametrize("day", range(1, 8))
@pytest.mark.parametrize("minutes", [20, 45, 120])
@pytest.mark.parametrize("hour", [0, 15, 23])
def test_expansion_lands_on_the_right_weekday(day, minutes, hour):
    slot = _slot(day_of_week=day, slot_duration_minutes=minutes, preferred_start_hour=hour)
    (event,) = expand_slot(slot, WEEK_OF_JUNE_3, tz=LONDON, first_only=True)
    assert event.start_time.isoweekday() == day
    assert event.start_time.date() == WEEK_OF_JUNE_3 + timedelta(days=day - 1)
    assert event.end_time - event.start_time == timedelta(minutes=minutes)


def test_expansion_is_idempotent_across_weeks():
    slot = _slot()
    this_week = expand_slot(slot, WEEK_OF_JUNE_3, tz=LONDON)
    next_week = expand_slot(slot, WEEK_OF_JUNE_3 + timedelta(days=7), tz=LONDON)
    assert [e.id for e in this_week] == [e.id for e in next_week]
    assert next_week[0].start_time - this_week[0].start_time == timedelta(days=7)


def test_unsaved_slot_cannot_be_expanded():
    with pytest.raises(NotPersistableError):
        expand_slot(_slot(id=None), WEEK_OF_JUNE_3, tz=LONDON)


def test_subject_shapes_the_title():
    (event,) = expand_slot(_slot(subject="Welsh"), WEEK_OF_JUNE_3, tz=LONDON, first_only=True)
    assert event.title == "Welsh Study Session"
    assert event.subject == "Welsh"


def test_expand_week_combines_slots():
    slots = [_slot(id="a", slot_count=1), _slot(id="b", day_of_week=7, slot_count=2)]
    events = expand_week(slots, WEEK_OF_JUNE_3, tz=LONDON)
    assert [e.id for e in events] == ["slot-a", "slot-b", "slot-b#2"]


@pytest.mark.parametrize("event_id,expected", [
    ("slot-abc", "abc"),
    ("slot-abc#3", "abc"),
    ("slot-8b0c2c0e-1111-4a4a-9999-000000000001", "8b0c2c0e-1111-4a4a-9999-000000000001"),
    (synthetic_id("8b0c2c0e-1111-4a4a-9999-000000000001", 2), "8b0c2c0e-1111-4a4a-9999-000000000001"),
    ("e3b1", None),
    (None, None),
    ("slot-", None),
])
def test_parse_synthetic_id(event_id, expected):
    assert parse_synthetic_id(event_id) == expected
