"""The only component that talks to the data store.

Callers pass an explicit ``UserSession``; nothing here reads the current
user from global state. Failures from the store (including timeouts) are
logged and surface as ``PersistenceError`` with the original error attached.

Repositories are built per request, so the in-flight week loads and the write
locks live in a ``UserState`` shared by every repository of the same user.
It is dropped once no repository for that user is alive.

Slot replacement is delete-all-then-insert-all for the user. Two devices
saving slots at the same time race and the last writer wins.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import NotPersistableError, PersistenceError, StoreError, ValidationError
from .schedule.codec import decode_description, encode_description
from .schedule.recurrence import parse_synthetic_id
from .schedule.slots import (
    BlockedTime,
    CalendarEvent,
    EventType,
    PreferredStudySlot,
    is_synthetic_id,
    make_blocked_time,
    make_event,
    make_slot,
)
from .schedule.timeutil import get_timezone, require_monday, to_local
from .schedule.week import WeekData
from .settings import settings
from .stores.base import BLOCKED_TIMES, CALENDAR_EVENTS, PREFERRED_STUDY_SLOTS, Row, TableStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserSession:
    user_id: str
    access_token: Optional[str] = None


def to_storage_day(iso_day: int) -> int:
    """ISO weekday (1 = Monday .. 7 = Sunday) to the stored 0 = Sunday convention."""
    if not 1 <= iso_day <= 7:
        raise ValidationError(f"day of week must be 1-7, got {iso_day}")
    return iso_day % 7


def from_storage_day(value: Any) -> int:
    day = int(value)
    if not 0 <= day <= 7:
        raise ValidationError(f"stored day of week out of range: {value}")
    # Some early rows stored Sunday as 7
    return 7 if day in (0, 7) else day


class KeyedLocks:
    """One ``asyncio.Lock`` per key, removed again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[asyncio.Lock, List[int]]] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = (asyncio.Lock(), [0])
        lock, users = entry
        users[0] += 1
        try:
            async with lock:
                yield
        finally:
            users[0] -= 1
            if users[0] == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class UserState:
    """Coordination shared by all repositories of one user."""

    def __init__(self) -> None:
        self.inflight: Dict[Tuple[date, str], "asyncio.Future[WeekData]"] = {}
        self.locks = KeyedLocks()


_user_states: "weakref.WeakValueDictionary[str, UserState]" = weakref.WeakValueDictionary()


def user_state(user_id: str) -> UserState:
    state = _user_states.get(user_id)
    if state is None:
        state = UserState()
        _user_states[user_id] = state
    return state


class CalendarRepository:
    def __init__(
        self,
        store: TableStore,
        session: UserSession,
        *,
        timeout: Optional[float] = None,
        tz: Optional[ZoneInfo] = None,
        state: Optional[UserState] = None,
    ) -> None:
        if not session.user_id:
            raise ValidationError("a signed-in user is required")
        self.store = store
        self.session = session
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self.tz = tz or get_timezone()
        self.state = state or user_state(session.user_id)

    @property
    def user_id(self) -> str:
        return self.session.user_id

    # ---- week loading ----

    async def load_week(self, week_start: date) -> WeekData:
        week_start = require_monday(week_start)
        key = (week_start, self.tz.key)
        inflight = self.state.inflight
        pending = inflight.get(key)
        if pending is not None and not pending.done():
            logger.debug("Joining in-flight load for week %s", week_start)
            return await asyncio.shield(pending)
        task = asyncio.ensure_future(self._load_week(week_start))
        inflight[key] = task
        task.add_done_callback(lambda done, key=key: _forget_load(inflight, key, done))
        return await asyncio.shield(task)

    async def _load_week(self, week_start: date) -> WeekData:
        event_rows = await self._call(
            "load calendar events",
            self.store.select(CALENDAR_EVENTS, any_of=self._owner_filter(), order_by="start_time"),
        )
        slots = await self.list_slots()
        blocked = await self.list_blocked_times()
        events = []
        for row in event_rows:
            try:
                events.append(self.event_from_row(row))
            except ValidationError as exc:
                logger.warning("Skipping calendar row %s: %s", row.get("id"), exc)
        return WeekData(week_start=week_start, slots=slots, events=events, blocked=blocked)

    # ---- calendar events ----

    async def get_event(self, event_id: str) -> CalendarEvent:
        if is_synthetic_id(event_id):
            raise NotPersistableError(f"event {event_id} is generated from a study slot and has no stored row")
        rows = await self._call(
            "load calendar event",
            self.store.select(CALENDAR_EVENTS, match={"id": event_id}, any_of=self._owner_filter()),
        )
        if not rows:
            raise PersistenceError(f"calendar event {event_id} was not found")
        return self.event_from_row(rows[0])

    async def save_event(self, event: CalendarEvent) -> CalendarEvent:
        if is_synthetic_id(event.id):
            raise NotPersistableError(f"event {event.id} is generated from a study slot and is never stored")
        payload = self.event_to_row(event)
        if not event.id:
            rows = await self._call("create calendar event", self.store.insert(CALENDAR_EVENTS, [payload]))
            if not rows:
                raise PersistenceError("create calendar event returned no row")
            logger.info("Created calendar event %s for user %s", rows[0].get("id"), self.user_id)
            return self.event_from_row(rows[0])
        async with self.state.locks.hold(event.id):
            rows = await self._call(
                "update calendar event",
                self.store.update(CALENDAR_EVENTS, payload, match={"id": event.id}, any_of=self._owner_filter()),
            )
        if not rows:
            raise PersistenceError(f"calendar event {event.id} was not found")
        return self.event_from_row(rows[0])

    async def save_events(self, events: List[CalendarEvent]) -> List[CalendarEvent]:
        """Insert several new events in one store call."""
        if any(event.id for event in events):
            raise NotPersistableError("batch inserts only take events that have not been stored yet")
        if not events:
            return []
        rows = await self._call(
            "create calendar events",
            self.store.insert(CALENDAR_EVENTS, [self.event_to_row(event) for event in events]),
        )
        logger.info("Created %s calendar event(s) for user %s", len(rows), self.user_id)
        return [self.event_from_row(row) for row in rows]

    async def move_event(self, event_id: str, start: datetime, end: datetime) -> None:
        if not event_id or is_synthetic_id(event_id):
            raise NotPersistableError(f"event {event_id!r} has no stored row to move")
        if end <= start:
            raise ValidationError("end must be after start")
        values = {"start_time": self._iso(start), "end_time": self._iso(end)}
        async with self.state.locks.hold(event_id):
            rows = await self._call(
                "move calendar event",
                self.store.update(CALENDAR_EVENTS, values, match={"id": event_id}, any_of=self._owner_filter()),
            )
        if not rows:
            raise PersistenceError(f"calendar event {event_id} was not found")

    async def delete_event(self, event_id: str) -> None:
        slot_id = parse_synthetic_id(event_id)
        if slot_id is not None:
            # The event only exists as an expansion; remove its template instead
            logger.info("Deleting study slot %s behind synthetic event %s", slot_id, event_id)
            await self.delete_slot(slot_id)
            return
        if not event_id:
            raise NotPersistableError("event has no id to delete")
        async with self.state.locks.hold(event_id):
            await self._call(
                "delete calendar event",
                self.store.delete(CALENDAR_EVENTS, match={"id": event_id}, any_of=self._owner_filter()),
            )

    # ---- preferred study slots ----

    async def list_slots(self) -> List[PreferredStudySlot]:
        rows = await self._call(
            "load study slots",
            self.store.select(PREFERRED_STUDY_SLOTS, match={"user_id": self.user_id}, order_by="day_of_week"),
        )
        return [self.slot_from_row(row) for row in rows]

    async def replace_all_slots(self, slots: List[PreferredStudySlot]) -> List[PreferredStudySlot]:
        rows = [self.slot_to_row(slot) for slot in slots]
        async with self.state.locks.hold(f"slots:{self.user_id}"):
            removed = await self._call(
                "clear study slots",
                self.store.delete(PREFERRED_STUDY_SLOTS, match={"user_id": self.user_id}),
            )
            try:
                inserted = await self._call("save study slots", self.store.insert(PREFERRED_STUDY_SLOTS, rows)) if rows else []
            except PersistenceError as exc:
                logger.error(
                    "Study slots for user %s were cleared (%s removed) but the %s new slot(s) were not saved; "
                    "the save must be retried",
                    self.user_id, removed, len(rows),
                )
                raise PersistenceError(
                    "Study slots were cleared but the new slots could not be saved; save them again",
                    cause=exc.cause,
                ) from exc
        logger.info("Replaced %s study slot(s) with %s for user %s", removed, len(inserted), self.user_id)
        return [self.slot_from_row(row) for row in inserted]

    async def delete_slot(self, slot_id: str) -> None:
        async with self.state.locks.hold(f"slots:{self.user_id}"):
            await self._call(
                "delete study slot",
                self.store.delete(PREFERRED_STUDY_SLOTS, match={"id": slot_id, "user_id": self.user_id}),
            )

    # ---- blocked times ----

    async def list_blocked_times(self) -> List[BlockedTime]:
        rows = await self._call(
            "load blocked times",
            self.store.select(BLOCKED_TIMES, match={"user_id": self.user_id}, order_by="day_of_week"),
        )
        return [self.blocked_from_row(row) for row in rows]

    async def save_blocked_time(self, block: BlockedTime) -> BlockedTime:
        payload = self.blocked_to_row(block)
        if not block.id:
            rows = await self._call("create blocked time", self.store.insert(BLOCKED_TIMES, [payload]))
        else:
            async with self.state.locks.hold(block.id):
                rows = await self._call(
                    "update blocked time",
                    self.store.update(BLOCKED_TIMES, payload, match={"id": block.id, "user_id": self.user_id}),
                )
        if not rows:
            raise PersistenceError(f"blocked time {block.id or ''} was not saved".strip())
        return self.blocked_from_row(rows[0])

    async def delete_blocked_time(self, block_id: str) -> None:
        async with self.state.locks.hold(block_id):
            await self._call(
                "delete blocked time",
                self.store.delete(BLOCKED_TIMES, match={"id": block_id, "user_id": self.user_id}),
            )

    # ---- row mapping ----

    def event_from_row(self, row: Row) -> CalendarEvent:
        event_id = row.get("id")
        if event_id is not None and is_synthetic_id(str(event_id)):
            raise ValidationError(f"stored event id {event_id!r} collides with the slot- prefix")
        meta = decode_description(row.get("description"), row.get("title"))
        return make_event(
            id=str(event_id) if event_id is not None else None,
            title=row.get("title") or "",
            subject=meta.subject,
            topic=meta.topic,
            start_time=self._stored_moment(row.get("start_time")),
            end_time=self._stored_moment(row.get("end_time")),
            event_type=EventType.coerce(row.get("event_type")),
            is_pomodoro=meta.is_pomodoro,
            pomodoro_work_minutes=meta.pomodoro_work_minutes,
            pomodoro_break_minutes=meta.pomodoro_break_minutes,
        )

    def event_to_row(self, event: CalendarEvent) -> Row:
        return {
            "user_id": self.user_id,
            "student_id": self.user_id,
            "title": event.title,
            "description": encode_description(
                event.subject,
                event.topic,
                is_pomodoro=event.is_pomodoro,
                pomodoro_work_minutes=event.pomodoro_work_minutes,
                pomodoro_break_minutes=event.pomodoro_break_minutes,
            ),
            "event_type": event.event_type.value,
            "start_time": self._iso(event.start_time),
            "end_time": self._iso(event.end_time),
        }

    def slot_from_row(self, row: Row) -> PreferredStudySlot:
        return make_slot(
            id=str(row["id"]) if row.get("id") is not None else None,
            user_id=row.get("user_id"),
            day_of_week=from_storage_day(row["day_of_week"]),
            slot_count=row["slot_count"],
            slot_duration_minutes=row["slot_duration_minutes"],
            preferred_start_hour=row["preferred_start_hour"],
            created_at=row.get("created_at"),
        )

    def slot_to_row(self, slot: PreferredStudySlot) -> Row:
        # id and created_at are assigned by the store; subject has no column
        return {
            "user_id": self.user_id,
            "day_of_week": to_storage_day(slot.day_of_week),
            "slot_count": slot.slot_count,
            "slot_duration_minutes": slot.slot_duration_minutes,
            "preferred_start_hour": slot.preferred_start_hour,
        }

    def blocked_from_row(self, row: Row) -> BlockedTime:
        return make_blocked_time(
            id=str(row["id"]) if row.get("id") is not None else None,
            user_id=row.get("user_id"),
            title=row.get("title") or "Busy",
            day_of_week=from_storage_day(row["day_of_week"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            reason=row.get("reason") or "",
            priority=row.get("priority") or "medium",
        )

    def blocked_to_row(self, block: BlockedTime) -> Row:
        return {
            "user_id": self.user_id,
            "title": block.title,
            "day_of_week": to_storage_day(block.day_of_week),
            "start_time": _clock(block.start_time),
            "end_time": _clock(block.end_time),
            "reason": block.reason,
            "priority": block.priority,
        }

    # ---- plumbing ----

    def _owner_filter(self) -> Dict[str, str]:
        return {"student_id": self.user_id, "user_id": self.user_id}

    def _iso(self, moment: datetime) -> str:
        return to_local(moment, self.tz).astimezone(timezone.utc).isoformat()

    def _stored_moment(self, value: Any) -> datetime:
        try:
            moment = _MOMENT.validate_python(value)
        except PydanticValidationError as exc:
            raise ValidationError(f"unreadable timestamp {value!r}") from exc
        return to_local(moment, self.tz)

    async def _call(self, what: str, pending: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(pending, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Could not %s for user %s: timed out after %ss", what, self.user_id, self.timeout)
            raise PersistenceError(f"Could not {what}: the request timed out", cause=exc) from exc
        except StoreError as exc:
            logger.error("Could not %s for user %s: %s", what, self.user_id, exc)
            raise PersistenceError(f"Could not {what}", cause=exc) from exc


_MOMENT = TypeAdapter(datetime)


def _forget_load(inflight: Dict[Tuple[date, str], "asyncio.Future[WeekData]"], key, task) -> None:
    if inflight.get(key) is task:
        del inflight[key]


def _clock(value: time) -> str:
    return value.strftime("%H:%M:%S")
