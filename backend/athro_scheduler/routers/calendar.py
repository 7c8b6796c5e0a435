from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..errors import (
    MissingFieldError,
    NotPersistableError,
    PersistenceError,
    SchedulerError,
    ValidationError,
)
from ..repository import CalendarRepository
from ..schedule.editor import SessionEditor
from ..schedule.grid import GridWindow
from ..schedule.plan import SubjectPreference, generate_plan
from ..schedule.reschedule import reschedule
from ..schedule.slots import (
    OFFERED_DURATIONS,
    SLOT_PRESETS,
    CalendarEvent,
    EventType,
    make_blocked_time,
    make_slot,
    slot_budget_warnings,
)
from ..schedule.timeutil import format_hhmm, parse_hhmm, today_in, week_start_for
from ..schedule.week import WeekData, WeekView, assemble_week
from ..settings import settings
from .auth import get_repository

router = APIRouter(prefix="/calendar", tags=["calendar"])

logger = logging.getLogger(__name__)


class EventRequest(BaseModel):
    title: str = ""
    subject: str = ""
    topic: Optional[str] = None
    day: Optional[date] = None
    start: str = ""
    duration_minutes: int = 60
    event_type: EventType = EventType.STUDY_SESSION


class MoveRequest(BaseModel):
    week_start: date
    day_index: int = Field(ge=0, le=6)
    time: str


class SlotIn(BaseModel):
    day_of_week: int
    slot_count: int
    slot_duration_minutes: int
    preferred_start_hour: int
    subject: Optional[str] = None


class SlotsRequest(BaseModel):
    slots: List[SlotIn]


class PlanRequest(BaseModel):
    subjects: List[SubjectPreference]


class BlockedIn(BaseModel):
    title: str = "Busy"
    day_of_week: int
    start_time: str
    end_time: str
    reason: str = ""
    priority: str = "medium"


def _http_error(exc: SchedulerError) -> HTTPException:
    if isinstance(exc, MissingFieldError):
        return HTTPException(status_code=422, detail={"message": str(exc), "missing": exc.fields})
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotPersistableError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _event_json(event: CalendarEvent) -> Dict[str, Any]:
    data = event.model_dump(mode="json")
    data["is_synthetic"] = event.is_synthetic
    data["duration_minutes"] = int(event.duration.total_seconds() // 60)
    return data


def _week_json(view: WeekView, data: WeekData, error: Optional[str]) -> Dict[str, Any]:
    rows = []
    for row in view.grid.rows:
        rows.append({
            "time": format_hhmm(row[0].time),
            "cells": [
                {
                    "day_index": cell.day_index,
                    "start": cell.start.isoformat(),
                    "events": [e.id for e in cell.events],
                    "blocked": [b.title for b in cell.blocked],
                }
                for cell in row
            ],
        })
    return {
        "week_start": view.grid.week_start.isoformat(),
        "rows": rows,
        "events": [_event_json(e) for e in view.events],
        "slots": [s.model_dump(mode="json") for s in data.slots],
        "blocked": [b.model_dump(mode="json") for b in data.blocked],
        "overlaps": [[a.id, b.id] for a, b in view.overlaps],
        "error": error,
    }


def _apply(editor: SessionEditor, req: EventRequest) -> None:
    editor.set_title(req.title)
    editor.set_subject(req.subject)
    editor.set_topic(req.topic)
    if req.start:
        editor.set_start(req.start)
    else:
        editor.start = None
    editor.set_duration(req.duration_minutes)
    editor.event_type = req.event_type
    if req.day is not None:
        editor.day = req.day


@router.get("/presets")
async def presets():
    return {
        "presets": [p.model_dump() | {"total_minutes": p.total_minutes} for p in SLOT_PRESETS],
        "durations": OFFERED_DURATIONS,
        "subjects": settings.subjects,
    }


@router.get("/week")
async def week(
    start: Optional[date] = Query(default=None, description="Any date in the week to show"),
    first_only: bool = Query(default=False, description="Only expand the first session of each slot"),
    repo: CalendarRepository = Depends(get_repository),
):
    week_start = week_start_for(start or today_in(repo.tz))
    error: Optional[str] = None
    try:
        data = await repo.load_week(week_start)
    except PersistenceError as exc:
        # Show an empty grid with a notice rather than failing the page
        error = str(exc)
        data = WeekData(week_start=week_start)
    try:
        view = assemble_week(data, window=GridWindow.from_settings(), tz=repo.tz, first_only=first_only)
    except SchedulerError as exc:
        raise _http_error(exc)
    return _week_json(view, data, error)


@router.post("/events", status_code=201)
async def create_event(req: EventRequest, repo: CalendarRepository = Depends(get_repository)):
    editor = SessionEditor(settings.subjects, tz=repo.tz)
    try:
        editor.open_new(req.day or today_in(repo.tz))
        _apply(editor, req)
        saved = await editor.save(repo)
    except SchedulerError as exc:
        raise _http_error(exc)
    return _event_json(saved)


@router.put("/events/{event_id}")
async def update_event(event_id: str, req: EventRequest, repo: CalendarRepository = Depends(get_repository)):
    editor = SessionEditor(settings.subjects, tz=repo.tz)
    try:
        editor.open_existing(await repo.get_event(event_id))
        _apply(editor, req)
        saved = await editor.save(repo)
    except SchedulerError as exc:
        raise _http_error(exc)
    return _event_json(saved)


@router.delete("/events/{event_id}")
async def delete_event(event_id: str, repo: CalendarRepository = Depends(get_repository)):
    try:
        await repo.delete_event(event_id)
    except SchedulerError as exc:
        raise _http_error(exc)
    return {"ok": True}


@router.post("/events/{event_id}/move")
async def move_event(event_id: str, req: MoveRequest, repo: CalendarRepository = Depends(get_repository)):
    try:
        event = await repo.get_event(event_id)
        moved = await reschedule(repo, event, req.week_start, req.day_index, parse_hhmm(req.time), tz=repo.tz)
    except SchedulerError as exc:
        raise _http_error(exc)
    return _event_json(moved)


@router.get("/slots")
async def list_slots(repo: CalendarRepository = Depends(get_repository)):
    try:
        slots = await repo.list_slots()
    except SchedulerError as exc:
        raise _http_error(exc)
    return {"slots": [s.model_dump(mode="json") for s in slots]}


@router.put("/slots")
async def replace_slots(req: SlotsRequest, repo: CalendarRepository = Depends(get_repository)):
    try:
        slots = [make_slot(**s.model_dump()) for s in req.slots]
        saved = await repo.replace_all_slots(slots)
    except SchedulerError as exc:
        raise _http_error(exc)
    return {"slots": [s.model_dump(mode="json") for s in saved], "warnings": slot_budget_warnings(slots)}


@router.post("/plan", status_code=201)
async def create_plan(req: PlanRequest, repo: CalendarRepository = Depends(get_repository)):
    """Generate study sessions for the chosen subjects and add them to the calendar."""
    try:
        if not req.subjects:
            raise ValidationError("choose at least one subject")
        unknown = [p.subject for p in req.subjects if p.subject not in settings.subjects]
        if unknown:
            raise ValidationError(f"unknown subject(s): {', '.join(unknown)}")
        slots = await repo.list_slots()
        plan = generate_plan(req.subjects, slots, today=today_in(repo.tz), tz=repo.tz)
        saved = await repo.save_events(plan.events)
    except SchedulerError as exc:
        raise _http_error(exc)
    return {
        "distribution": [a.model_dump() for a in plan.allocations],
        "events": [_event_json(e) for e in saved],
        "used_default_slots": plan.used_default_slots,
    }


@router.get("/blocked")
async def list_blocked(repo: CalendarRepository = Depends(get_repository)):
    try:
        blocked = await repo.list_blocked_times()
    except SchedulerError as exc:
        raise _http_error(exc)
    return {"blocked": [b.model_dump(mode="json") for b in blocked]}


@router.post("/blocked", status_code=201)
async def create_blocked(req: BlockedIn, repo: CalendarRepository = Depends(get_repository)):
    try:
        block = make_blocked_time(
            title=req.title,
            day_of_week=req.day_of_week,
            start_time=parse_hhmm(req.start_time),
            end_time=parse_hhmm(req.end_time),
            reason=req.reason,
            priority=req.priority,
        )
        saved = await repo.save_blocked_time(block)
    except SchedulerError as exc:
        raise _http_error(exc)
    return saved.model_dump(mode="json")


@router.delete("/blocked/{block_id}")
async def delete_blocked(block_id: str, repo: CalendarRepository = Depends(get_repository)):
    try:
        await repo.delete_blocked_time(block_id)
    except SchedulerError as exc:
        raise _http_error(exc)
    return {"ok": True}
