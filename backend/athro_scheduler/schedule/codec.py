"""Packing of event metadata into the JSON ``description`` column."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..errors import DecodeError

logger = logging.getLogger(__name__)


class EventDescription(BaseModel):
    subject: str = ""
    topic: str = ""
    is_pomodoro: bool = True
    pomodoro_work_minutes: int = 25
    pomodoro_break_minutes: int = 5


def encode_description(
    subject: Optional[str],
    topic: Optional[str],
    *,
    is_pomodoro: bool = True,
    pomodoro_work_minutes: int = 25,
    pomodoro_break_minutes: int = 5,
) -> str:
    payload: Dict[str, Any] = {
        "subject": subject or "",
        "topic": topic or "",
        "isPomodoro": is_pomodoro,
        "pomodoroWorkMinutes": pomodoro_work_minutes,
        "pomodoroBreakMinutes": pomodoro_break_minutes,
    }
    return json.dumps(payload)


def parse_description(raw: str) -> EventDescription:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"description is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError("description JSON is not an object")
    return EventDescription(
        subject=str(data.get("subject") or ""),
        topic=str(data.get("topic") or ""),
        is_pomodoro=bool(data.get("isPomodoro", True)),
        pomodoro_work_minutes=_positive_int(data.get("pomodoroWorkMinutes"), 25),
        pomodoro_break_minutes=_positive_int(data.get("pomodoroBreakMinutes"), 5),
    )


def decode_description(raw: Optional[str], title: Optional[str]) -> EventDescription:
    """Decode a stored description, never raising.

    Rows written by older clients may carry free text here; those fall back
    to the row title as the subject and an empty topic.
    """
    if not raw:
        return EventDescription()
    try:
        return parse_description(raw)
    except DecodeError as exc:
        logger.debug("Falling back to title as subject: %s", exc)
        return EventDescription(subject=title or "", topic="")


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default
