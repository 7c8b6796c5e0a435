from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text
from .db import Base


def _new_id() -> str:
	return str(uuid.uuid4())


class CalendarEventRow(Base):
	__tablename__ = "calendar_events"
	id = Column(String(64), primary_key=True, default=_new_id)
	# Either owner column may be populated; reads match on both
	user_id = Column(String(64), nullable=True, index=True)
	student_id = Column(String(64), nullable=True, index=True)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)  # JSON string: subject, topic, pomodoro settings
	event_type = Column(String(32), default="study_session", nullable=False)
	# ISO-8601 strings in UTC, as the hosted backend returns them
	start_time = Column(String(40), nullable=False, index=True)
	end_time = Column(String(40), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PreferredStudySlotRow(Base):
	__tablename__ = "preferred_study_slots"
	id = Column(String(64), primary_key=True, default=_new_id)
	user_id = Column(String(64), nullable=False, index=True)
	# 0 = Sunday ... 6 = Saturday
	day_of_week = Column(Integer, nullable=False)
	slot_count = Column(Integer, nullable=False)
	slot_duration_minutes = Column(Integer, nullable=False)
	preferred_start_hour = Column(Integer, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class BlockedTimeRow(Base):
	__tablename__ = "blocked_times"
	id = Column(String(64), primary_key=True, default=_new_id)
	user_id = Column(String(64), nullable=False, index=True)
	title = Column(String(256), nullable=False)
	day_of_week = Column(Integer, nullable=False)
	start_time = Column(String(8), nullable=False)  # HH:MM:SS
	end_time = Column(String(8), nullable=False)
	reason = Column(Text, default="", nullable=False)
	priority = Column(String(16), default="medium", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


TABLES = {
	CalendarEventRow.__tablename__: CalendarEventRow,
	PreferredStudySlotRow.__tablename__: PreferredStudySlotRow,
	BlockedTimeRow.__tablename__: BlockedTimeRow,
}
