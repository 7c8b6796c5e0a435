from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./athro.db"

Base = declarative_base()


def make_engine(url: str) -> Engine:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	# In-memory SQLite must share one connection or every session sees an empty database
	if url in ("sqlite://", "sqlite:///:memory:"):
		return create_engine(url, connect_args=connect_args, poolclass=StaticPool, future=True)
	return create_engine(url, connect_args=connect_args, future=True)


def make_session_factory(bind: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=bind, future=True, expire_on_commit=False)


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
	# Import models so their tables are registered on Base.metadata
	from . import models  # noqa: F401

	target = bind or engine
	Base.metadata.create_all(bind=target)
	ensure_schema(target)


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind: Engine | None = None) -> None:
	target = bind or engine
	inspector = inspect(target)
	tables = set(inspector.get_table_names())
	if "calendar_events" in tables:
		cols = {c["name"] for c in inspector.get_columns("calendar_events")}
		with target.begin() as conn:
			# Early rows only carried user_id; the loader matches on either column
			if "student_id" not in cols:
				conn.exec_driver_sql("ALTER TABLE calendar_events ADD COLUMN student_id VARCHAR(64)")
			if "description" not in cols:
				conn.exec_driver_sql("ALTER TABLE calendar_events ADD COLUMN description TEXT")
