"""Shared fixtures: an in-memory database store, a signed-in user and a repository."""
from datetime import date
from zoneinfo import ZoneInfo

import pytest

from athro_scheduler.db import init_db, make_engine, make_session_factory
from athro_scheduler.repository import CalendarRepository, UserSession
from athro_scheduler.stores.sql import SqlStore

LONDON = ZoneInfo("Europe/London")
WEEK_OF_JUNE_3 = date(2024, 6, 3)


@pytest.fixture
def tz():
    return LONDON


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlStore(session_factory)


@pytest.fixture
def user():
    return UserSession(user_id="user-1", access_token="token")


@pytest.fixture
def repo(sql_store, user, tz):
    return CalendarRepository(sql_store, user, timeout=5, tz=tz)
