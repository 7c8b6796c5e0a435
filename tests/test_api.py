"""End-to-end tests for the HTTP surface, backed by the in-memory database store."""
import asyncio
from datetime import date, datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from athro_scheduler.errors import StoreError
from athro_scheduler.main import app
from athro_scheduler.routers import auth
from athro_scheduler.routers import calendar as calendar_routes
from athro_scheduler.settings import settings
from athro_scheduler.stores.base import CALENDAR_EVENTS
from athro_scheduler.stores.sql import SqlStore


class BrokenStore:
    async def select(self, table, *args, **kwargs):
        raise StoreError("GET calendar_events failed (503): unavailable", status_code=503)

    async def aclose(self):
        return None


class SlowCountingStore(SqlStore):
    def __init__(self, session_factory, selects):
        super().__init__(session_factory)
        self.selects = selects

    async def select(self, table, **kwargs):
        self.selects.append(table)
        await asyncio.sleep(0.05)
        return await super().select(table, **kwargs)


def _token(sub="user-1"):
    claims = {"sub": sub, "aud": settings.jwt_audience, "email": "pupil@example.com", "role": "authenticated"}
    return jwt.encode(claims, settings.supabase_jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def client(monkeypatch, session_factory):
    monkeypatch.setattr(auth, "open_store", lambda session: SqlStore(session_factory))
    c = TestClient(app)
    c.headers["Authorization"] = f"Bearer {_token()}"
    return c


def _create(client, **overrides):
    body = {"title": "Study Session", "subject": "Mathematics", "topic": "Algebra",
            "day": "2024-06-05", "start": "16:00", "duration_minutes": 30}
    body.update(overrides)
    return client.post("/calendar/events", json=body)


def test_health():
    r = TestClient(app).get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_calendar_requires_a_token():
    r = TestClient(app).get("/calendar/week")
    assert r.status_code == 401


def test_bad_token_is_rejected():
    c = TestClient(app)
    r = c.get("/calendar/week", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_me_reports_token_claims(client):
    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json()["user_id"] == "user-1"
    assert r.json()["email"] == "pupil@example.com"


def test_presets(client):
    data = client.get("/calendar/presets").json()
    assert [p["total_minutes"] for p in data["presets"]] == [120, 120, 120, 120]
    assert "Mathematics" in data["subjects"]


def test_empty_week_has_default_grid(client):
    r = client.get("/calendar/week", params={"start": "2024-06-05"})
    assert r.status_code == 200
    data = r.json()
    assert data["week_start"] == "2024-06-03"
    assert len(data["rows"]) == 22
    assert data["rows"][0]["time"] == "15:00"
    assert data["rows"][-1]["time"] == "22:00"
    assert all(len(row["cells"]) == 7 for row in data["rows"])
    assert data["error"] is None


def test_created_event_shows_in_its_cell(client):
    r = _create(client)
    assert r.status_code == 201
    created = r.json()
    assert created["duration_minutes"] == 30

    data = client.get("/calendar/week", params={"start": "2024-06-03"}).json()
    row = next(row for row in data["rows"] if row["time"] == "16:00")
    assert row["cells"][2]["events"] == [created["id"]]
    assert [e["subject"] for e in data["events"]] == ["Mathematics"]


def test_missing_fields_are_listed(client):
    r = _create(client, title="", subject="")
    assert r.status_code == 422
    assert r.json()["detail"]["missing"] == ["title", "subject"]


def test_unknown_subject_is_rejected(client):
    assert _create(client, subject="Astrology").status_code == 422


def test_update_event(client):
    created = _create(client).json()
    r = client.put(f"/calendar/events/{created['id']}", json={
        "title": "Past paper", "subject": "Science", "day": "2024-06-05", "start": "17:00", "duration_minutes": 45,
    })
    assert r.status_code == 200
    assert (r.json()["title"], r.json()["subject"], r.json()["duration_minutes"]) == ("Past paper", "Science", 45)


def test_move_keeps_duration(client):
    created = _create(client).json()
    r = client.post(f"/calendar/events/{created['id']}/move",
                    json={"week_start": "2024-06-03", "day_index": 3, "time": "17:00"})
    assert r.status_code == 200
    moved = r.json()
    assert moved["start_time"].startswith("2024-06-06T17:00")
    assert moved["duration_minutes"] == 30


def test_slot_sessions_cannot_be_moved(client):
    r = client.post("/calendar/events/slot-abc/move",
                    json={"week_start": "2024-06-03", "day_index": 3, "time": "17:00"})
    assert r.status_code == 409


def test_slots_expand_into_the_week(client):
    r = client.put("/calendar/slots", json={"slots": [
        {"day_of_week": 3, "slot_count": 2, "slot_duration_minutes": 30, "preferred_start_hour": 16},
    ]})
    assert r.status_code == 200
    assert r.json()["warnings"] == []
    (slot,) = r.json()["slots"]

    data = client.get("/calendar/week", params={"start": "2024-06-03"}).json()
    assert [e["id"] for e in data["events"]] == [f"slot-{slot['id']}", f"slot-{slot['id']}#2"]
    assert all(e["is_synthetic"] for e in data["events"])

    first_only = client.get("/calendar/week", params={"start": "2024-06-03", "first_only": True}).json()
    assert [e["id"] for e in first_only["events"]] == [f"slot-{slot['id']}"]


def test_heavy_slot_day_is_warned_about(client):
    r = client.put("/calendar/slots", json={"slots": [
        {"day_of_week": 6, "slot_count": 4, "slot_duration_minutes": 120, "preferred_start_hour": 9},
    ]})
    assert r.status_code == 200
    assert len(r.json()["warnings"]) == 1


def test_deleting_a_slot_session_removes_the_slot(client):
    (slot,) = client.put("/calendar/slots", json={"slots": [
        {"day_of_week": 1, "slot_count": 1, "slot_duration_minutes": 60, "preferred_start_hour": 15},
    ]}).json()["slots"]
    assert client.delete(f"/calendar/events/slot-{slot['id']}").status_code == 200
    assert client.get("/calendar/slots").json()["slots"] == []


def test_blocked_times(client):
    r = client.post("/calendar/blocked", json={
        "title": "Football", "day_of_week": 2, "start_time": "16:00", "end_time": "17:00",
    })
    assert r.status_code == 201
    block_id = r.json()["id"]

    data = client.get("/calendar/week", params={"start": "2024-06-03"}).json()
    row = next(row for row in data["rows"] if row["time"] == "16:20")
    assert row["cells"][1]["blocked"] == ["Football"]

    assert client.delete(f"/calendar/blocked/{block_id}").status_code == 200
    assert client.get("/calendar/blocked").json()["blocked"] == []


def test_blocked_time_must_end_after_start(client):
    r = client.post("/calendar/blocked", json={
        "day_of_week": 2, "start_time": "17:00", "end_time": "16:00",
    })
    assert r.status_code == 422


def test_delete_event(client):
    created = _create(client).json()
    assert client.delete(f"/calendar/events/{created['id']}").status_code == 200
    assert client.get("/calendar/week", params={"start": "2024-06-03"}).json()["events"] == []


def test_unreachable_store_gives_an_empty_week_with_a_notice(monkeypatch):
    monkeypatch.setattr(auth, "open_store", lambda session: BrokenStore())
    c = TestClient(app)
    r = c.get("/calendar/week", params={"start": "2024-06-03"},
              headers={"Authorization": f"Bearer {_token()}"})
    assert r.status_code == 200
    data = r.json()
    assert data["error"]
    assert data["events"] == []
    assert len(data["rows"]) == 22


def test_default_week_follows_the_calendar_timezone(client, monkeypatch):
    seen = []

    def fake_today(tz):
        seen.append(tz.key)
        return date(2024, 6, 5)

    monkeypatch.setattr(calendar_routes, "today_in", fake_today)
    data = client.get("/calendar/week").json()
    assert data["week_start"] == "2024-06-03"
    assert seen == [settings.timezone]


def test_week_with_a_row_missing_its_offset(client, session_factory):
    asyncio.run(SqlStore(session_factory).insert(CALENDAR_EVENTS, [{
        "user_id": "user-1",
        "title": "Study Session",
        "start_time": "2024-06-05T16:00:00",
        "end_time": "2024-06-05T16:30:00",
    }]))
    client.put("/calendar/slots", json={"slots": [
        {"day_of_week": 3, "slot_count": 1, "slot_duration_minutes": 30, "preferred_start_hour": 16},
    ]})
    r = client.get("/calendar/week", params={"start": "2024-06-03"})
    assert r.status_code == 200
    data = r.json()
    assert data["error"] is None
    assert len(data["events"]) == 2
    assert len(data["overlaps"]) == 1


@pytest.mark.asyncio
async def test_concurrent_week_requests_share_one_load(monkeypatch, session_factory):
    selects = []
    monkeypatch.setattr(auth, "open_store", lambda session: SlowCountingStore(session_factory, selects))
    headers = {"Authorization": f"Bearer {_token()}"}
    params = {"start": "2024-06-03"}
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        first, second = await asyncio.gather(
            c.get("/calendar/week", params=params, headers=headers),
            c.get("/calendar/week", params=params, headers=headers),
        )
    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert selects.count(CALENDAR_EVENTS) == 1


def test_plan_on_default_slots(client):
    r = client.post("/calendar/plan", json={"subjects": [
        {"subject": "Mathematics", "confidence": "Very Low"},
        {"subject": "Science", "confidence": "Very High"},
    ]})
    assert r.status_code == 201
    data = r.json()
    assert data["used_default_slots"] is True
    assert [(d["subject"], d["sessions_per_week"]) for d in data["distribution"]] == [("Mathematics", 5), ("Science", 1)]
    assert len(data["events"]) == 6
    assert all(e["id"] and not e["is_synthetic"] and e["is_pomodoro"] for e in data["events"])
    assert client.get("/calendar/slots").json()["slots"] == []


def test_plan_uses_saved_slots(client):
    client.put("/calendar/slots", json={"slots": [
        {"day_of_week": 3, "slot_count": 1, "slot_duration_minutes": 30, "preferred_start_hour": 17},
    ]})
    data = client.post("/calendar/plan", json={"subjects": [{"subject": "English", "confidence": "High"}]}).json()
    assert data["used_default_slots"] is False
    starts = [datetime.fromisoformat(e["start_time"]) for e in data["events"]]
    assert [(s.isoweekday(), s.hour) for s in starts] == [(3, 17), (3, 17)]
    assert (starts[1].date() - starts[0].date()).days == 7


@pytest.mark.parametrize("subjects", [[], [{"subject": "Astrology"}]])
def test_plan_needs_known_subjects(client, subjects):
    assert client.post("/calendar/plan", json={"subjects": subjects}).status_code == 422
