"""Tests for chatminder.api."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from chatminder.api.app import create_app
from chatminder.core.config import Config
from chatminder.core.scheduling import DigestScheduler, ReminderScheduler, TimerEngine
from chatminder.memory.store import MemoryStore
from chatminder.services.digest import DigestService
from chatminder.services.tasks import TaskService

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def handler():
    return AsyncMock(return_value=True)


@pytest.fixture
async def app(tmp_path, handler):
    """Create test app with tmp database and a mocked APScheduler."""
    config = Config(database={"path": str(tmp_path / "test.db")})
    application = create_app()
    # Override lifespan state manually
    db = MemoryStore(str(tmp_path / "test.db"))
    timer = TimerEngine(scheduler=MagicMock())
    reminders = ReminderScheduler(db, timer, clock=lambda: NOW)
    await reminders.init(handler)
    digests = DigestScheduler(db, timer, DigestService(db), clock=lambda: NOW)

    application.state.config = config
    application.state.db = db
    application.state.timer = timer
    application.state.reminders = reminders
    application.state.digests = digests
    application.state.tasks = TaskService(db, reminders)
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


@pytest.fixture(autouse=True)
def frozen_now():
    with patch("chatminder.services.tasks.utcnow", return_value=NOW):
        yield


def _save_body(due):
    return {
        "message": {
            "id": "-100:1",
            "chat_id": "-100",
            "sender_id": "7",
            "sender_name": "Carol",
            "text": "Bob, report by Friday",
            "timestamp": NOW.isoformat(),
        },
        "tasks": [{"title": "Report", "due_date": due.isoformat(), "assignee_id": "42"}],
    }


# --- Health ---

@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["reminder_timers"] == 0
    assert data["digest_jobs"] == 0


# --- Tasks ---

@pytest.mark.asyncio
async def test_save_and_list_tasks(client, app):
    resp = await client.post("/tasks", json=_save_body(NOW + timedelta(days=1)))
    assert resp.status_code == 200
    [task] = resp.json()
    assert task["title"] == "Report"
    assert task["assignee_id"] == "42"

    assert len(app.state.reminders.active_timers) == 1
    assert app.state.db.get_recent_messages("-100")[0]["text"] == "Bob, report by Friday"

    resp = await client.get("/tasks/-100")
    assert [t["title"] for t in resp.json()] == ["Report"]


@pytest.mark.asyncio
async def test_complete_task(client, app):
    [task] = (await client.post("/tasks", json=_save_body(NOW + timedelta(days=1)))).json()

    resp = await client.post(f"/tasks/{task['id']}/complete")
    assert resp.status_code == 200
    assert app.state.reminders.active_timers == {}

    resp = await client.post("/tasks/missing/complete")
    assert resp.status_code == 404


# --- Reminders ---

@pytest.mark.asyncio
async def test_create_reminder_and_deliver(client, app, handler):
    [task] = (await client.post("/tasks", json=_save_body(NOW + timedelta(days=1)))).json()

    resp = await client.post("/reminders", json={
        "task_id": task["id"],
        "remind_at": (NOW + timedelta(hours=1)).isoformat(),
        "user_id": "99",
    })
    assert resp.status_code == 200
    reminder = resp.json()
    assert reminder["user_id"] == "99"
    assert reminder["delivered"] is False

    resp = await client.post(f"/reminders/{reminder['id']}/delivered")
    assert resp.json()["changed"] is True
    resp = await client.post(f"/reminders/{reminder['id']}/delivered")
    assert resp.json()["changed"] is False
    assert app.state.db.is_reminder_delivered(reminder["id"])
    handler.assert_not_called()


@pytest.mark.asyncio
async def test_reminder_in_the_past_fires(client, app, handler):
    [task] = (await client.post("/tasks", json=_save_body(NOW + timedelta(days=1)))).json()
    resp = await client.post("/reminders", json={
        "task_id": task["id"], "remind_at": NOW.isoformat(),
    })
    assert resp.status_code == 200
    handler.assert_awaited_once()
    assert app.state.db.is_reminder_delivered(resp.json()["id"])


@pytest.mark.asyncio
async def test_reminder_unknown_task(client):
    resp = await client.post("/reminders", json={"task_id": "nope", "remind_at": NOW.isoformat()})
    assert resp.status_code == 404
    resp = await client.post("/reminders/nope/delivered")
    assert resp.status_code == 404


# --- Digests ---

@pytest.mark.asyncio
async def test_schedule_and_cancel_digest(client, app):
    resp = await client.put("/digests/-100/42", json={"cron_expr": "0 9 * * *"})
    assert resp.status_code == 200
    assert resp.json() == {"chat_id": -100, "user_id": 42, "cron_expr": "0 9 * * *"}

    prefs = app.state.db.get_preferences("42")
    assert prefs.digest_schedule_cron == "0 9 * * *"
    assert prefs.selected_chat_id == "-100"
    assert app.state.digests.jobs["-100:42"].source == "preference"

    resp = await client.delete("/digests/-100/42")
    assert resp.json() == {"cancelled": True}
    assert app.state.db.get_preferences("42").digest_schedule_cron is None
    assert app.state.digests.jobs == {}


@pytest.mark.asyncio
async def test_schedule_digest_invalid(client, app):
    resp = await client.put("/digests/-100/42", json={"cron_expr": "every day"})
    assert resp.status_code == 422
    resp = await client.put("/digests/chat/42", json={"cron_expr": "0 9 * * *"})
    assert resp.status_code == 400
    assert app.state.db.get_preferences("42") is None


# --- Preferences ---

@pytest.mark.asyncio
async def test_update_preferences(client):
    resp = await client.put("/preferences/42", json={"reminder_offset_minutes": 30})
    assert resp.status_code == 200
    assert resp.json()["reminder_offset_minutes"] == 30

    resp = await client.put("/preferences/42", json={"reminder_offset_minutes": -5})
    assert resp.status_code == 422


# --- Lifespan ---

@pytest.mark.asyncio
async def test_lifespan_wires_schedulers(tmp_path):
    config = Config(database={"path": str(tmp_path / "life.db")})
    db = MemoryStore(config.database.path)
    task = db.upsert_task(chat_id="-100", title="Report", source_message_id="-100:1")
    pending = db.create_reminder(task.id, "42", datetime.now(timezone.utc) + timedelta(hours=1))
    db.update_preferences("42", digest_schedule_cron="0 9 * * *", selected_chat_id="-100")

    application = create_app()
    with patch("chatminder.api.app.load_config", return_value=config):
        async with application.router.lifespan_context(application):
            state = application.state
            assert state.timer.running
            assert pending.id in state.reminders.active_timers
            assert set(state.digests.jobs) == {"-100:42"}
            assert state.timer.has_job("digest:reconcile")

    assert state.reminders.active_timers == {}
    assert state.digests.jobs == {}


# --- Task views ---

@pytest.mark.asyncio
async def test_upcoming_and_personal_tasks(client):
    body = _save_body(NOW + timedelta(hours=5))
    body["tasks"].append({"title": "Retro", "due_date": (NOW + timedelta(days=10)).isoformat()})
    await client.post("/tasks", json=body)
    until = (NOW + timedelta(days=1)).isoformat()

    resp = await client.get("/tasks/-100/upcoming", params={"until": until})
    assert [t["title"] for t in resp.json()] == ["Report"]

    resp = await client.get("/users/42/tasks", params={"until": until})
    assert [t["title"] for t in resp.json()] == ["Report"]

    resp = await client.get("/users/7/tasks", params={"until": (NOW + timedelta(days=30)).isoformat()})
    assert [t["title"] for t in resp.json()] == ["Report", "Retro"]


# --- Users & chats ---

@pytest.mark.asyncio
async def test_select_and_remove_chat(client, app):
    app.state.db.add_user_chat("42", "-100", "Team")

    resp = await client.put("/users/42/chat", json={"chat_id": "-999"})
    assert resp.status_code == 404

    resp = await client.put("/users/42/chat", json={"chat_id": "-100"})
    assert resp.status_code == 200
    resp = await client.get("/users/42/chats")
    assert resp.json() == {"chats": [{"chat_id": "-100", "chat_title": "Team"}], "selected": "-100"}

    resp = await client.delete("/users/42/chats/-100")
    assert resp.json() == {"removed": True}
    resp = await client.get("/users/42/chats")
    assert resp.json() == {"chats": [], "selected": None}

    resp = await client.delete("/users/42/chats/-100")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_chat_messages_and_digest_log(client, app):
    await client.post("/tasks", json=_save_body(NOW + timedelta(days=1)))
    await app.state.digests._tick(-100, 42, AsyncMock(return_value=True))

    resp = await client.get("/chats/-100/messages", params={"limit": 5})
    assert [m["text"] for m in resp.json()] == ["Bob, report by Friday"]

    resp = await client.get("/chats/-100/digests")
    [row] = resp.json()
    assert row["created_by"] == "42"
    assert "Bob, report by Friday" in row["summary"]
