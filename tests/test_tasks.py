"""Tests for TaskService — parsed tasks → stored tasks → reminders."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chatminder.core.scheduling.reminders import ReminderScheduler
from chatminder.core.scheduling.timer import TimerEngine
from chatminder.memory.models import ChatMessage, ParsedTask
from chatminder.memory.store import MemoryStore
from chatminder.services.tasks import TaskService, merge_tasks

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return MemoryStore(str(tmp_path / "test.db"))


@pytest.fixture
def handler():
    return AsyncMock(return_value=True)


@pytest.fixture
async def reminders(store, handler):
    scheduler = ReminderScheduler(store, TimerEngine(scheduler=MagicMock()), clock=lambda: NOW)
    await scheduler.init(handler)
    return scheduler


@pytest.fixture
def service(store, reminders):
    return TaskService(store, reminders)


@pytest.fixture
def message():
    return ChatMessage(
        id="-100:5", chat_id="-100", sender_id="7", sender_name="Carol",
        text="Bob, send the report by 18:00", timestamp=NOW,
    )


@pytest.fixture(autouse=True)
def frozen_now():
    with patch("chatminder.services.tasks.utcnow", return_value=NOW):
        yield


def test_merge_tasks():
    due = NOW + timedelta(days=1)
    merged = merge_tasks([
        ParsedTask(title="Report", due_date=due),
        ParsedTask(title=" report ", due_date=due),
        ParsedTask(title="Report", due_date=due + timedelta(days=1)),
        ParsedTask(title="   "),
    ])
    assert [(t.title, t.due_date) for t in merged] == [
        ("Report", due),
        ("Report", due + timedelta(days=1)),
    ]


@pytest.mark.asyncio
async def test_save_tasks_schedules_reminder(service, store, reminders, message):
    due = NOW + timedelta(hours=6)
    saved = await service.save_tasks(
        [ParsedTask(title="Send the report", due_date=due, assignee_id="42", assignee_name="Bob")],
        message,
    )

    assert len(saved) == 1
    task = saved[0]
    assert task.created_by_user_id == "7"
    assert task.source_message_id == "-100:5"

    [reminder] = store.get_task_reminders(task.id)
    assert reminder.remind_at == due - timedelta(minutes=120)
    assert reminder.user_id == "42"
    assert reminder.id in reminders.active_timers


@pytest.mark.asyncio
async def test_reminder_inside_offset_fires_immediately(service, store, handler, message):
    """Due in 30 minutes with a 120 minute offset: remind_at is already past."""
    due = NOW + timedelta(minutes=30)
    [task] = await service.save_tasks(
        [ParsedTask(title="Call the client", due_date=due, assignee_id="42")], message
    )

    handler.assert_awaited_once()
    fired_task, fired_reminder = handler.await_args.args
    assert fired_task.id == task.id
    assert fired_reminder.user_id == "42"
    assert fired_reminder.remind_at == due - timedelta(minutes=120)
    assert store.get_task_reminders(task.id)[0].delivered


@pytest.mark.asyncio
async def test_offset_from_preferences(service, store, message):
    store.update_preferences("42", reminder_offset_minutes=15)
    due = NOW + timedelta(hours=2)
    [task] = await service.save_tasks(
        [ParsedTask(title="Deploy", due_date=due, assignee_id="42")], message
    )
    assert store.get_task_reminders(task.id)[0].remind_at == due - timedelta(minutes=15)


@pytest.mark.asyncio
async def test_sender_is_fallback_recipient(service, store, message):
    [task] = await service.save_tasks(
        [ParsedTask(title="Book a room", due_date=NOW + timedelta(days=1))], message
    )
    assert store.get_task_reminders(task.id)[0].user_id == "7"


@pytest.mark.asyncio
async def test_no_reminder_without_future_due_date(service, store, handler, message):
    saved = await service.save_tasks(
        [
            ParsedTask(title="Someday"),
            ParsedTask(title="Overdue", due_date=NOW - timedelta(hours=1)),
        ],
        message,
    )
    assert len(saved) == 2
    for task in saved:
        assert store.get_task_reminders(task.id) == []
    handler.assert_not_called()


@pytest.mark.asyncio
async def test_resaving_same_message_updates_task(service, store, message):
    due = NOW + timedelta(days=1)
    [first] = await service.save_tasks([ParsedTask(title="Report", due_date=due)], message)
    [second] = await service.save_tasks(
        [ParsedTask(title="Report", due_date=due, description="PDF please")], message
    )
    assert first.id == second.id
    assert service.get_all_tasks("-100")[0].description == "PDF please"


@pytest.mark.asyncio
async def test_complete_task_acknowledges_reminders(service, store, reminders, message):
    [task] = await service.save_tasks(
        [ParsedTask(title="Report", due_date=NOW + timedelta(days=1))], message
    )
    [reminder] = store.get_task_reminders(task.id)

    assert await service.complete_task(task.id) is True
    assert store.get_task(task.id).status == "completed"
    assert store.is_reminder_delivered(reminder.id)
    assert reminder.id not in reminders.active_timers
    assert await service.complete_task("missing") is False


@pytest.mark.asyncio
async def test_task_queries(service, message):
    await service.save_tasks(
        [
            ParsedTask(title="Soon", due_date=NOW + timedelta(hours=3), assignee_id="42"),
            ParsedTask(title="Later", due_date=NOW + timedelta(days=10)),
        ],
        message,
    )
    assert [t.title for t in service.get_upcoming_tasks("-100", NOW + timedelta(days=1))] == ["Soon"]
    assert [t.title for t in service.get_personal_tasks("42", NOW + timedelta(days=30))] == ["Soon"]
