"""Core API routes — tasks, reminders, digests, preferences, health."""

from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from chatminder import __version__
from chatminder.api.deps import get_db, get_digests, get_reminders, get_tasks
from chatminder.core.scheduling.digests import DigestScheduler
from chatminder.core.scheduling.reminders import ReminderScheduler
from chatminder.memory.models import (
    DigestScheduleRequest,
    HealthResponse,
    PreferenceUpdate,
    Reminder,
    ReminderRequest,
    SaveTasksRequest,
    SelectChatRequest,
    Task,
    UserPreference,
)
from chatminder.memory.store import MemoryStore
from chatminder.services.tasks import TaskService
from chatminder.utils.dates import ensure_aware, utcnow
from chatminder.utils.ids import to_id_string

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Health check with live timer counts."""
    reminders = getattr(request.app.state, "reminders", None)
    digests = getattr(request.app.state, "digests", None)
    return HealthResponse(
        status="ok",
        version=__version__,
        reminder_timers=len(reminders.active_timers) if reminders else 0,
        digest_jobs=len(digests.jobs) if digests else 0,
    )


# ── Tasks ────────────────────────────────────────────────────


@router.post("/tasks", response_model=list[Task])
async def save_tasks(
    body: SaveTasksRequest,
    db: MemoryStore = Depends(get_db),
    tasks: TaskService = Depends(get_tasks),
):
    """Store a message and the tasks extracted from it."""
    db.add_message(body.message)
    return await tasks.save_tasks(body.tasks, body.message)


@router.get("/tasks/{chat_id}", response_model=list[Task])
async def list_tasks(
    chat_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    tasks: TaskService = Depends(get_tasks),
):
    return tasks.get_all_tasks(chat_id, limit)


def _horizon(until: datetime | None) -> datetime:
    return ensure_aware(until) if until else utcnow() + timedelta(days=7)


@router.get("/tasks/{chat_id}/upcoming", response_model=list[Task])
async def upcoming_tasks(
    chat_id: str,
    until: datetime | None = Query(default=None, description="Defaults to one week ahead"),
    tasks: TaskService = Depends(get_tasks),
):
    """Dated tasks of a chat due up to ``until`` (overdue ones included)."""
    return tasks.get_upcoming_tasks(chat_id, _horizon(until))


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, tasks: TaskService = Depends(get_tasks)):
    if not await tasks.complete_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"completed": True}


# ── Reminders ────────────────────────────────────────────────


@router.post("/reminders", response_model=Reminder)
async def create_reminder(
    body: ReminderRequest,
    db: MemoryStore = Depends(get_db),
    reminders: ReminderScheduler = Depends(get_reminders),
):
    task = db.get_task(body.task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return await reminders.schedule_reminder(task, body.remind_at, body.user_id)


@router.post("/reminders/{reminder_id}/delivered")
async def mark_reminder_delivered(
    reminder_id: str,
    db: MemoryStore = Depends(get_db),
    reminders: ReminderScheduler = Depends(get_reminders),
):
    """Manual acknowledgement; repeated calls are a no-op."""
    if db.get_reminder(reminder_id) is None:
        raise HTTPException(status_code=404, detail="Reminder not found")
    changed = await reminders.mark_delivered(reminder_id)
    return {"reminder_id": reminder_id, "changed": changed, "delivered": True}


# ── Digests ──────────────────────────────────────────────────


@router.put("/digests/{chat_id}/{user_id}")
async def schedule_digest(
    chat_id: str,
    user_id: str,
    body: DigestScheduleRequest,
    db: MemoryStore = Depends(get_db),
    digests: DigestScheduler = Depends(get_digests),
):
    """Schedule a recurring digest and remember it in the user's preferences."""
    try:
        job = digests.schedule_digest(chat_id, user_id, body.cron_expr, source="preference")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid cron expression: {e}")
    if job is None:
        raise HTTPException(status_code=400, detail="Invalid chat or user id")

    uid = to_id_string(user_id)
    db.add_user_chat(uid, to_id_string(chat_id))
    db.update_preferences(uid, digest_schedule_cron=body.cron_expr, selected_chat_id=to_id_string(chat_id))
    logger.info(f"Digest preference saved for user {uid}")
    return {"chat_id": job.chat_id, "user_id": job.user_id, "cron_expr": job.cron_expr}


@router.delete("/digests/{chat_id}/{user_id}")
async def cancel_digest(
    chat_id: str,
    user_id: str,
    db: MemoryStore = Depends(get_db),
    digests: DigestScheduler = Depends(get_digests),
):
    cancelled = digests.cancel_digest(chat_id, user_id)
    uid = to_id_string(user_id)
    if uid and db.get_selected_chat(uid) == to_id_string(chat_id):
        db.clear_digest_schedule(uid)
    return {"cancelled": cancelled}


# ── Users & chats ────────────────────────────────────────────


@router.get("/users/{user_id}/tasks", response_model=list[Task])
async def personal_tasks(
    user_id: str,
    until: datetime | None = Query(default=None, description="Defaults to one week ahead"),
    tasks: TaskService = Depends(get_tasks),
):
    """Tasks assigned to or created by the user."""
    return tasks.get_personal_tasks(user_id, _horizon(until))


@router.get("/users/{user_id}/chats")
async def user_chats(user_id: str, db: MemoryStore = Depends(get_db)):
    return {"chats": db.get_user_chats(user_id), "selected": db.get_selected_chat(user_id)}


@router.put("/users/{user_id}/chat")
async def select_chat(
    user_id: str,
    body: SelectChatRequest,
    db: MemoryStore = Depends(get_db),
):
    """Pick the chat the user's digests summarize; it must be one they follow."""
    if not db.select_chat(user_id, body.chat_id):
        raise HTTPException(status_code=404, detail="Chat not followed by user")
    return {"user_id": user_id, "selected": body.chat_id}


@router.delete("/users/{user_id}/chats/{chat_id}")
async def remove_chat(user_id: str, chat_id: str, db: MemoryStore = Depends(get_db)):
    """Unfollow a chat; a selected chat is deselected too."""
    if not db.remove_user_chat(user_id, chat_id):
        raise HTTPException(status_code=404, detail="Chat not followed by user")
    return {"removed": True}


@router.get("/chats/{chat_id}/messages")
async def recent_messages(
    chat_id: str,
    limit: int = Query(default=10, ge=1, le=200),
    db: MemoryStore = Depends(get_db),
):
    return db.get_recent_messages(chat_id, limit)


@router.get("/chats/{chat_id}/digests")
async def digest_log(
    chat_id: str,
    limit: int = Query(default=5, ge=1, le=50),
    digests: DigestScheduler = Depends(get_digests),
):
    """Most recent generated digests, newest first."""
    return digests.digests.get_last_digests(chat_id, limit)


# ── Preferences ──────────────────────────────────────────────


@router.put("/preferences/{user_id}", response_model=UserPreference)
async def update_preferences(
    user_id: str,
    body: PreferenceUpdate,
    db: MemoryStore = Depends(get_db),
):
    """Update preferences; digest changes are picked up by reconciliation."""
    return db.update_preferences(user_id, **body.model_dump(exclude_none=True))
