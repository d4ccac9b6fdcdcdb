"""Pydantic data models — tasks, reminders, preferences, chat messages."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

TaskStatus = Literal["open", "completed", "cancelled"]
TaskPriority = Literal["low", "medium", "high"]


# ════════════════════════════════════════════════════════════
# DOMAIN MODELS (mirror SQLite tables)
# ════════════════════════════════════════════════════════════


class ChatMessage(BaseModel):
    """A message ingested from the chat platform."""

    id: str
    chat_id: str
    chat_type: str = "group"
    sender_id: str | None = None
    sender_name: str | None = None
    sender_username: str | None = None
    text: str | None = None
    timestamp: datetime


class Task(BaseModel):
    """Unit of work extracted from a conversation.

    Unique on (source_message_id, title).
    """

    id: str
    chat_id: str
    title: str
    description: str | None = None
    due_date: datetime | None = None
    assignee_id: str | None = None
    assignee_name: str | None = None
    source_message_id: str
    created_by_user_id: str | None = None
    created_by_name: str | None = None
    status: TaskStatus = "open"
    priority: TaskPriority = "medium"


class Reminder(BaseModel):
    """One-shot notification for a task. ``delivered`` only goes False → True."""

    id: str
    task_id: str
    remind_at: datetime
    user_id: str | None = None
    delivered: bool = False


class UserPreference(BaseModel):
    user_id: str
    timezone: str = "Europe/Moscow"
    reminder_offset_minutes: int = 120
    digest_schedule_cron: str | None = None
    selected_chat_id: str | None = None


class ParsedTask(BaseModel):
    """Task as produced by the (external) extraction pipeline."""

    title: str
    description: str | None = None
    due_date: datetime | None = None
    assignee_id: str | None = None
    assignee_name: str | None = None
    priority: TaskPriority = "medium"


# ════════════════════════════════════════════════════════════
# API REQUEST / RESPONSE
# ════════════════════════════════════════════════════════════


class SaveTasksRequest(BaseModel):
    message: ChatMessage
    tasks: list[ParsedTask] = Field(default_factory=list)


class ReminderRequest(BaseModel):
    task_id: str
    remind_at: datetime
    user_id: str | None = None


class SelectChatRequest(BaseModel):
    chat_id: str


class DigestScheduleRequest(BaseModel):
    cron_expr: str


class PreferenceUpdate(BaseModel):
    timezone: str | None = None
    reminder_offset_minutes: int | None = Field(default=None, ge=0)
    digest_schedule_cron: str | None = None
    selected_chat_id: str | None = None


class HealthResponse(BaseModel):
    status: str
    version: str
    reminder_timers: int = 0
    digest_jobs: int = 0
