"""TaskService — persists parsed tasks and arms their reminders."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from chatminder.memory.models import ChatMessage, ParsedTask, Task
from chatminder.utils.dates import ensure_aware, utcnow
from chatminder.utils.ids import to_id_string

if TYPE_CHECKING:
    from chatminder.core.scheduling.reminders import ReminderScheduler
    from chatminder.memory.store import MemoryStore

DEFAULT_REMINDER_OFFSET_MINUTES = 120


def merge_tasks(tasks: list[ParsedTask]) -> list[ParsedTask]:
    """Drop untitled tasks and duplicates by (lower title, due date), keeping the first."""
    seen: dict[tuple[str, str], ParsedTask] = {}
    for task in tasks:
        if not task.title or not task.title.strip():
            continue
        due = ensure_aware(task.due_date).isoformat() if task.due_date else ""
        seen.setdefault((task.title.strip().lower(), due), task)
    return list(seen.values())


class TaskService:
    def __init__(
        self,
        db: MemoryStore,
        reminders: ReminderScheduler,
        default_offset_minutes: int = DEFAULT_REMINDER_OFFSET_MINUTES,
    ):
        self.db = db
        self.reminders = reminders
        self.default_offset_minutes = default_offset_minutes

    async def save_tasks(self, parsed: list[ParsedTask], message: ChatMessage) -> list[Task]:
        """Upsert tasks extracted from ``message`` and schedule their reminders."""
        saved = []
        for item in merge_tasks(parsed):
            task = self.db.upsert_task(
                chat_id=message.chat_id,
                title=item.title.strip(),
                source_message_id=message.id,
                description=item.description,
                due_date=ensure_aware(item.due_date) if item.due_date else None,
                assignee_id=to_id_string(item.assignee_id),
                assignee_name=item.assignee_name,
                created_by_user_id=to_id_string(message.sender_id),
                created_by_name=message.sender_name,
                priority=item.priority,
            )
            logger.info(f"Task saved: {task.id} '{task.title}' (chat {task.chat_id})")
            await self.schedule_task_reminder(task)
            saved.append(task)
        return saved

    async def schedule_task_reminder(self, task: Task, recipient: str | None = None):
        """Arm a reminder ``offset`` minutes before the due date.

        The offset comes from the recipient's preferences.  Tasks without a
        due date, or already overdue, get no reminder.  A reminder time that
        has already passed fires immediately.
        """
        if task.due_date is None or task.due_date <= utcnow():
            return None
        user_id = recipient or task.assignee_id or task.created_by_user_id
        offset = self.default_offset_minutes
        if user_id:
            offset = self.db.get_or_create_preferences(user_id).reminder_offset_minutes
        remind_at = task.due_date - timedelta(minutes=offset)
        return await self.reminders.schedule_reminder(task, remind_at, user_id)

    def get_upcoming_tasks(self, chat_id: str, until: datetime) -> list[Task]:
        return self.db.get_upcoming_tasks(chat_id, until)

    def get_personal_tasks(self, user_id: str, until: datetime) -> list[Task]:
        return self.db.get_personal_tasks(user_id, until)

    def get_all_tasks(self, chat_id: str, limit: int = 50) -> list[Task]:
        return self.db.get_chat_tasks(chat_id, limit)

    async def complete_task(self, task_id: str) -> bool:
        """Close a task and acknowledge its pending reminders."""
        if not self.db.update_task_status(task_id, "completed"):
            return False
        for reminder in self.db.get_task_reminders(task_id):
            if not reminder.delivered:
                await self.reminders.mark_delivered(reminder.id)
        return True
