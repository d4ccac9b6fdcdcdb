"""ReminderNotifier — the production reminder delivery handler."""

from __future__ import annotations

from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from loguru import logger

from chatminder.memory.models import Reminder, Task
from chatminder.utils.dates import format_date
from chatminder.utils.ids import to_int

if TYPE_CHECKING:
    from chatminder.core.channels.telegram import TelegramSender


class DeliveryError(Exception):
    """A reminder could not be addressed or sent."""


def format_reminder(task: Task, tz: ZoneInfo) -> str:
    lines = [
        "⏰ Task reminder:",
        f"**{task.title}**",
        f"Deadline: {format_date(task.due_date, tz)}" if task.due_date else "No deadline set.",
    ]
    if task.description:
        lines.append(f"Description: {task.description}")
    return "\n".join(lines)


class ReminderNotifier:
    """Sends a reminder to its recipient, or to the task's chat if nobody is named.

    Raises ``DeliveryError`` (or the sender's error) on failure so the
    scheduler leaves the reminder undelivered.
    """

    def __init__(self, sender: TelegramSender, tz: ZoneInfo = ZoneInfo("UTC")):
        self.sender = sender
        self.tz = tz

    async def __call__(self, task: Task, reminder: Reminder) -> bool:
        text = format_reminder(task, self.tz)
        recipient = reminder.user_id or task.assignee_id or task.created_by_user_id

        if recipient:
            user_id = to_int(recipient)
            if user_id is None:
                raise DeliveryError(f"recipient {recipient!r} is not a numeric user id")
            await self.sender.send_to_user(user_id, text)
            logger.info(f"Reminder {reminder.id} sent to user {user_id}")
            return True

        chat_id = to_int(task.chat_id)
        if chat_id is None:
            raise DeliveryError(f"chat id {task.chat_id!r} is not numeric")
        await self.sender.send_to_chat(chat_id, text)
        logger.info(f"Reminder {reminder.id} sent to chat {chat_id}")
        return True
