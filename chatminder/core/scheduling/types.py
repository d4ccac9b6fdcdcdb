"""Scheduling types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, Protocol

from chatminder.core.scheduling.timer import TimerHandle
from chatminder.memory.models import Reminder, Task


class ReminderHandler(Protocol):
    """Delivers one reminder.

    Returning ``False`` or raising counts as a failed delivery; any other
    return value is success.
    """

    async def __call__(self, task: Task, reminder: Reminder) -> bool | None: ...


# (user_id, text) -> success flag
DigestDelivery = Callable[[int, str], Awaitable[bool | None]]


@dataclass(slots=True)
class DigestJob:
    """Live recurring digest for one (chat, user) pair."""

    chat_id: int
    user_id: int
    cron_expr: str
    handle: TimerHandle
    source: Literal["explicit", "preference"] = "explicit"
