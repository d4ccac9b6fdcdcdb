"""ReminderScheduler — durable one-shot reminders for tasks.

The reminders table is the source of truth; timers only live in memory.
``init()`` rebuilds the timer set from undelivered rows, so a restart picks
up every reminder that is due within the grace window or later.  Delivery
is acknowledged by flipping ``delivered`` in the store, which is the only
way a reminder becomes terminal.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from loguru import logger

from chatminder.memory.models import Reminder, Task
from chatminder.utils.dates import ensure_aware, utcnow
from chatminder.utils.ids import to_id_string

if TYPE_CHECKING:
    from chatminder.core.scheduling.timer import TimerEngine, TimerHandle
    from chatminder.core.scheduling.types import ReminderHandler
    from chatminder.memory.store import MemoryStore

DEFAULT_GRACE_WINDOW = timedelta(seconds=5)


class ReminderScheduler:
    """Schedules, fires and acknowledges task reminders.

    One instance per process; the timer map is only touched from the
    event loop thread.
    """

    def __init__(
        self,
        db: MemoryStore,
        timer: TimerEngine,
        grace_window: timedelta = DEFAULT_GRACE_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.timer = timer
        self.grace_window = grace_window
        self._clock = clock
        self._handler: ReminderHandler | None = None
        self._timers: dict[str, TimerHandle] = {}
        self._in_flight: set[str] = set()

    @property
    def active_timers(self) -> dict[str, TimerHandle]:
        """Timers still waiting to fire."""
        return {rid: h for rid, h in self._timers.items() if self.timer.has_job(h.job_id)}

    async def init(self, handler: ReminderHandler) -> int:
        """Register the delivery handler and restore pending reminders.

        Returns the number of reminders restored.
        """
        self._handler = handler
        return await self._restore_pending()

    async def schedule_reminder(
        self, task: Task, remind_at: datetime, recipient: Any = None
    ) -> Reminder:
        """Persist a reminder for ``task`` and arm it.

        The recipient falls back to the task assignee, then its creator.
        Store errors propagate to the caller.
        """
        user_id = to_id_string(recipient) or task.assignee_id or task.created_by_user_id
        reminder = self.db.create_reminder(task.id, user_id, ensure_aware(remind_at))
        logger.info(
            f"Reminder {reminder.id} created for task {task.id} "
            f"at {reminder.remind_at.isoformat()} → user={user_id}"
        )
        await self._schedule_job(reminder, task)
        return reminder

    async def mark_delivered(self, reminder_id: str) -> bool:
        """Mark a reminder delivered and drop its timer. Idempotent.

        Returns True if this call flipped the flag.
        """
        changed = self.db.mark_reminder_delivered(reminder_id)
        handle = self._timers.pop(reminder_id, None)
        if handle is not None:
            handle.cancel()
        if changed:
            logger.info(f"Reminder {reminder_id} marked delivered")
        else:
            logger.debug(f"Reminder {reminder_id} already delivered or unknown")
        return changed

    def stop(self) -> None:
        """Cancel every live timer (rows stay pending for the next start)."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # ── Internals ───────────────────────────────────────────

    async def _restore_pending(self) -> int:
        since = self._clock() - self.grace_window
        pending = self.db.find_due_undelivered_reminders(since)
        restored = 0
        for reminder, task in pending:
            try:
                await self._schedule_job(reminder, task)
                restored += 1
            except Exception as e:
                logger.error(f"Failed to restore reminder {reminder.id} (task {task.id}): {e}")
        logger.info(f"Restored {restored}/{len(pending)} pending reminders")
        return restored

    async def _schedule_job(self, reminder: Reminder, task: Task) -> None:
        existing = self._timers.pop(reminder.id, None)
        if existing is not None:
            existing.cancel()

        delay = reminder.remind_at - self._clock()
        if delay <= self.grace_window:
            await self._trigger_reminder(reminder, task)
            return

        self._timers[reminder.id] = self.timer.schedule_at(
            f"reminder:{reminder.id}",
            reminder.remind_at,
            self._trigger_reminder,
            reminder,
            task,
        )

    async def _trigger_reminder(self, reminder: Reminder, task: Task) -> bool:
        """Fire protocol. Returns True when the reminder ended up delivered."""
        if self._handler is None:
            logger.error(f"Reminder handler is not configured; reminder {reminder.id} left pending")
            return False
        if reminder.id in self._in_flight:
            logger.debug(f"Reminder {reminder.id} already firing, skipped")
            return False

        self._in_flight.add(reminder.id)
        try:
            if self.db.is_reminder_delivered(reminder.id):
                logger.debug(f"Reminder {reminder.id} already delivered, not firing")
                self._timers.pop(reminder.id, None)
                return False

            logger.info(f"Reminder trigger: {reminder.id} (task {task.id}) → user={reminder.user_id}")
            try:
                outcome = await self._handler(task, reminder)
            except Exception as e:
                logger.error(f"Reminder {reminder.id} (task {task.id}) delivery failed: {e}")
                return False
            if outcome is False:
                logger.error(f"Reminder {reminder.id} (task {task.id}) delivery reported failure")
                return False

            try:
                await self.mark_delivered(reminder.id)
            except Exception as e:
                logger.error(
                    f"Reminder {reminder.id} (task {task.id}) sent but not acknowledged: {e}"
                )
                return False
            return True
        finally:
            self._in_flight.discard(reminder.id)
            self._drop_fired_timer(reminder.id)

    def _drop_fired_timer(self, reminder_id: str) -> None:
        # A one-shot job is gone once it has fired; a failed reminder waits for the next start
        handle = self._timers.get(reminder_id)
        if handle is not None and not self.timer.has_job(handle.job_id):
            del self._timers[reminder_id]
