"""Scheduling core — timer engine, reminder and digest schedulers."""

from chatminder.core.scheduling.digests import DigestScheduler
from chatminder.core.scheduling.reminders import ReminderScheduler
from chatminder.core.scheduling.timer import TimerEngine, TimerHandle
from chatminder.core.scheduling.types import DigestJob, ReminderHandler

__all__ = [
    "DigestJob",
    "DigestScheduler",
    "ReminderHandler",
    "ReminderScheduler",
    "TimerEngine",
    "TimerHandle",
]
