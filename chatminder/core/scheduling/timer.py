"""TimerEngine — per-entity cancelable timers on top of APScheduler.

Every timer is an APScheduler job whose id is the entity key, so
registering a key twice replaces the previous job.  Callbacks are
coroutine functions: APScheduler's asyncio executor wraps each run in its
own task, so a slow callback never holds up the other timers.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, tzinfo
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from loguru import logger

TimerCallback = Callable[..., Awaitable[Any]]


class TimerHandle:
    """Cancel handle for one registered timer."""

    def __init__(self, engine: TimerEngine, job_id: str):
        self._engine = engine
        self.job_id = job_id
        self.cancelled = False

    def cancel(self) -> bool:
        """Remove the job. Returns False if it had already fired or been removed."""
        if self.cancelled:
            return False
        self.cancelled = True
        return self._engine.remove(self.job_id)

    def __repr__(self) -> str:
        return f"TimerHandle({self.job_id!r}, cancelled={self.cancelled})"


class TimerEngine:
    """Wraps an ``AsyncIOScheduler`` into one-shot and cron timers."""

    def __init__(
        self,
        scheduler: AsyncIOScheduler | None = None,
        timezone: tzinfo | None = None,
    ):
        self.timezone = timezone
        if scheduler is None:
            kwargs: dict[str, Any] = {
                # misfire_grace_time=None: a late timer still runs
                "job_defaults": {"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
            }
            if timezone is not None:
                kwargs["timezone"] = timezone
            scheduler = AsyncIOScheduler(**kwargs)
        self._scheduler = scheduler

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if not self.running:
            self._scheduler.start()
            logger.info("TimerEngine started")

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("TimerEngine stopped")

    def schedule_at(
        self, job_id: str, run_at: datetime, callback: TimerCallback, *args: Any
    ) -> TimerHandle:
        """One-shot timer firing ``callback(*args)`` at wall-clock ``run_at``."""
        self._scheduler.add_job(
            callback,
            trigger=DateTrigger(run_date=run_at),
            id=job_id,
            args=list(args),
            replace_existing=True,
        )
        logger.debug(f"Timer {job_id} set for {run_at.isoformat()}")
        return TimerHandle(self, job_id)

    def schedule_cron(
        self, job_id: str, cron_expr: str, callback: TimerCallback, *args: Any
    ) -> TimerHandle:
        """Recurring timer from a 5-field crontab expression."""
        trigger = self.cron_trigger(cron_expr)
        self._scheduler.add_job(
            callback,
            trigger=trigger,
            id=job_id,
            args=list(args),
            replace_existing=True,
        )
        logger.debug(f"Cron timer {job_id} set ({cron_expr})")
        return TimerHandle(self, job_id)

    def cron_trigger(self, cron_expr: str) -> CronTrigger:
        """Build a trigger, raising ``ValueError`` for malformed expressions."""
        return CronTrigger.from_crontab(cron_expr, timezone=self.timezone)

    def remove(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        return True

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None
