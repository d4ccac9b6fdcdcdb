"""DigestScheduler — recurring per-(chat, user) digests.

Unlike reminders there is no per-tick record: a failed tick is logged and
the next tick runs as usual.  Desired state lives in user preferences; an
hourly reconciliation job diffs it against the live jobs so that changes
made elsewhere take effect without a restart.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Literal
from zoneinfo import ZoneInfo

from loguru import logger

from chatminder.core.scheduling.types import DigestDelivery, DigestJob
from chatminder.utils.dates import day_window, utcnow
from chatminder.utils.ids import digest_key, to_int

if TYPE_CHECKING:
    from chatminder.core.channels.telegram import TelegramSender
    from chatminder.core.scheduling.timer import TimerEngine, TimerHandle
    from chatminder.memory.store import MemoryStore
    from chatminder.services.digest import DigestService

RECONCILE_JOB_ID = "digest:reconcile"


class DigestScheduler:
    """One live recurring timer per (chat, user) pair."""

    def __init__(
        self,
        db: MemoryStore,
        timer: TimerEngine,
        digests: DigestService,
        sender: TelegramSender | None = None,
        tz: ZoneInfo = ZoneInfo("UTC"),
        chat_title: str = "Chat",
        reconcile_cron: str = "0 * * * *",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.timer = timer
        self.digests = digests
        self.sender = sender
        self.tz = tz
        self.chat_title = chat_title
        self.reconcile_cron = reconcile_cron
        self._clock = clock
        self._jobs: dict[str, DigestJob] = {}
        self._reconcile_handle: TimerHandle | None = None

    @property
    def jobs(self) -> dict[str, DigestJob]:
        return dict(self._jobs)

    async def start(self) -> None:
        """Schedule digests from preferences and arm the reconciliation job."""
        await self.reconcile()
        self._reconcile_handle = self.timer.schedule_cron(
            RECONCILE_JOB_ID, self.reconcile_cron, self.reconcile
        )
        logger.info(f"DigestScheduler started with {len(self._jobs)} digests")

    def stop(self) -> None:
        if self._reconcile_handle is not None:
            self._reconcile_handle.cancel()
            self._reconcile_handle = None
        for job in self._jobs.values():
            job.handle.cancel()
        self._jobs.clear()

    def schedule_digest(
        self,
        chat_id: int | str,
        user_id: int | str,
        cron_expr: str,
        deliver: DigestDelivery | None = None,
        *,
        source: Literal["explicit", "preference"] = "explicit",
    ) -> DigestJob | None:
        """(Re)schedule the digest for a pair.

        Unusable ids are ignored (returns None).  A malformed cron
        expression raises ``ValueError`` and leaves any existing job alone.
        """
        key = digest_key(chat_id, user_id)
        if key is None:
            logger.warning(f"Digest not scheduled: bad ids chat={chat_id!r} user={user_id!r}")
            return None
        self.timer.cron_trigger(cron_expr)

        existing = self._jobs.pop(key, None)
        if existing is not None:
            existing.handle.cancel()

        chat, user = to_int(chat_id), to_int(user_id)
        handle = self.timer.schedule_cron(
            f"digest:{key}", cron_expr, self._tick, chat, user, deliver
        )
        job = DigestJob(chat_id=chat, user_id=user, cron_expr=cron_expr, handle=handle, source=source)
        self._jobs[key] = job
        logger.info(f"Digest scheduled: chat={chat} user={user} ({cron_expr})")
        return job

    def cancel_digest(self, chat_id: int | str, user_id: int | str) -> bool:
        """Cancel the pair's digest. Missing keys are a no-op."""
        key = digest_key(chat_id, user_id)
        if key is None:
            return False
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        job.handle.cancel()
        logger.info(f"Digest cancelled: chat={job.chat_id} user={job.user_id}")
        return True

    async def reconcile(self) -> int:
        """Diff preference-declared digests against live jobs.

        Jobs scheduled explicitly are left alone.  Never raises; returns the
        number of jobs (re)scheduled.
        """
        try:
            return self._reconcile()
        except Exception as e:
            logger.warning(f"Digest reconciliation failed, keeping current jobs: {e}")
            return 0

    def _reconcile(self) -> int:
        desired: dict[str, tuple[str, str, str]] = {}
        for pref in self.db.find_preferences_with_recurrence():
            key = digest_key(pref.selected_chat_id, pref.user_id)
            if key is None:
                logger.debug(f"User {pref.user_id} has a digest schedule but no chat selected")
                continue
            desired[key] = (pref.selected_chat_id, pref.user_id, pref.digest_schedule_cron)

        scheduled = 0
        for key, (chat_id, user_id, cron_expr) in desired.items():
            current = self._jobs.get(key)
            if current is not None and (current.source == "explicit" or current.cron_expr == cron_expr):
                continue
            try:
                self.schedule_digest(chat_id, user_id, cron_expr, source="preference")
                scheduled += 1
            except ValueError as e:
                logger.warning(f"Invalid digest cron for user {user_id} ({cron_expr!r}): {e}")

        for key, job in list(self._jobs.items()):
            if job.source == "preference" and key not in desired:
                self.cancel_digest(job.chat_id, job.user_id)

        logger.debug(f"Digest reconciliation: {len(desired)} desired, {scheduled} scheduled")
        return scheduled

    async def _tick(self, chat_id: int, user_id: int, deliver: DigestDelivery | None) -> None:
        """One recurrence: build today's digest and deliver it."""
        try:
            start, end = day_window(self.tz, self._clock())
            title = self.db.get_chat_title(str(chat_id)) or self.chat_title
            summary = self.digests.generate_digest(str(chat_id), title, (start, end))
            self.digests.save_digest(str(chat_id), (start, end), summary, created_by=str(user_id))
            text = f"📊 Daily digest for {start:%d.%m.%Y}:\n\n{summary}"
            outcome = await (deliver or self._send_to_user)(user_id, text)
            if outcome is False:
                logger.warning(f"Digest for chat={chat_id} user={user_id} not delivered")
            else:
                logger.info(f"Digest sent: chat={chat_id} → user={user_id}")
        except Exception as e:
            logger.error(f"Scheduled digest failed for chat={chat_id} user={user_id}: {e}")

    async def _send_to_user(self, user_id: int, text: str) -> bool:
        if self.sender is None:
            raise RuntimeError("no chat sender configured for digests")
        await self.sender.send_to_user(user_id, text)
        return True
