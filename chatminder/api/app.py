"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from chatminder import __version__
from chatminder.api.routes import router as core_router
from chatminder.core.channels.telegram import TelegramSender
from chatminder.core.channels.telegram import router as telegram_router
from chatminder.core.config.loader import load_config
from chatminder.core.scheduling import DigestScheduler, ReminderScheduler, TimerEngine
from chatminder.memory.store import MemoryStore
from chatminder.services.digest import DigestService
from chatminder.services.notifier import ReminderNotifier
from chatminder.services.tasks import TaskService


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: Config → MemoryStore → TimerEngine → schedulers. Shutdown: cancel timers."""
    config = load_config()
    db = MemoryStore(str(config.db_path), default_timezone=config.assistant.timezone)

    timer = TimerEngine(timezone=config.tz)
    sender = TelegramSender.from_config(config.channels.telegram)

    reminders = ReminderScheduler(
        db, timer, grace_window=timedelta(seconds=config.reminders.grace_window_s)
    )
    digest_service = DigestService(
        db,
        tz=config.tz,
        max_messages=config.digest.max_messages,
        recent_messages=config.digest.recent_messages,
    )
    digests = DigestScheduler(
        db,
        timer,
        digest_service,
        sender=sender,
        tz=config.tz,
        chat_title=config.digest.chat_title,
        reconcile_cron=config.digest.reconcile_cron,
    )
    tasks = TaskService(db, reminders, default_offset_minutes=config.reminders.default_offset_minutes)

    # Timers must be able to run before pending reminders are restored
    timer.start()
    await reminders.init(ReminderNotifier(sender, tz=config.tz))
    if config.digest.enabled:
        await digests.start()

    app.state.config = config
    app.state.db = db
    app.state.timer = timer
    app.state.sender = sender
    app.state.reminders = reminders
    app.state.digests = digests
    app.state.tasks = tasks

    logger.info(f"chatminder API started — timezone: {config.assistant.timezone}")
    yield

    # Shutdown
    digests.stop()
    reminders.stop()
    timer.shutdown()
    logger.info("chatminder API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="chatminder API",
        description="Task reminders and chat digests for group chats",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(core_router)
    app.include_router(telegram_router)

    return app


app = create_app()
