"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

from fastapi import Request

from chatminder.core.config.schema import Config
from chatminder.core.scheduling.digests import DigestScheduler
from chatminder.core.scheduling.reminders import ReminderScheduler
from chatminder.memory.store import MemoryStore
from chatminder.services.tasks import TaskService


def get_config(request: Request) -> Config:
    """Get Config singleton from app state."""
    return request.app.state.config


def get_db(request: Request) -> MemoryStore:
    """Get MemoryStore singleton from app state."""
    return request.app.state.db


def get_reminders(request: Request) -> ReminderScheduler:
    return request.app.state.reminders


def get_digests(request: Request) -> DigestScheduler:
    return request.app.state.digests


def get_tasks(request: Request) -> TaskService:
    return request.app.state.tasks
