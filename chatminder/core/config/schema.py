"""chatminder configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class AssistantConfig(BaseModel):
    """Bot identity and locale (assistant.*)."""

    name: str = "chatminder"
    timezone: str = "Europe/Moscow"

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"unknown timezone {v!r}") from e
        return v


# Channels
class TelegramChannelConfig(BaseModel):
    enabled: bool = False
    token: str = ""
    api_base: str = "https://api.telegram.org"
    allow_from: list[str] = Field(default_factory=list)


class ChannelsConfig(BaseModel):
    telegram: TelegramChannelConfig = Field(default_factory=TelegramChannelConfig)


# Scheduling
class RemindersConfig(BaseModel):
    """One-shot reminder scheduling."""

    grace_window_s: float = 5.0
    default_offset_minutes: int = 120


class DigestConfig(BaseModel):
    """Recurring per-user digests."""

    enabled: bool = True
    reconcile_cron: str = "0 * * * *"
    max_messages: int = 200
    recent_messages: int = 10
    chat_title: str = "Chat"


# Database
class DatabaseConfig(BaseModel):
    path: str = "data/chatminder.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        CHATMINDER_ASSISTANT__TIMEZONE=Europe/Berlin
        CHATMINDER_DATABASE__PATH=data/prod.db
        CHATMINDER_CHANNELS__TELEGRAM__TOKEN=123:abc
    """

    model_config = SettingsConfigDict(
        env_prefix="CHATMINDER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    reminders: RemindersConfig = Field(default_factory=RemindersConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # ── Computed properties ─────────────────────────────────

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.assistant.timezone)

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)
