"""Timezone-aware time helpers.

All timestamps stored or compared by the schedulers are aware datetimes in
UTC; local timezones only matter for day windows and display.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    return ensure_aware(datetime.fromisoformat(value))


def to_db(value: datetime | None) -> str | None:
    """Serialize for SQLite: UTC ISO-8601 so string order equals time order."""
    if value is None:
        return None
    return ensure_aware(value).astimezone(timezone.utc).isoformat(timespec="microseconds")


def start_of_day(tz: ZoneInfo, when: datetime | None = None) -> datetime:
    local = (when or utcnow()).astimezone(tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz)


def end_of_day(tz: ZoneInfo, when: datetime | None = None) -> datetime:
    return start_of_day(tz, when) + timedelta(days=1) - timedelta(microseconds=1)


def day_window(tz: ZoneInfo, when: datetime | None = None) -> tuple[datetime, datetime]:
    return start_of_day(tz, when), end_of_day(tz, when)


def format_date(value: datetime, tz: ZoneInfo) -> str:
    return ensure_aware(value).astimezone(tz).strftime("%d.%m.%Y %H:%M")


def format_range(start: datetime, end: datetime, tz: ZoneInfo) -> str:
    a = ensure_aware(start).astimezone(tz)
    b = ensure_aware(end).astimezone(tz)
    if a.date() == b.date():
        return f"{a:%d.%m.%Y} {a:%H:%M}-{b:%H:%M}"
    return f"{a:%d.%m.%Y %H:%M} - {b:%d.%m.%Y %H:%M}"
