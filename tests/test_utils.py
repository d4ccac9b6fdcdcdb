"""Tests for chatminder.utils (ids + dates)."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from chatminder.utils.dates import day_window, ensure_aware, format_range, parse_timestamp, to_db
from chatminder.utils.ids import digest_key, to_id_string, to_int


def test_to_int():
    assert to_int(42) == 42
    assert to_int("-1001234567890") == -1001234567890
    assert to_int(" 7 ") == 7
    assert to_int(3.0) == 3
    assert to_int(float("nan")) is None
    assert to_int("abc") is None
    assert to_int(True) is None
    assert to_int(None) is None


def test_id_strings():
    assert to_id_string(42) == "42"
    assert to_id_string("  ") is None
    assert to_id_string(None) is None


def test_digest_key():
    assert digest_key("-100", 42) == "-100:42"
    assert digest_key(0, 42) is None
    assert digest_key("chat", 42) is None
    assert digest_key(-100, None) is None


def test_to_db_is_utc_and_sortable():
    msk = ZoneInfo("Europe/Moscow")
    local = datetime(2026, 3, 1, 12, 0, tzinfo=msk)
    assert to_db(local) == "2026-03-01T09:00:00.000000+00:00"
    assert to_db(datetime(2026, 3, 1, 9, 0)) == to_db(local)
    assert to_db(None) is None


def test_parse_timestamp():
    assert parse_timestamp(None) is None
    parsed = parse_timestamp("2026-03-01T09:00:00")
    assert parsed.tzinfo is timezone.utc
    assert ensure_aware(parsed) is parsed


def test_day_window_uses_local_day():
    msk = ZoneInfo("Europe/Moscow")
    # 22:30 UTC is already the next day in Moscow
    start, end = day_window(msk, datetime(2026, 3, 1, 22, 30, tzinfo=timezone.utc))
    assert start == datetime(2026, 3, 2, 0, 0, tzinfo=msk)
    assert end.date() == start.date()
    assert (end - start).total_seconds() < 86400


def test_format_range_same_day():
    utc = ZoneInfo("UTC")
    text = format_range(
        datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc),
        utc,
    )
    assert text == "01.03.2026 00:00-23:59"
