"""Tests for chatminder.cli."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from chatminder.cli.commands import app
from chatminder.core.config import Config
from chatminder.memory.store import MemoryStore

runner = CliRunner()

_PATCH_CONFIG = "chatminder.core.config.loader.load_config"


@pytest.fixture
def config(tmp_path):
    return Config(database={"path": str(tmp_path / "test.db")})


@pytest.fixture
def store(config):
    return MemoryStore(config.database.path)


def test_cli_help():
    """--help works and shows command names."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("run", "status", "reminders", "digest"):
        assert name in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "chatminder v" in result.output


def test_status_output(config, store):
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Europe/Moscow" in result.output
    assert "Pending Reminders" in result.output


def test_run_starts_uvicorn():
    with patch("uvicorn.run") as mock_run, patch("chatminder.cli.commands.logger"):
        result = runner.invoke(app, ["run", "--port", "9000", "--log-level", "debug"])
    assert result.exit_code == 0
    mock_run.assert_called_once_with(
        "chatminder.api.app:app", host="0.0.0.0", port=9000, reload=False, log_level="debug"
    )


def test_reminders_list_and_deliver(config, store):
    task = store.upsert_task(chat_id="-100", title="Report", source_message_id="-100:1")
    reminder = store.create_reminder(task.id, "42", datetime(2026, 5, 1, tzinfo=timezone.utc))

    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["reminders", "list"])
        assert result.exit_code == 0
        assert "Report" in result.output

        result = runner.invoke(app, ["reminders", "deliver", reminder.id])
        assert result.exit_code == 0
        assert "Marked delivered" in result.output

        result = runner.invoke(app, ["reminders", "deliver", reminder.id])
        assert "Already delivered" in result.output

        result = runner.invoke(app, ["reminders", "list"])
        assert "No pending reminders" in result.output

    assert store.is_reminder_delivered(reminder.id)


def test_reminders_deliver_unknown(config, store):
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["reminders", "deliver", "nope"])
    assert result.exit_code == 1


def test_digest_set_and_list(config, store):
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["digest", "set", "42", "0 9 * * *", "--chat=-100"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["digest", "list"])
        assert result.exit_code == 0
        assert "0 9 * * *" in result.output

    prefs = store.get_preferences("42")
    assert prefs.selected_chat_id == "-100"
    assert [c["chat_id"] for c in store.get_user_chats("42")] == ["-100"]


def test_digest_set_invalid_cron(config, store):
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["digest", "set", "42", "soon", "--chat=-100"])
    assert result.exit_code == 1
    assert store.get_preferences("42") is None


def test_digest_list_empty(config, store):
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["digest", "list"])
    assert "No digest schedules" in result.output


def test_run_configures_log_level():
    with patch("uvicorn.run"), patch("chatminder.cli.commands.logger") as mock_logger:
        runner.invoke(app, ["run", "-l", "warning"])
    mock_logger.remove.assert_called_once()
    assert mock_logger.add.call_args.kwargs["level"] == "WARNING"
