"""chatminder CLI — Typer-based command-line interface."""

from __future__ import annotations

import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from chatminder import __version__

app = typer.Typer(
    name="chatminder",
    help="chatminder - task reminders and chat digests",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"chatminder v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """chatminder - task reminders and chat digests."""


def _open_store():
    from chatminder.core.config.loader import load_config
    from chatminder.memory.store import MemoryStore

    config = load_config()
    return config, MemoryStore(config.database.path, default_timezone=config.assistant.timezone)


# ════════════════════════════════════════════════════════════
# run — start API server
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level"),
) -> None:
    """Start the API server (uvicorn) with reminder and digest schedulers."""
    import uvicorn

    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())

    console.print(f"[green]Starting chatminder API on {host}:{port}[/green]")
    uvicorn.run(
        "chatminder.api.app:app", host=host, port=port, reload=reload, log_level=log_level.lower()
    )


# ════════════════════════════════════════════════════════════
# status — config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration and database status."""
    config, db = _open_store()
    counts = db.count_rows()

    table = Table(title="chatminder status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Timezone", config.assistant.timezone)
    table.add_row("DB Path", config.database.path)
    table.add_row("Telegram", "enabled" if config.channels.telegram.enabled else "disabled")
    table.add_row("Messages", str(counts["chat_messages"]))
    table.add_row("Tasks", str(counts["tasks"]))
    table.add_row("Pending Reminders", str(counts["pending_reminders"]))
    table.add_row("Users", str(counts["user_preferences"]))

    console.print(table)


# ════════════════════════════════════════════════════════════
# reminders — pending reminder management (sub-command group)
# ════════════════════════════════════════════════════════════

reminders_app = typer.Typer(help="Manage task reminders")
app.add_typer(reminders_app, name="reminders")


@reminders_app.command("list")
def reminders_list() -> None:
    """List undelivered reminders."""
    _, db = _open_store()
    pending = db.get_pending_reminders()

    if not pending:
        console.print("[dim]No pending reminders.[/dim]")
        return

    table = Table(title="Pending Reminders")
    table.add_column("ID", style="cyan")
    table.add_column("Task", style="white")
    table.add_column("Chat", style="blue")
    table.add_column("User", style="blue")
    table.add_column("Remind At", style="yellow")

    for r in pending:
        table.add_row(r["id"], r["title"], r["chat_id"], r["user_id"] or "-", r["remind_at"])

    console.print(table)


@reminders_app.command("deliver")
def reminders_deliver(
    reminder_id: str = typer.Argument(help="Reminder ID to acknowledge"),
) -> None:
    """Mark a reminder delivered without sending it."""
    _, db = _open_store()

    if db.get_reminder(reminder_id) is None:
        console.print(f"[red]Reminder not found:[/red] {reminder_id}")
        raise typer.Exit(code=1)

    if db.mark_reminder_delivered(reminder_id):
        console.print(f"[green]Marked delivered:[/green] {reminder_id}")
    else:
        console.print(f"[yellow]Already delivered:[/yellow] {reminder_id}")


# ════════════════════════════════════════════════════════════
# digest — recurring digest preferences (sub-command group)
# ════════════════════════════════════════════════════════════

digest_app = typer.Typer(help="Manage recurring digests")
app.add_typer(digest_app, name="digest")


@digest_app.command("list")
def digest_list() -> None:
    """List users with a digest schedule."""
    _, db = _open_store()
    prefs = db.find_preferences_with_recurrence()

    if not prefs:
        console.print("[dim]No digest schedules found.[/dim]")
        return

    table = Table(title="Digest Schedules")
    table.add_column("User", style="cyan")
    table.add_column("Chat", style="blue")
    table.add_column("Cron", style="yellow")
    table.add_column("Timezone", style="dim")

    for p in prefs:
        table.add_row(p.user_id, p.selected_chat_id or "-", p.digest_schedule_cron, p.timezone)

    console.print(table)


@digest_app.command("set")
def digest_set(
    user_id: str = typer.Argument(help="Telegram user ID"),
    cron_expr: str = typer.Argument(help="Cron expression, e.g. '0 9 * * *'"),
    chat_id: str = typer.Option(..., "--chat", "-c", help="Chat to summarize"),
) -> None:
    """Save a digest schedule; a running server picks it up on its next reconciliation."""
    from apscheduler.triggers.cron import CronTrigger

    config, db = _open_store()
    try:
        CronTrigger.from_crontab(cron_expr, timezone=config.tz)
    except ValueError as e:
        console.print(f"[red]Invalid cron expression:[/red] {e}")
        raise typer.Exit(code=1)

    db.add_user_chat(user_id, chat_id)
    db.update_preferences(user_id, digest_schedule_cron=cron_expr, selected_chat_id=chat_id)
    console.print(f"[green]Digest scheduled:[/green] chat {chat_id} → user {user_id} ({cron_expr})")
