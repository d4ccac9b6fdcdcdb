"""SQLite-based store for chatminder.

Tables:
    chat_messages, tasks, reminders, user_preferences,
    user_chats, digest_log

Timestamps are written as UTC ISO-8601 strings (see ``utils.dates.to_db``)
so that range filters can compare them lexicographically.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from chatminder.memory.models import ChatMessage, Reminder, Task, UserPreference
from chatminder.utils.dates import parse_timestamp, to_db


def _new_id() -> str:
    return uuid.uuid4().hex


def _row_to_task(row: sqlite3.Row | dict[str, Any]) -> Task:
    data = dict(row)
    data["due_date"] = parse_timestamp(data.get("due_date"))
    return Task(**{k: v for k, v in data.items() if k in Task.model_fields})


def _row_to_reminder(row: sqlite3.Row | dict[str, Any]) -> Reminder:
    data = dict(row)
    return Reminder(
        id=data["id"],
        task_id=data["task_id"],
        remind_at=parse_timestamp(data["remind_at"]),
        user_id=data.get("user_id"),
        delivered=bool(data.get("delivered")),
    )


def _row_to_preference(row: sqlite3.Row | dict[str, Any]) -> UserPreference:
    data = dict(row)
    return UserPreference(**{k: v for k, v in data.items() if k in UserPreference.model_fields})


class MemoryStore:
    """SQLite store — single source of truth for tasks and reminders."""

    def __init__(self, db_path: str = "data/chatminder.db", default_timezone: str = "Europe/Moscow"):
        self.db_path = db_path
        self.default_timezone = default_timezone
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"MemoryStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn) -> None:
        """Add columns missing in existing databases."""
        task_cols = {row[1] for row in conn.execute("PRAGMA table_info(tasks)").fetchall()}
        for col, ddl in [
            ("status", "TEXT NOT NULL DEFAULT 'open'"),
            ("priority", "TEXT NOT NULL DEFAULT 'medium'"),
        ]:
            if col not in task_cols:
                conn.execute(f"ALTER TABLE tasks ADD COLUMN {col} {ddl}")

        pref_cols = {
            row[1] for row in conn.execute("PRAGMA table_info(user_preferences)").fetchall()
        }
        if "selected_chat_id" not in pref_cols:
            conn.execute("ALTER TABLE user_preferences ADD COLUMN selected_chat_id TEXT")

    # ════════════════════════════════════════════════════════════
    # CHAT MESSAGES
    # ════════════════════════════════════════════════════════════

    def add_message(self, message: ChatMessage) -> None:
        """Insert or refresh an ingested chat message (keyed by platform id)."""
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO chat_messages
                   (id, chat_id, chat_type, sender_id, sender_name, sender_username, text, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       text = excluded.text,
                       sender_name = excluded.sender_name,
                       updated_at = CURRENT_TIMESTAMP""",
                (
                    message.id, message.chat_id, message.chat_type, message.sender_id,
                    message.sender_name, message.sender_username, message.text,
                    to_db(message.timestamp),
                ),
            )
            conn.commit()

    def get_messages(
        self, chat_id: str, start: datetime, end: datetime, limit: int = 200
    ) -> list[dict[str, Any]]:
        """Text messages of a chat inside [start, end], oldest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM chat_messages
                   WHERE chat_id = ? AND timestamp >= ? AND timestamp <= ?
                     AND text IS NOT NULL
                   ORDER BY timestamp ASC LIMIT ?""",
                (chat_id, to_db(start), to_db(end), limit),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_recent_messages(self, chat_id: str, limit: int = 10) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM chat_messages
                   WHERE chat_id = ? AND text IS NOT NULL
                   ORDER BY timestamp DESC LIMIT ?""",
                (chat_id, limit),
            ).fetchall()
        return list(reversed([dict(r) for r in rows]))

    # ════════════════════════════════════════════════════════════
    # TASKS
    # ════════════════════════════════════════════════════════════

    def upsert_task(
        self,
        chat_id: str,
        title: str,
        source_message_id: str,
        description: str | None = None,
        due_date: datetime | None = None,
        assignee_id: str | None = None,
        assignee_name: str | None = None,
        created_by_user_id: str | None = None,
        created_by_name: str | None = None,
        priority: str = "medium",
    ) -> Task:
        """Create a task, or update the one already extracted from the same message."""
        with self._get_conn() as conn:
            existing = conn.execute(
                "SELECT id FROM tasks WHERE source_message_id = ? AND title = ?",
                (source_message_id, title),
            ).fetchone()
            task_id = existing["id"] if existing else _new_id()
            conn.execute(
                """INSERT INTO tasks
                   (id, chat_id, title, description, due_date, assignee_id, assignee_name,
                    source_message_id, created_by_user_id, created_by_name, priority)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(source_message_id, title) DO UPDATE SET
                       chat_id = excluded.chat_id,
                       description = excluded.description,
                       due_date = excluded.due_date,
                       assignee_id = COALESCE(excluded.assignee_id, tasks.assignee_id),
                       assignee_name = COALESCE(excluded.assignee_name, tasks.assignee_name),
                       created_by_user_id = COALESCE(excluded.created_by_user_id, tasks.created_by_user_id),
                       created_by_name = COALESCE(excluded.created_by_name, tasks.created_by_name),
                       priority = excluded.priority,
                       updated_at = CURRENT_TIMESTAMP""",
                (
                    task_id, chat_id, title, description, to_db(due_date), assignee_id,
                    assignee_name, source_message_id, created_by_user_id, created_by_name,
                    priority,
                ),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row)

    def get_task(self, task_id: str) -> Task | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None

    def get_upcoming_tasks(self, chat_id: str, until: datetime, limit: int = 50) -> list[Task]:
        """Tasks of a chat with a due date up to ``until``, soonest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM tasks
                   WHERE chat_id = ? AND due_date IS NOT NULL AND due_date <= ?
                   ORDER BY due_date ASC LIMIT ?""",
                (chat_id, to_db(until), limit),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def get_personal_tasks(self, user_id: str, until: datetime, limit: int = 50) -> list[Task]:
        """Tasks assigned to or created by a user, due up to ``until``."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM tasks
                   WHERE (assignee_id = ? OR created_by_user_id = ?)
                     AND due_date IS NOT NULL AND due_date <= ?
                   ORDER BY due_date ASC LIMIT ?""",
                (user_id, user_id, to_db(until), limit),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def get_chat_tasks(self, chat_id: str, limit: int = 50) -> list[Task]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM tasks WHERE chat_id = ?
                   ORDER BY due_date IS NULL, due_date ASC LIMIT ?""",
                (chat_id, limit),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def get_tasks_due_between(self, chat_id: str, start: datetime, end: datetime) -> list[Task]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM tasks
                   WHERE chat_id = ? AND due_date >= ? AND due_date <= ?
                   ORDER BY due_date ASC""",
                (chat_id, to_db(start), to_db(end)),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def update_task_status(self, task_id: str, status: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute(
                "UPDATE tasks SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (status, task_id),
            )
            conn.commit()
        return cur.rowcount > 0

    # ════════════════════════════════════════════════════════════
    # REMINDERS
    # ════════════════════════════════════════════════════════════

    def create_reminder(
        self, task_id: str, user_id: str | None, remind_at: datetime
    ) -> Reminder:
        reminder = Reminder(
            id=_new_id(), task_id=task_id, remind_at=remind_at, user_id=user_id
        )
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO reminders (id, task_id, remind_at, user_id, delivered)
                   VALUES (?, ?, ?, ?, 0)""",
                (reminder.id, task_id, to_db(remind_at), user_id),
            )
            conn.commit()
        return reminder

    def get_reminder(self, reminder_id: str) -> Reminder | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        return _row_to_reminder(row) if row else None

    def get_task_reminders(self, task_id: str) -> list[Reminder]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM reminders WHERE task_id = ? ORDER BY remind_at ASC",
                (task_id,),
            ).fetchall()
        return [_row_to_reminder(r) for r in rows]

    def find_due_undelivered_reminders(self, since: datetime) -> list[tuple[Reminder, Task]]:
        """Undelivered reminders with ``remind_at >= since``, joined with their task."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT r.id AS r_id, r.task_id AS r_task_id, r.remind_at AS r_remind_at,
                          r.user_id AS r_user_id, r.delivered AS r_delivered, t.*
                   FROM reminders r JOIN tasks t ON t.id = r.task_id
                   WHERE r.delivered = 0 AND r.remind_at >= ?
                   ORDER BY r.remind_at ASC""",
                (to_db(since),),
            ).fetchall()
        result = []
        for row in rows:
            data = dict(row)
            reminder = _row_to_reminder({
                "id": data.pop("r_id"),
                "task_id": data.pop("r_task_id"),
                "remind_at": data.pop("r_remind_at"),
                "user_id": data.pop("r_user_id"),
                "delivered": data.pop("r_delivered"),
            })
            result.append((reminder, _row_to_task(data)))
        return result

    def get_pending_reminders(self) -> list[dict[str, Any]]:
        """All undelivered reminders with task title, for listings."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT r.id, r.task_id, r.remind_at, r.user_id, t.title, t.chat_id
                   FROM reminders r JOIN tasks t ON t.id = r.task_id
                   WHERE r.delivered = 0 ORDER BY r.remind_at ASC"""
            ).fetchall()
        return [dict(r) for r in rows]

    def mark_reminder_delivered(self, reminder_id: str) -> bool:
        """Flip ``delivered`` to true.

        Compare-and-set: returns True only for the call that performed the
        transition, False if the reminder was already delivered or unknown.
        """
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE reminders
                   SET delivered = 1, delivered_at = CURRENT_TIMESTAMP
                   WHERE id = ? AND delivered = 0""",
                (reminder_id,),
            )
            conn.commit()
        return cur.rowcount > 0

    def is_reminder_delivered(self, reminder_id: str) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT delivered FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        return bool(row and row["delivered"])

    # ════════════════════════════════════════════════════════════
    # USER PREFERENCES
    # ════════════════════════════════════════════════════════════

    def get_preferences(self, user_id: str) -> UserPreference | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM user_preferences WHERE user_id = ?", (user_id,)
            ).fetchone()
        return _row_to_preference(row) if row else None

    def get_or_create_preferences(self, user_id: str) -> UserPreference:
        existing = self.get_preferences(user_id)
        if existing:
            return existing
        with self._get_conn() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO user_preferences (user_id, timezone)
                   VALUES (?, ?)""",
                (user_id, self.default_timezone),
            )
            conn.commit()
        logger.info(f"Preferences created for user {user_id}")
        return self.get_preferences(user_id)

    def update_preferences(self, user_id: str, **fields: Any) -> UserPreference:
        """Set the given preference columns; ``None`` values are skipped."""
        allowed = {"timezone", "reminder_offset_minutes", "digest_schedule_cron", "selected_chat_id"}
        updates = {k: v for k, v in fields.items() if k in allowed and v is not None}
        self.get_or_create_preferences(user_id)
        if updates:
            assignments = ", ".join(f"{col} = ?" for col in updates)
            with self._get_conn() as conn:
                conn.execute(
                    f"""UPDATE user_preferences
                        SET {assignments}, updated_at = CURRENT_TIMESTAMP
                        WHERE user_id = ?""",
                    (*updates.values(), user_id),
                )
                conn.commit()
        return self.get_preferences(user_id)

    def clear_digest_schedule(self, user_id: str) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE user_preferences
                   SET digest_schedule_cron = NULL, updated_at = CURRENT_TIMESTAMP
                   WHERE user_id = ?""",
                (user_id,),
            )
            conn.commit()

    def find_preferences_with_recurrence(self) -> list[UserPreference]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM user_preferences
                   WHERE digest_schedule_cron IS NOT NULL AND digest_schedule_cron != ''"""
            ).fetchall()
        return [_row_to_preference(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # USER CHATS (which chats a user follows)
    # ════════════════════════════════════════════════════════════

    def add_user_chat(self, user_id: str, chat_id: str, chat_title: str | None = None) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO user_chats (user_id, chat_id, chat_title, is_active)
                   VALUES (?, ?, ?, 1)
                   ON CONFLICT(user_id, chat_id) DO UPDATE SET
                       chat_title = COALESCE(excluded.chat_title, user_chats.chat_title),
                       is_active = 1,
                       updated_at = CURRENT_TIMESTAMP""",
                (user_id, chat_id, chat_title),
            )
            conn.commit()

    def get_user_chats(self, user_id: str) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT chat_id, chat_title FROM user_chats
                   WHERE user_id = ? AND is_active = 1 ORDER BY created_at""",
                (user_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_chat_title(self, chat_id: str) -> str | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT chat_title FROM user_chats
                   WHERE chat_id = ? AND chat_title IS NOT NULL LIMIT 1""",
                (chat_id,),
            ).fetchone()
        return row["chat_title"] if row else None

    def remove_user_chat(self, user_id: str, chat_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE user_chats SET is_active = 0, updated_at = CURRENT_TIMESTAMP
                   WHERE user_id = ? AND chat_id = ? AND is_active = 1""",
                (user_id, chat_id),
            )
            conn.commit()
        if cur.rowcount and self.get_selected_chat(user_id) == chat_id:
            with self._get_conn() as conn:
                conn.execute(
                    "UPDATE user_preferences SET selected_chat_id = NULL WHERE user_id = ?",
                    (user_id,),
                )
                conn.commit()
        return cur.rowcount > 0

    def select_chat(self, user_id: str, chat_id: str) -> bool:
        """Make ``chat_id`` the user's selected chat. False if not followed."""
        if not any(c["chat_id"] == chat_id for c in self.get_user_chats(user_id)):
            return False
        self.update_preferences(user_id, selected_chat_id=chat_id)
        return True

    def get_selected_chat(self, user_id: str) -> str | None:
        prefs = self.get_preferences(user_id)
        return prefs.selected_chat_id if prefs else None

    # ════════════════════════════════════════════════════════════
    # DIGEST LOG
    # ════════════════════════════════════════════════════════════

    def save_digest(
        self,
        chat_id: str,
        start: datetime,
        end: datetime,
        summary: str,
        created_by: str | None = None,
    ) -> str:
        digest_id = _new_id()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO digest_log
                   (id, chat_id, generated_for, range_from, range_to, summary, created_by)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (digest_id, chat_id, to_db(end), to_db(start), to_db(end), summary, created_by),
            )
            conn.commit()
        return digest_id

    def get_last_digests(self, chat_id: str, limit: int = 5) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM digest_log WHERE chat_id = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (chat_id, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # STATS (CLI status)
    # ════════════════════════════════════════════════════════════

    def count_rows(self) -> dict[str, int]:
        counts = {}
        with self._get_conn() as conn:
            for table in ("chat_messages", "tasks", "user_preferences"):
                counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            counts["pending_reminders"] = conn.execute(
                "SELECT COUNT(*) FROM reminders WHERE delivered = 0"
            ).fetchone()[0]
        return counts


# ════════════════════════════════════════════════════════════
# SQL SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
-- 1. Ingested chat messages
CREATE TABLE IF NOT EXISTS chat_messages (
    id TEXT PRIMARY KEY,
    chat_id TEXT NOT NULL,
    chat_type TEXT NOT NULL DEFAULT 'group',
    sender_id TEXT,
    sender_name TEXT,
    sender_username TEXT,
    text TEXT,
    timestamp TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_chat_messages_chat ON chat_messages(chat_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_chat_messages_sender ON chat_messages(sender_id, timestamp);

-- 2. Tasks (one per source message + title)
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    chat_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    due_date TEXT,
    assignee_id TEXT,
    assignee_name TEXT,
    source_message_id TEXT NOT NULL,
    created_by_user_id TEXT,
    created_by_name TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    priority TEXT NOT NULL DEFAULT 'medium',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(source_message_id, title)
);
CREATE INDEX IF NOT EXISTS idx_tasks_chat_due ON tasks(chat_id, due_date);
CREATE INDEX IF NOT EXISTS idx_tasks_assignee_due ON tasks(assignee_id, due_date);
CREATE INDEX IF NOT EXISTS idx_tasks_creator_due ON tasks(created_by_user_id, due_date);

-- 3. Reminders (delivered: 0 → 1, never back)
CREATE TABLE IF NOT EXISTS reminders (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL,
    remind_at TEXT NOT NULL,
    user_id TEXT,
    delivered INTEGER NOT NULL DEFAULT 0,
    delivered_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_reminders_pending ON reminders(delivered, remind_at);

-- 4. Per-user preferences
CREATE TABLE IF NOT EXISTS user_preferences (
    user_id TEXT PRIMARY KEY,
    timezone TEXT NOT NULL DEFAULT 'Europe/Moscow',
    reminder_offset_minutes INTEGER NOT NULL DEFAULT 120,
    digest_schedule_cron TEXT,
    selected_chat_id TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- 5. Chats a user follows
CREATE TABLE IF NOT EXISTS user_chats (
    user_id TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    chat_title TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (user_id, chat_id)
);

-- 6. Generated digests
CREATE TABLE IF NOT EXISTS digest_log (
    id TEXT PRIMARY KEY,
    chat_id TEXT NOT NULL,
    generated_for TEXT NOT NULL,
    range_from TEXT NOT NULL,
    range_to TEXT NOT NULL,
    summary TEXT NOT NULL,
    created_by TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_digest_log_chat ON digest_log(chat_id, created_at);
"""
