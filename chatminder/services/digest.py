"""DigestService — plain-text summary of a chat over a time window."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from loguru import logger

from chatminder.utils.dates import format_date, format_range, parse_timestamp

if TYPE_CHECKING:
    from chatminder.memory.store import MemoryStore

NO_MESSAGES = "No messages found for the selected period."
_SNIPPET_LEN = 200


class DigestService:
    """Builds digests from stored messages and tasks."""

    def __init__(
        self,
        db: MemoryStore,
        tz: ZoneInfo = ZoneInfo("UTC"),
        max_messages: int = 200,
        recent_messages: int = 10,
    ):
        self.db = db
        self.tz = tz
        self.max_messages = max_messages
        self.recent_messages = recent_messages

    def generate_digest(
        self, chat_id: str, chat_title: str, window: tuple[datetime, datetime]
    ) -> str:
        start, end = window
        messages = self.db.get_messages(chat_id, start, end, limit=self.max_messages)
        if not messages:
            return NO_MESSAGES

        lines = [f"{chat_title} — {format_range(start, end, self.tz)}", ""]
        lines.append(f"Messages: {len(messages)}")

        activity = Counter(m["sender_name"] or m["sender_id"] or "Participant" for m in messages)
        lines.append("Most active:")
        for name, count in activity.most_common(5):
            lines.append(f"  • {name}: {count}")

        tasks = self.db.get_tasks_due_between(chat_id, start, end)
        if tasks:
            lines.append("")
            lines.append("Deadlines in this period:")
            for task in tasks:
                who = f" ({task.assignee_name})" if task.assignee_name else ""
                lines.append(f"  • {task.title}{who} — {format_date(task.due_date, self.tz)}")

        lines.append("")
        lines.append("Latest messages:")
        for m in messages[-self.recent_messages:]:
            when = parse_timestamp(m["timestamp"]).astimezone(self.tz)
            text = (m["text"] or "").replace("\n", " ").strip()
            if len(text) > _SNIPPET_LEN:
                text = text[:_SNIPPET_LEN] + "..."
            lines.append(f"  [{when:%H:%M}] {m['sender_name'] or 'Participant'}: {text}")

        logger.debug(f"Digest built for chat {chat_id}: {len(messages)} messages")
        return "\n".join(lines)

    def save_digest(
        self,
        chat_id: str,
        window: tuple[datetime, datetime],
        summary: str,
        created_by: str | None = None,
    ) -> str:
        return self.db.save_digest(chat_id, window[0], window[1], summary, created_by)

    def get_last_digests(self, chat_id: str, limit: int = 5) -> list[dict]:
        return self.db.get_last_digests(chat_id, limit)
