"""Telegram channel — message ingestion webhook + send helper."""

from __future__ import annotations

import html
import re
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger

from chatminder.api.deps import get_config, get_db
from chatminder.core.channels.base import check_allowlist
from chatminder.core.config.schema import Config, TelegramChannelConfig
from chatminder.memory.models import ChatMessage
from chatminder.memory.store import MemoryStore

router = APIRouter(tags=["telegram"])


class TelegramSender:
    """Outbound messages through the Telegram Bot API.

    Raises ``httpx.HTTPStatusError`` when Telegram rejects the message, so
    callers (reminder delivery) see the failure.
    """

    def __init__(self, token: str, api_base: str = "https://api.telegram.org", timeout: float = 30.0):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: TelegramChannelConfig) -> TelegramSender:
        return cls(cfg.token, cfg.api_base)

    @property
    def url(self) -> str:
        return f"{self.api_base}/bot{self.token}/sendMessage"

    async def send_to_user(self, user_id: int, text: str) -> None:
        # Private chats share the user's id
        await self.send_message(user_id, text)

    async def send_to_chat(self, chat_id: int, text: str) -> None:
        await self.send_message(chat_id, text)

    async def send_message(self, chat_id: int, text: str) -> None:
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
            resp = await client.post(
                self.url,
                json={"chat_id": chat_id, "text": md_to_html(text), "parse_mode": "HTML"},
            )
            # Fallback to plain text if HTML parsing fails
            if resp.status_code != 200:
                logger.debug(f"Telegram HTML send failed ({resp.status_code}), retrying as plain text")
                resp = await client.post(self.url, json={"chat_id": chat_id, "text": text})
            resp.raise_for_status()


@router.post("/webhooks/telegram")
async def telegram_webhook(
    request: Request,
    db: MemoryStore = Depends(get_db),
    config: Config = Depends(get_config),
):
    """Store incoming chat messages; group chats are linked to their sender."""
    body = await request.json()
    message = body.get("message") or body.get("edited_message")
    if not message or not message.get("text"):
        return JSONResponse({"ok": True})

    sender = message.get("from") or {}
    sender_id = str(sender.get("id", ""))
    if not check_allowlist(config.channels, "telegram", sender_id, sender.get("username")):
        logger.warning(f"Telegram: sender {sender_id} not in allowlist")
        return JSONResponse({"error": "Forbidden"}, status_code=403)

    chat = message["chat"]
    chat_id = str(chat["id"])
    chat_type = chat.get("type", "private")
    name = " ".join(p for p in (sender.get("first_name"), sender.get("last_name")) if p) or None
    stored = ChatMessage(
        id=f"{chat_id}:{message['message_id']}",
        chat_id=chat_id,
        chat_type=chat_type,
        sender_id=sender_id or None,
        sender_name=name,
        sender_username=sender.get("username"),
        text=message["text"],
        timestamp=datetime.fromtimestamp(message.get("date", 0), tz=timezone.utc)
        if message.get("date")
        else datetime.now(timezone.utc),
    )
    db.add_message(stored)
    if chat_type != "private" and sender_id:
        db.add_user_chat(sender_id, chat_id, chat.get("title"))

    logger.debug(f"Telegram: stored message {stored.id} from {sender_id}")
    return JSONResponse({"ok": True, "message_id": stored.id})


_FENCE_RE = re.compile(r"```(?:\w*\n)?(.*?)```", re.DOTALL)
_INLINE_RULES = (
    (re.compile(r"`([^`]+)`"), r"<code>\1</code>"),
    (re.compile(r"\*\*(.+?)\*\*"), r"<b>\1</b>"),
    (re.compile(r"\*(.+?)\*"), r"<i>\1</i>"),
    (re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)"), r'<a href="\2">\1</a>'),
)


def md_to_html(text: str) -> str:
    """Render the Markdown subset used in bot messages as Telegram HTML.

    Fenced blocks become ``<pre>``; inline code, bold, italic and http(s)
    links are converted, and everything else is escaped.
    """
    out = []
    # split() with one group alternates: text, fence body, text, ...
    for i, part in enumerate(_FENCE_RE.split(text)):
        escaped = html.escape(part, quote=False)
        if i % 2:
            out.append(f"<pre>{escaped}</pre>")
            continue
        for pattern, repl in _INLINE_RULES:
            escaped = pattern.sub(repl, escaped)
        out.append(escaped)
    return "".join(out)
