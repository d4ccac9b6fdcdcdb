"""Identifier normalization.

Chat platforms hand out ids as ints, numeric strings or (for large group
chats) values that overflow 32 bits.  The store keeps every id as TEXT;
these helpers convert between the representations at the edges.
"""

from __future__ import annotations

import math
import re
from typing import Any

_INT_RE = re.compile(r"^-?\d+$")


def to_int(value: Any) -> int | None:
    """Coerce an id-like value to int, or None when it is not integral."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if _INT_RE.match(text):
            return int(text)
    return None


def to_id_string(value: Any) -> str | None:
    """Render an id as the canonical TEXT form used by the store."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    as_int = to_int(value)
    return str(as_int) if as_int is not None else str(value)


def digest_key(chat_id: Any, user_id: Any) -> str | None:
    """Key for the (chat, user) digest map; None if either id is unusable."""
    chat = to_int(chat_id)
    user = to_int(user_id)
    if not chat or not user:
        return None
    return f"{chat}:{user}"
