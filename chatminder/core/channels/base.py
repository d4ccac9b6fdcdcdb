"""Channel access control shared by webhook handlers."""

from __future__ import annotations

from chatminder.core.config.schema import ChannelsConfig


def check_allowlist(
    channels_config: ChannelsConfig,
    channel: str,
    sender_id: str,
    username: str | None = None,
) -> bool:
    """Whether a sender may use ``channel``.

    ``allow_from`` entries match the numeric sender id or the username
    (with or without a leading ``@``).  An empty list admits everyone; an
    unknown channel admits no one.
    """
    channel_cfg = getattr(channels_config, channel, None)
    if channel_cfg is None:
        return False
    allowed = {entry.lstrip("@").lower() for entry in channel_cfg.allow_from}
    if not allowed:
        return True
    if sender_id and sender_id in allowed:
        return True
    return bool(username) and username.lstrip("@").lower() in allowed
