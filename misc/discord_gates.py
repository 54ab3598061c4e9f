from __future__ import annotations

import re

import discord


def parse_id_set(raw: str | None) -> set[int]:
    if not raw:
        return set()
    out: set[int] = set()
    for tok in re.split(r"[\s,;]+", raw.strip()):
        if re.fullmatch(r"\d{8,22}", tok or ""):
            out.add(int(tok))
    return out


def message_in_allowed_channels(message: discord.Message, allowed_channel_ids: set[int]) -> bool:
    # empty allowlist: every channel the bot can see
    if not allowed_channel_ids:
        return True
    if getattr(message, "guild", None) is None:
        return True

    channel_id = int(getattr(message.channel, "id", 0) or 0)
    if channel_id in allowed_channel_ids:
        return True
    # thread: allow if parent is allowed
    if isinstance(message.channel, discord.Thread) and message.channel.parent:
        return int(message.channel.parent.id) in allowed_channel_ids
    return False


def should_reply(message: discord.Message, bot_user) -> bool:
    """Direct mentions and private messages get a reply; everything else is ignored."""
    if getattr(message, "guild", None) is None:
        return True
    if bot_user is None:
        return False
    return any(int(getattr(u, "id", 0) or 0) == int(bot_user.id) for u in (message.mentions or []))
