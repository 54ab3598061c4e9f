from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

import discord
from relay.errors import GatewayError
from relay.mentions import token_user_id
from relay.orchestrator import EventHooks
from relay.prompting import build_prompt_variables


def _nick_or_name(user_obj) -> str:
    for attr in ("nick", "name"):
        value = getattr(user_obj, attr, None)
        if value:
            return str(value)
    return "unknown"


def _tzinfo(timezone_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo((timezone_name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        print(f"[CFG] unknown timezone {timezone_name!r}; using UTC")
        return ZoneInfo("UTC")


async def conversation_name_for_message(message: discord.Message, *, fetch_channel) -> str:
    """
    Thread children are "#parent:child", guild channels "#name", and private
    channels are named after the counterpart.
    """
    channel = message.channel
    if getattr(message, "guild", None) is None:
        recipient = getattr(channel, "recipient", None) or message.author
        return str(getattr(recipient, "name", "") or "unknown")

    name = str(getattr(channel, "name", "") or "unknown")
    if isinstance(channel, discord.Thread):
        parent = channel.parent
        if parent is None and getattr(channel, "parent_id", None):
            try:
                parent = await fetch_channel(int(channel.parent_id))
            except discord.DiscordException as e:
                raise GatewayError(f"Could not fetch parent channel {channel.parent_id}: {e}") from e
        parent_name = getattr(parent, "name", None)
        if parent_name:
            return f"#{parent_name}:{name}"
    return f"#{name}"


async def resolve_display_name(bot, guild, token: str) -> str | None:
    user_id = token_user_id(token)
    if user_id is None:
        return None
    try:
        if guild is not None:
            member = guild.get_member(user_id)
            if member is None:
                try:
                    member = await guild.fetch_member(user_id)
                except discord.NotFound:
                    member = None
            if member is not None:
                return _nick_or_name(member)
        user = bot.get_user(user_id) or await bot.fetch_user(user_id)
    except (discord.DiscordException, OSError, asyncio.TimeoutError) as e:
        raise GatewayError(f"Could not look up user {user_id}: {e}") from e
    return _nick_or_name(user)


async def prompt_variables_for_message(bot, message: discord.Message, *, timezone_name: str | None) -> dict[str, Any]:
    guild = getattr(message, "guild", None)
    channel = message.channel
    bot_obj = getattr(guild, "me", None) if guild is not None else None
    return build_prompt_variables(
        now=datetime.now(_tzinfo(timezone_name)),
        server_name=getattr(guild, "name", None),
        channel_name=getattr(channel, "name", None) if guild is not None else None,
        channel_topic=getattr(channel, "topic", None) if guild is not None else None,
        user_nick=_nick_or_name(message.author),
        bot_nick=_nick_or_name(bot_obj or bot.user),
    )


def build_event_hooks(bot, message: discord.Message, *, timezone_name: str | None) -> EventHooks:
    guild = getattr(message, "guild", None)

    async def _conversation_name() -> str:
        return await conversation_name_for_message(message, fetch_channel=bot.fetch_channel)

    async def _resolve(token: str) -> str | None:
        return await resolve_display_name(bot, guild, token)

    async def _variables() -> dict[str, Any]:
        return await prompt_variables_for_message(bot, message, timezone_name=timezone_name)

    return EventHooks(
        raw_text=message.content or "",
        conversation_name=_conversation_name,
        resolve_mention=_resolve,
        prompt_variables=_variables,
    )


def _reaction_from_arguments(arguments: str) -> str | None:
    try:
        payload = json.loads(arguments or "{}")
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    value = str(payload.get("reaction_name") or "").strip()
    return value or None


async def react_from_invocation(message: discord.Message, invocation) -> bool:
    """Apply a `react` function call as an emoji reaction; False when it cannot be applied."""
    reaction = _reaction_from_arguments(getattr(invocation, "arguments", ""))
    if not reaction:
        return False

    emoji: Any = reaction
    if reaction.startswith(":") and reaction.endswith(":") and len(reaction) > 2:
        guild = getattr(message, "guild", None)
        custom = discord.utils.get(getattr(guild, "emojis", None) or [], name=reaction.strip(":"))
        if custom is None:
            return False
        emoji = custom

    try:
        await message.add_reaction(emoji)
    except discord.DiscordException as e:
        print(f"[Relay] Failed to react with {reaction!r}: {e}")
        return False
    return True
