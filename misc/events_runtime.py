from __future__ import annotations

import discord
from discord.ext import commands
from misc.discord_context import build_event_hooks
from misc.discord_context import react_from_invocation
from misc.discord_gates import message_in_allowed_channels
from misc.discord_gates import should_reply
from misc.runtime_deps import RuntimeDeps
from relay.errors import RelayError


async def handle_reply(bot, message: discord.Message, *, deps: RuntimeDeps) -> bool:
    """Run one reply turn and relay the result. Returns True when something was sent."""
    hooks = build_event_hooks(bot, message, timezone_name=deps.timezone_name)
    try:
        async with message.channel.typing():
            outcome = await deps.orchestrator.reply_outcome(hooks)
    except RelayError as e:
        print(f"[Relay] {e.code}: {e}")
        return False
    except Exception as e:
        print(f"[Relay] Unexpected error: {e!r}")
        return False

    if outcome.invocation is not None and outcome.invocation.name == "react":
        if await react_from_invocation(message, outcome.invocation):
            print(f"[Relay] reacted in conversation={outcome.conversation_id}")
            return True

    if not (outcome.text or "").strip():
        print(f"[Relay] empty reply conversation={outcome.conversation_id}; nothing sent")
        return False

    print(f"[Relay] reply conversation={outcome.conversation_id} deflected={outcome.deflected} chars={len(outcome.text)}")
    try:
        await deps.send_chunked(message.channel, outcome.text)
    except discord.DiscordException as e:
        print(f"[Relay] Failed to send reply: {e}")
        return False
    return True


def register_runtime_events(
    bot: commands.Bot,
    *,
    deps: RuntimeDeps,
) -> None:
    @bot.event
    async def on_ready():
        print(f"[Relay] {bot.user} is connected!")

    @bot.event
    async def on_message(message: discord.Message):
        if message.author.bot:
            return
        if not message_in_allowed_channels(message, deps.allowed_channel_ids):
            return

        if (message.content or "").lstrip().startswith(deps.command_prefix):
            await bot.process_commands(message)
            return

        if not should_reply(message, bot.user):
            return

        await handle_reply(bot, message, deps=deps)
