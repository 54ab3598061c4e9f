from __future__ import annotations

import asyncio

from discord.ext import commands
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from relay.errors import RelayError

PROMPT_PREVIEW_CHARS = 600


def _preview(text: str | None, limit: int = PROMPT_PREVIEW_CHARS) -> str:
    clean = " ".join((text or "").split())
    if len(clean) > limit:
        clean = clean[: limit - 3] + "..."
    return clean


def register(
    bot: commands.Bot,
    *,
    deps: CommandDeps,
    gates: CommandGates,
) -> None:
    async def _allowed(ctx: commands.Context) -> bool:
        if not gates.in_allowed_channel(ctx):
            return False
        if not gates.user_is_owner(ctx.author):
            await ctx.send("This command is owner-only.")
            return False
        return True

    async def _conversation_for(ctx: commands.Context) -> tuple[int, str]:
        name = await deps.conversation_name_func(ctx.message, fetch_channel=deps.fetch_channel)
        return (await deps.store.find_or_create(name), name)

    @bot.command(name="relaysettings")
    async def cmd_relaysettings(ctx: commands.Context):
        if not await _allowed(ctx):
            return
        try:
            conversation_id, name = await _conversation_for(ctx)
            settings = await deps.store.get_settings(conversation_id)
        except RelayError as e:
            await ctx.send(f"Could not load settings: {e}")
            return

        lines = [
            f"Conversation {name} (id={conversation_id})",
            f"- model: {settings.model}",
            f"- max_tokens: {settings.max_tokens}",
            f"- prompt: {'override' if settings.prompt_override else 'default'}",
        ]
        if settings.prompt_override:
            lines.append(f"  {_preview(settings.prompt_override)}")
        await deps.send_chunked(ctx.channel, "```\n" + "\n".join(lines) + "\n```")

    @bot.command(name="relayprompt")
    async def cmd_relayprompt(ctx: commands.Context, *, text: str = ""):
        if not await _allowed(ctx):
            return
        text = (text or "").strip()
        if not text:
            await ctx.send("Usage: `!relayprompt <template text>` or `!relayprompt clear`")
            return

        clearing = text.lower() in {"clear", "default", "reset"}
        if not clearing and deps.validate_prompt_func is not None:
            try:
                deps.validate_prompt_func(text)
            except RelayError as e:
                await ctx.send(f"Prompt template rejected: {e}")
                return

        try:
            conversation_id, name = await _conversation_for(ctx)
            await deps.store.set_prompt_override(conversation_id, None if clearing else text)
        except RelayError as e:
            await ctx.send(f"Could not update prompt: {e}")
            return

        if clearing:
            await ctx.send(f"Prompt override cleared for {name}.")
        else:
            await ctx.send(f"Prompt override saved for {name} ({len(text)} chars).")

    @bot.command(name="relaymodel")
    async def cmd_relaymodel(ctx: commands.Context, model: str = ""):
        if not await _allowed(ctx):
            return
        model = (model or "").strip()
        if not model:
            await ctx.send("Usage: `!relaymodel <model name|default>`")
            return

        value = None if model.lower() == "default" else model
        try:
            conversation_id, name = await _conversation_for(ctx)
            await deps.store.set_model(conversation_id, value)
            settings = await deps.store.get_settings(conversation_id)
        except RelayError as e:
            await ctx.send(f"Could not update model: {e}")
            return
        await ctx.send(f"Model for {name} is now `{settings.model}`.")

    @bot.command(name="relaymaxtokens")
    async def cmd_relaymaxtokens(ctx: commands.Context, value: str = ""):
        if not await _allowed(ctx):
            return
        raw = (value or "").strip().lower()
        if raw == "default":
            max_tokens = None
        else:
            try:
                max_tokens = int(raw)
            except ValueError:
                max_tokens = 0
            if max_tokens <= 0:
                await ctx.send("Usage: `!relaymaxtokens <positive integer|default>`")
                return

        try:
            conversation_id, name = await _conversation_for(ctx)
            await deps.store.set_max_tokens(conversation_id, max_tokens)
            settings = await deps.store.get_settings(conversation_id)
        except RelayError as e:
            await ctx.send(f"Could not update max_tokens: {e}")
            return
        await ctx.send(f"max_tokens for {name} is now {settings.max_tokens}.")

    @bot.command(name="relayconversations")
    async def cmd_relayconversations(ctx: commands.Context, limit: int = 25):
        if not await _allowed(ctx):
            return
        try:
            rows = await deps.store.list_conversations(max(1, min(int(limit or 25), 200)))
        except RelayError as e:
            await ctx.send(f"Could not list conversations: {e}")
            return

        if not rows:
            await ctx.send("No conversations yet.")
            return

        lines = [f"Conversations ({len(rows)}):"]
        for row in rows:
            override = " prompt=override" if row["has_override"] else ""
            lines.append(
                f"- #{row['id']} {row['name']} messages={row['message_count']} "
                f"model={row['model'] or 'default'} max_tokens={row['max_tokens'] or 'default'}{override}"
            )
        await deps.send_chunked(ctx.channel, "```\n" + "\n".join(lines)[:7000] + "\n```")

    @bot.command(name="dbmigrations")
    async def cmd_dbmigrations(ctx: commands.Context, limit: int = 30):
        if not await _allowed(ctx):
            return

        lim = max(1, min(int(limit or 30), 200))
        async with deps.db_lock:
            rows = await asyncio.to_thread(deps.list_schema_migrations_sync, deps.db_conn, lim)

        if not rows:
            await ctx.send("No schema migrations found.")
            return

        lines = [f"Applied schema migrations (latest {len(rows)}):"]
        for version, name, applied_at in rows:
            lines.append(f"- {version}_{name} @ {applied_at}")

        await deps.send_chunked(ctx.channel, "```\n" + "\n".join(lines)[:7000] + "\n```")
