from __future__ import annotations

from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from misc.commands.commands_relay import register as register_relay
from misc.discord_context import conversation_name_for_message
from misc.events_runtime import register_runtime_events
from misc.runtime_deps import RuntimeDeps


def wire_bot_runtime(
    bot,
    *,
    orchestrator,
    store,
    allowed_channel_ids: set[int],
    user_is_owner,
    list_schema_migrations_sync,
    validate_prompt_func,
    db_lock,
    db_conn,
    send_chunked,
    timezone_name: str,
    command_prefix: str = "!",
) -> None:
    def in_allowed_channel(ctx) -> bool:
        if not allowed_channel_ids or getattr(ctx, "guild", None) is None:
            return True
        try:
            channel = ctx.channel
            if int(channel.id) in allowed_channel_ids:
                return True
            parent_id = getattr(channel, "parent_id", None)
            return bool(parent_id) and int(parent_id) in allowed_channel_ids
        except Exception:
            return False

    command_deps = CommandDeps(
        store=store,
        db_lock=db_lock,
        db_conn=db_conn,
        send_chunked=send_chunked,
        fetch_channel=bot.fetch_channel,
        list_schema_migrations_sync=list_schema_migrations_sync,
        conversation_name_func=conversation_name_for_message,
        validate_prompt_func=validate_prompt_func,
    )
    command_gates = CommandGates(
        in_allowed_channel=in_allowed_channel,
        allowed_channel_ids=allowed_channel_ids,
        user_is_owner=user_is_owner,
    )

    register_relay(
        bot,
        deps=command_deps,
        gates=command_gates,
    )

    register_runtime_events(
        bot,
        deps=RuntimeDeps(
            orchestrator=orchestrator,
            send_chunked=send_chunked,
            allowed_channel_ids=allowed_channel_ids,
            timezone_name=timezone_name,
            command_prefix=command_prefix,
        ),
    )
