from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from config.defaults import DEFAULT_TEMPERATURE
from config.defaults import FALLBACK_MODERATION_RESPONSES
from conversation.models import FunctionInvocation
from conversation.models import Message
from conversation.models import Role
from conversation.models import TextMessage
from conversation.store import ConversationStore
from relay.completion import CompletionService
from relay.errors import NoReplyError
from relay.mentions import MentionCodec
from relay.prompting import render_prompt


@dataclass(frozen=True)
class EventHooks:
    """Per-event view of the gateway, built by the runtime for each inbound message."""

    raw_text: str
    conversation_name: Callable[[], Awaitable[str]]
    resolve_mention: Callable[[str], Awaitable[str | None]]
    prompt_variables: Callable[[], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ReplyOutcome:
    text: str
    conversation_id: int | None
    deflected: bool = False
    invocation: FunctionInvocation | None = None


def load_moderation_responses(path: str | Path | None) -> tuple[list[str], str | None]:
    """
    Returns (phrases, warning_message). warning_message is None on clean load.
    """
    fallback = list(FALLBACK_MODERATION_RESPONSES)
    if not path:
        return (fallback, "Moderation responses path missing; using built-in phrases.")
    p = Path(path)
    if not p.exists():
        return (fallback, f"Moderation responses not found at {p}; using built-in phrases.")
    try:
        lines = p.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        return (fallback, f"Failed to read moderation responses {p}: {exc}; using built-in phrases.")
    phrases = [line.strip() for line in lines if line.strip()]
    if not phrases:
        return (fallback, f"Moderation responses {p} is empty; using built-in phrases.")
    return (phrases, None)


class ReplyOrchestrator:
    """Runs one reply turn for an inbound chat event.

    Identify -> Decode -> Moderate-in -> Persist-user -> Assemble -> Invoke
    -> Persist-assistant -> Moderate-out -> Encode -> Done. A moderation flag
    on either side ends the turn with a stock deflection instead. Steps from
    Persist-user through Persist-assistant hold the conversation's turn lock.
    """

    def __init__(
        self,
        *,
        store: ConversationStore,
        completion: CompletionService,
        mentions: MentionCodec,
        default_prompt: str,
        moderation_responses: list[str] | tuple[str, ...],
        temperature: float = DEFAULT_TEMPERATURE,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.completion = completion
        self.mentions = mentions
        self.default_prompt = default_prompt
        self.moderation_responses = list(moderation_responses) or list(FALLBACK_MODERATION_RESPONSES)
        self.temperature = float(temperature)
        self._rng = rng or random.Random()

    def deflect(self) -> str:
        return self._rng.choice(self.moderation_responses)

    async def reply(self, hooks: EventHooks) -> str:
        outcome = await self.reply_outcome(hooks)
        return outcome.text

    async def reply_outcome(self, hooks: EventHooks) -> ReplyOutcome:
        # Identify
        name = await hooks.conversation_name()
        conversation_id = await self.store.find_or_create(name)

        # Decode
        content = await self.mentions.decode(hooks.raw_text, hooks.resolve_mention)

        # Moderate-in
        verdict = await self.completion.moderate(content)
        if verdict.flagged:
            print(f"[Relay] conversation={name} input flagged ({', '.join(verdict.categories) or 'no categories'})")
            return ReplyOutcome(text=self.deflect(), conversation_id=conversation_id, deflected=True)

        async with self.store.turn(conversation_id):
            # Persist-user
            await self.store.append(conversation_id, Role.USER, TextMessage(content))

            # Assemble
            history = await self.store.history(conversation_id)
            settings = await self.store.get_settings(conversation_id)
            variables = await hooks.prompt_variables()
            system_prompt = render_prompt(settings.prompt_override or self.default_prompt, variables)
            messages = [Message.text(Role.SYSTEM, system_prompt).to_wire()]
            messages.extend(m.to_wire() for m in history)

            # Invoke
            candidates = await self.completion.complete(
                messages=messages,
                model=settings.model,
                max_tokens=settings.max_tokens,
                temperature=self.temperature,
            )
            candidate = next((c for c in candidates if c.usable), None)
            if candidate is None:
                raise NoReplyError(f"No usable candidate among {len(candidates)} for conversation {name}")

            # Persist-assistant
            await self.store.append(conversation_id, Role.ASSISTANT, candidate.payload)

        print(
            f"[Relay] conversation={name} id={conversation_id} history={len(history)} "
            f"model={settings.model} max_tokens={settings.max_tokens}"
        )

        # Moderate-out: the persisted assistant row stays even when flagged
        text = candidate.payload.plain_text()
        verdict = await self.completion.moderate(text)
        if verdict.flagged:
            print(f"[Relay] conversation={name} output flagged ({', '.join(verdict.categories) or 'no categories'})")
            return ReplyOutcome(text=self.deflect(), conversation_id=conversation_id, deflected=True)

        # Encode
        text = await self.mentions.encode(text)
        invocation = candidate.payload if isinstance(candidate.payload, FunctionInvocation) else None
        return ReplyOutcome(text=text, conversation_id=conversation_id, invocation=invocation)
