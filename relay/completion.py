from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from conversation.models import FunctionInvocation
from conversation.models import Payload
from conversation.models import Role
from conversation.models import TextMessage
from relay.errors import CompletionError
from relay.errors import RelayError


@dataclass(frozen=True, slots=True)
class ModerationVerdict:
    flagged: bool
    categories: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Candidate:
    role: Role
    payload: Payload | None

    @property
    def usable(self) -> bool:
        if isinstance(self.payload, FunctionInvocation):
            return True
        return self.role is Role.ASSISTANT and self.payload is not None


def _flagged_categories(result: Any) -> list[str]:
    cats = getattr(result, "categories", None)
    if cats is None:
        return []
    if hasattr(cats, "model_dump"):
        data = cats.model_dump()
    elif isinstance(cats, dict):
        data = cats
    else:
        data = vars(cats)
    return sorted(str(k) for k, v in data.items() if v is True)


def _candidate_from_choice(choice: Any) -> Candidate:
    msg = getattr(choice, "message", None)
    if msg is None:
        raise CompletionError("Completion choice has no message", code="malformed")
    role = Role.from_wire(getattr(msg, "role", None))

    fn = getattr(msg, "function_call", None)
    if fn is None:
        tool_calls = getattr(msg, "tool_calls", None) or []
        for call in tool_calls:
            fn = getattr(call, "function", None)
            if fn is not None:
                break
    if fn is not None:
        name = str(getattr(fn, "name", "") or "").strip()
        if not name:
            raise CompletionError("Function call without a name", code="malformed")
        return Candidate(role=role, payload=FunctionInvocation(name=name, arguments=str(getattr(fn, "arguments", "") or "")))

    content = getattr(msg, "content", None)
    if isinstance(content, str):
        return Candidate(role=role, payload=TextMessage(content))
    return Candidate(role=role, payload=None)


class CompletionService:
    """Moderation and chat-completion calls against an OpenAI-style client.

    The SDK client is synchronous; calls run in a worker thread and are bounded
    by `timeout_seconds`. Every failure, including a timeout, is a CompletionError.
    """

    def __init__(
        self,
        *,
        client,
        timeout_seconds: float = 60.0,
        functions: list[dict] | None = None,
    ) -> None:
        self.client = client
        self.timeout_seconds = float(timeout_seconds)
        self.functions = list(functions or [])

    async def _call(self, label: str, func, **kwargs):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, **kwargs), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise CompletionError(f"{label} timed out after {self.timeout_seconds:.0f}s", code="timeout") from exc
        except RelayError:
            raise
        except Exception as exc:
            raise CompletionError(f"{label} failed: {exc}", code="transport") from exc

    async def moderate(self, text: str) -> ModerationVerdict:
        resp = await self._call("moderation", self.client.moderations.create, input=text or "")
        results = getattr(resp, "results", None)
        if not isinstance(results, list):
            raise CompletionError("Moderation response has no results", code="malformed")

        flagged = any(bool(getattr(r, "flagged", False)) for r in results)
        categories: list[str] = []
        for r in results:
            for cat in _flagged_categories(r):
                if cat not in categories:
                    categories.append(cat)
        print(f"[Moderation] flagged={flagged} categories={categories}")
        return ModerationVerdict(flagged=flagged, categories=tuple(categories))

    async def complete(
        self,
        *,
        messages: list[dict],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> list[Candidate]:
        request: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": int(max_tokens),
            "temperature": float(temperature),
        }
        if self.functions:
            request["functions"] = self.functions

        resp = await self._call("chat completion", self.client.chat.completions.create, **request)
        choices = getattr(resp, "choices", None)
        if not isinstance(choices, list):
            raise CompletionError("Completion response has no choices", code="malformed")
        candidates: list[Candidate] = []
        first_error: CompletionError | None = None
        for index, choice in enumerate(choices):
            try:
                candidates.append(_candidate_from_choice(choice))
            except CompletionError as e:
                print(f"[OpenAI] skipping malformed choice {index}: {e}")
                first_error = first_error or e
        # only a response with nothing parseable is malformed as a whole
        if not candidates and first_error is not None:
            raise first_error
        return candidates


def load_function_declarations(path: str | Path | None) -> tuple[list[dict], str | None]:
    """
    Returns (functions, warning_message). An unset path disables function calling.
    """
    if not path:
        return ([], None)

    p = Path(path)
    if not p.exists():
        return ([], f"Function declarations not found at {p}; function calling disabled.")

    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        return ([], f"Failed to read function declarations from {p}: {exc}; function calling disabled.")

    if payload is None:
        return ([], None)
    if not isinstance(payload, list):
        return ([], f"Invalid function declarations format in {p}; function calling disabled.")

    functions: list[dict] = []
    for item in payload:
        if isinstance(item, dict) and str(item.get("name") or "").strip():
            functions.append(dict(item))
    return (functions, None)
