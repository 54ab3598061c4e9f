from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from relay.errors import CompletionError
from relay.errors import PersistenceError


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"

    def to_code(self) -> int:
        return _ROLE_TO_CODE[self]

    @classmethod
    def from_code(cls, code: Any) -> Role:
        try:
            return _CODE_TO_ROLE[int(code)]
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Invalid stored role: {code!r}", code="bad_role") from exc

    def to_wire(self) -> str:
        return self.value

    @classmethod
    def from_wire(cls, value: Any) -> Role:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError as exc:
            raise CompletionError(f"Unknown completion role: {value!r}", code="bad_role") from exc


_ROLE_TO_CODE: dict[Role, int] = {
    Role.SYSTEM: 0,
    Role.USER: 1,
    Role.ASSISTANT: 2,
    Role.FUNCTION: 3,
}
_CODE_TO_ROLE: dict[int, Role] = {code: role for role, code in _ROLE_TO_CODE.items()}


@dataclass(frozen=True, slots=True)
class TextMessage:
    content: str

    def plain_text(self) -> str:
        return self.content


@dataclass(frozen=True, slots=True)
class FunctionInvocation:
    name: str
    arguments: str

    def plain_text(self) -> str:
        return f"{self.name}({self.arguments})"


Payload = Union[TextMessage, FunctionInvocation]


def encode_payload(payload: Payload) -> str:
    if isinstance(payload, TextMessage):
        blob = {"type": "text", "content": payload.content}
    elif isinstance(payload, FunctionInvocation):
        blob = {"type": "function", "name": payload.name, "arguments": payload.arguments}
    else:
        raise PersistenceError(f"Unsupported message payload: {type(payload).__name__}", code="bad_payload")
    return json.dumps(blob, ensure_ascii=False)


def decode_payload(raw: Any) -> Payload:
    try:
        blob = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise PersistenceError("Stored message payload is not valid JSON", code="bad_payload") from exc
    if not isinstance(blob, dict):
        raise PersistenceError("Stored message payload must be an object", code="bad_payload")

    kind = blob.get("type")
    if kind == "text" and isinstance(blob.get("content"), str):
        return TextMessage(blob["content"])
    if kind == "function" and isinstance(blob.get("name"), str) and isinstance(blob.get("arguments"), str):
        return FunctionInvocation(name=blob["name"], arguments=blob["arguments"])
    raise PersistenceError(f"Stored message payload has unknown shape: type={kind!r}", code="bad_payload")


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    payload: Payload
    seq: int | None = None
    conversation_id: int | None = None

    @classmethod
    def text(cls, role: Role, content: str) -> Message:
        return cls(role=role, payload=TextMessage(content))

    def plain_text(self) -> str:
        return self.payload.plain_text()

    def to_wire(self) -> dict:
        """Shape accepted by the chat completions `messages` parameter."""
        if isinstance(self.payload, FunctionInvocation):
            return {
                "role": self.role.to_wire(),
                "content": None,
                "function_call": {
                    "name": self.payload.name,
                    "arguments": self.payload.arguments,
                },
            }
        return {"role": self.role.to_wire(), "content": self.payload.content}


@dataclass(frozen=True, slots=True)
class ConversationSettings:
    model: str
    max_tokens: int
    prompt_override: str | None = None
