from __future__ import annotations

import asyncio
import re
from typing import Awaitable, Callable

from relay.errors import GatewayError

MENTION_TOKEN_RE = re.compile(r"<@(\d+)>")

MentionResolver = Callable[[str], Awaitable[str | None]]


class MentionCodec:
    """Bidirectional cache between user mention tokens and display names.

    Tokens look like `<@12345>`; displays are `@` + the name the resolver
    returned. Both sides are unique, displays compared case-insensitively.
    Entries live for the process and are never evicted.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._by_token: dict[str, str] = {}
        self._by_display: dict[str, str] = {}

    async def decode(self, text: str, resolver: MentionResolver) -> str:
        text = text or ""
        async with self._lock:
            pending: list[str] = []
            for m in MENTION_TOKEN_RE.finditer(text):
                token = m.group(0)
                if token not in self._by_token and token not in pending:
                    pending.append(token)

            for token in pending:
                name = await self._resolve(resolver, token)
                if not name:
                    continue
                display = name if name.startswith("@") else f"@{name}"
                owner = self._by_display.get(display.casefold())
                if owner is not None and owner != token:
                    print(f"[Mentions] display {display!r} already bound to {owner}; leaving {token} as-is")
                    continue
                self._by_token[token] = display
                self._by_display[display.casefold()] = token

            return MENTION_TOKEN_RE.sub(lambda m: self._by_token.get(m.group(0), m.group(0)), text)

    async def encode(self, text: str) -> str:
        text = text or ""
        async with self._lock:
            if not self._by_display:
                return text
            displays = sorted(self._by_token.values(), key=len, reverse=True)
            pattern = re.compile(
                "(?:" + "|".join(re.escape(d) for d in displays) + r")(?!\w)",
                flags=re.IGNORECASE,
            )
            return pattern.sub(lambda m: self._by_display.get(m.group(0).casefold(), m.group(0)), text)

    @staticmethod
    async def _resolve(resolver: MentionResolver, token: str) -> str | None:
        try:
            name = await resolver(token)
        except GatewayError as e:
            print(f"[Mentions] could not resolve {token}: {e}")
            return None
        except Exception as e:
            print(f"[Mentions] unexpected error resolving {token}: {e!r}")
            return None
        name = str(name or "").strip()
        return name or None


def mention_token(user_id: int | str) -> str:
    return f"<@{int(user_id)}>"


def token_user_id(token: str) -> int | None:
    m = MENTION_TOKEN_RE.fullmatch((token or "").strip())
    return int(m.group(1)) if m else None
