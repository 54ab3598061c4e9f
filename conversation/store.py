from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from config.defaults import DEFAULT_MAX_TOKENS
from config.defaults import DEFAULT_MODEL
from conversation.models import ConversationSettings
from conversation.models import Message
from conversation.models import Payload
from conversation.models import Role
from conversation.models import decode_payload
from conversation.models import encode_payload
from relay.errors import PersistenceError


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _storage_errors(conn: sqlite3.Connection, op: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        try:
            conn.rollback()
        except sqlite3.Error:
            pass
        raise PersistenceError(f"{op} failed: {exc}", code="storage") from exc


# =========================
# SYNC STORE FUNCTIONS
# =========================
def find_or_create_conversation_sync(
    conn: sqlite3.Connection,
    name: str,
    created_at_utc: str | None = None,
) -> int:
    # names are keys: stored and matched exactly as given
    if not isinstance(name, str) or not name.strip():
        raise PersistenceError("Conversation name must not be empty", code="bad_name")

    with _storage_errors(conn, "find_or_create"):
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO conversation (name, created_at_utc)
            VALUES (?, ?)
            ON CONFLICT(name) DO NOTHING
            """,
            (name, created_at_utc or _utc_now_iso()),
        )
        conn.commit()
        cur.execute("SELECT id FROM conversation WHERE name = ? LIMIT 1", (name,))
        row = cur.fetchone()

    if row is None or row[0] is None:
        raise PersistenceError(f"Failed to insert conversation: {name}", code="missing_conversation")
    return int(row[0])


def append_message_sync(
    conn: sqlite3.Connection,
    conversation_id: int,
    role: Role,
    payload: Payload,
) -> int:
    content = encode_payload(payload)
    with _storage_errors(conn, "append"):
        cur = conn.cursor()
        # single statement: the row only lands if the conversation exists
        cur.execute(
            """
            INSERT INTO history (conversation_id, role, content)
            SELECT id, ?, ? FROM conversation WHERE id = ?
            """,
            (role.to_code(), content, int(conversation_id)),
        )
        if cur.rowcount != 1:
            conn.rollback()
            raise PersistenceError(f"Unknown conversation id: {conversation_id}", code="missing_conversation")
        seq = int(cur.lastrowid)
        conn.commit()
    return seq


def fetch_history_sync(conn: sqlite3.Connection, conversation_id: int) -> list[Message]:
    with _storage_errors(conn, "history"):
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, role, content
            FROM history
            WHERE conversation_id = ?
            ORDER BY id ASC
            """,
            (int(conversation_id),),
        )
        rows = cur.fetchall()

    return [
        Message(
            role=Role.from_code(role_code),
            payload=decode_payload(content),
            seq=int(seq),
            conversation_id=int(conversation_id),
        )
        for seq, role_code, content in rows
    ]


def get_settings_sync(
    conn: sqlite3.Connection,
    conversation_id: int,
    *,
    default_model: str = DEFAULT_MODEL,
    default_max_tokens: int = DEFAULT_MAX_TOKENS,
) -> ConversationSettings:
    with _storage_errors(conn, "get_settings"):
        cur = conn.cursor()
        cur.execute(
            "SELECT model, max_tokens, prompt_override FROM conversation WHERE id = ? LIMIT 1",
            (int(conversation_id),),
        )
        row = cur.fetchone()
    if row is None:
        raise PersistenceError(f"Unknown conversation id: {conversation_id}", code="missing_conversation")

    model, max_tokens, prompt_override = row
    model = str(model or "").strip() or default_model
    try:
        max_tokens = int(max_tokens) if max_tokens is not None else int(default_max_tokens)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Stored max_tokens is not an integer: {max_tokens!r}", code="bad_settings") from exc
    if max_tokens <= 0:
        max_tokens = int(default_max_tokens)
    override = prompt_override if isinstance(prompt_override, str) and prompt_override.strip() else None
    return ConversationSettings(model=model, max_tokens=max_tokens, prompt_override=override)


def _update_conversation_column_sync(
    conn: sqlite3.Connection,
    conversation_id: int,
    column: str,
    value: Any,
) -> None:
    if column not in {"model", "max_tokens", "prompt_override"}:
        raise PersistenceError(f"Unknown settings column: {column}", code="bad_settings")
    with _storage_errors(conn, f"set_{column}"):
        cur = conn.cursor()
        cur.execute(f"UPDATE conversation SET {column} = ? WHERE id = ?", (value, int(conversation_id)))
        if cur.rowcount != 1:
            conn.rollback()
            raise PersistenceError(f"Unknown conversation id: {conversation_id}", code="missing_conversation")
        conn.commit()


def set_prompt_override_sync(conn: sqlite3.Connection, conversation_id: int, text: str | None) -> None:
    clean = text if isinstance(text, str) and text.strip() else None
    _update_conversation_column_sync(conn, conversation_id, "prompt_override", clean)


def set_model_sync(conn: sqlite3.Connection, conversation_id: int, model: str | None) -> None:
    clean = (model or "").strip() or None
    _update_conversation_column_sync(conn, conversation_id, "model", clean)


def set_max_tokens_sync(conn: sqlite3.Connection, conversation_id: int, max_tokens: int | None) -> None:
    if max_tokens is not None and int(max_tokens) <= 0:
        raise PersistenceError("max_tokens must be positive", code="bad_settings")
    value = int(max_tokens) if max_tokens is not None else None
    _update_conversation_column_sync(conn, conversation_id, "max_tokens", value)


def get_conversation_name_sync(conn: sqlite3.Connection, conversation_id: int) -> str | None:
    with _storage_errors(conn, "conversation_name"):
        cur = conn.cursor()
        cur.execute("SELECT name FROM conversation WHERE id = ? LIMIT 1", (int(conversation_id),))
        row = cur.fetchone()
    return str(row[0]) if row else None


def list_conversations_sync(conn: sqlite3.Connection, limit: int = 25) -> list[dict]:
    with _storage_errors(conn, "list_conversations"):
        cur = conn.cursor()
        cur.execute(
            """
            SELECT c.id, c.name, c.model, c.max_tokens,
                   c.prompt_override IS NOT NULL AS has_override,
                   COUNT(h.id) AS message_count
            FROM conversation AS c
            LEFT JOIN history AS h ON h.conversation_id = c.id
            GROUP BY c.id
            ORDER BY c.id ASC
            LIMIT ?
            """,
            (max(1, min(int(limit), 200)),),
        )
        rows = cur.fetchall()
    return [
        {
            "id": int(cid),
            "name": str(name),
            "model": model,
            "max_tokens": max_tokens,
            "has_override": bool(has_override),
            "message_count": int(count),
        }
        for cid, name, model, max_tokens, has_override, count in rows
    ]


# =========================
# ASYNC FACADE
# =========================
class ConversationStore:
    """Conversation history over one SQLite connection.

    Every statement batch runs in a worker thread under `db_lock`, so the
    connection is used by one thread at a time. `turn()` hands out one lock per
    conversation; callers hold it across a whole user/assistant exchange so
    two turns on the same conversation cannot interleave their rows.
    """

    def __init__(
        self,
        *,
        db_conn: sqlite3.Connection,
        db_lock: asyncio.Lock | None = None,
        default_model: str = DEFAULT_MODEL,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        utc_iso: Callable[[], str] | None = None,
    ) -> None:
        self.db_conn = db_conn
        self.db_lock = db_lock or asyncio.Lock()
        self.default_model = (default_model or "").strip() or DEFAULT_MODEL
        self.default_max_tokens = int(default_max_tokens or DEFAULT_MAX_TOKENS)
        self.utc_iso = utc_iso or _utc_now_iso
        self._turn_locks: dict[int, asyncio.Lock] = {}

    async def _call(self, func, *args, **kwargs):
        async with self.db_lock:
            return await asyncio.to_thread(func, self.db_conn, *args, **kwargs)

    def turn(self, conversation_id: int) -> asyncio.Lock:
        cid = int(conversation_id)
        lock = self._turn_locks.get(cid)
        if lock is None:
            lock = asyncio.Lock()
            self._turn_locks[cid] = lock
        return lock

    async def find_or_create(self, name: str) -> int:
        return await self._call(find_or_create_conversation_sync, name, self.utc_iso())

    async def append(self, conversation_id: int, role: Role, payload: Payload) -> int:
        return await self._call(append_message_sync, int(conversation_id), role, payload)

    async def history(self, conversation_id: int) -> list[Message]:
        return await self._call(fetch_history_sync, int(conversation_id))

    async def get_settings(self, conversation_id: int) -> ConversationSettings:
        return await self._call(
            get_settings_sync,
            int(conversation_id),
            default_model=self.default_model,
            default_max_tokens=self.default_max_tokens,
        )

    async def set_prompt_override(self, conversation_id: int, text: str | None) -> None:
        await self._call(set_prompt_override_sync, int(conversation_id), text)

    async def set_model(self, conversation_id: int, model: str | None) -> None:
        await self._call(set_model_sync, int(conversation_id), model)

    async def set_max_tokens(self, conversation_id: int, max_tokens: int | None) -> None:
        await self._call(set_max_tokens_sync, int(conversation_id), max_tokens)

    async def conversation_name(self, conversation_id: int) -> str | None:
        return await self._call(get_conversation_name_sync, int(conversation_id))

    async def list_conversations(self, limit: int = 25) -> list[dict]:
        return await self._call(list_conversations_sync, int(limit))
