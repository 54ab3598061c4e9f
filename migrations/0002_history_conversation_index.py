from __future__ import annotations

import sqlite3


def _has_table(conn: sqlite3.Connection, table: str) -> bool:
    cur = conn.cursor()
    cur.execute("SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1", (table,))
    return cur.fetchone() is not None


def upgrade(conn: sqlite3.Connection) -> None:
    if not _has_table(conn, "history"):
        return

    cur = conn.cursor()
    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_history_conversation_seq
        ON history (conversation_id, id)
        """
    )
    conn.commit()
