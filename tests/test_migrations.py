from __future__ import annotations

import shutil
import sqlite3
import tempfile
import unittest
from pathlib import Path

from db.migrate import apply_sqlite_migrations
from db.migrate import list_schema_migrations_sync


def _migrations_dir() -> Path:
    return Path(__file__).resolve().parents[1] / "migrations"


class MigrationRunnerTests(unittest.TestCase):
    def test_apply_is_idempotent(self):
        conn = sqlite3.connect(":memory:")
        first = apply_sqlite_migrations(conn, _migrations_dir())
        second = apply_sqlite_migrations(conn, _migrations_dir())

        self.assertIn("0001", first)
        self.assertEqual(second, [])

        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()}
        self.assertTrue({"conversation", "history", "schema_migrations"} <= tables)

        indexes = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='index'").fetchall()}
        self.assertIn("ix_history_conversation_seq", indexes)

        versions = [row[0] for row in list_schema_migrations_sync(conn)]
        self.assertEqual(versions, sorted(first, reverse=True))
        conn.close()

    def test_changed_applied_migration_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmpdir = Path(tmp)
            shutil.copy(_migrations_dir() / "0001_conversation_history.sql", tmpdir)

            conn = sqlite3.connect(":memory:")
            apply_sqlite_migrations(conn, tmpdir)

            with open(tmpdir / "0001_conversation_history.sql", "a", encoding="utf-8") as f:
                f.write("\n-- edited after release\n")

            with self.assertRaises(RuntimeError):
                apply_sqlite_migrations(conn, tmpdir)
            conn.close()

    def test_missing_directory_raises(self):
        conn = sqlite3.connect(":memory:")
        with self.assertRaises(RuntimeError):
            apply_sqlite_migrations(conn, "/nonexistent/migrations")
        conn.close()

    def test_list_before_any_migration_is_empty(self):
        conn = sqlite3.connect(":memory:")
        self.assertEqual(list_schema_migrations_sync(conn), [])
        conn.close()


if __name__ == "__main__":
    unittest.main()
