"""SQLite persistence for platform accounts, workspaces and automation rules."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

SCHEMA_SQL = """
-- page id / IG user id / WhatsApp number / form id -> owning workspace
CREATE TABLE IF NOT EXISTS platform_accounts (
    platform_account_id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    agent_id TEXT NOT NULL DEFAULT '',
    provider TEXT NOT NULL DEFAULT '',
    credential TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_accounts_workspace ON platform_accounts(workspace_id);

CREATE TABLE IF NOT EXISTS workspaces (
    workspace_id TEXT PRIMARY KEY,
    subscription_status TEXT NOT NULL DEFAULT 'inactive'
);

-- Evaluated in created_at order; first match wins.
CREATE TABLE IF NOT EXISTS automation_rules (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    enabled INTEGER NOT NULL DEFAULT 1,
    trigger_type TEXT NOT NULL,
    trigger_keywords_json TEXT NOT NULL DEFAULT '[]',
    trigger_platforms_json TEXT NOT NULL DEFAULT '[]',
    action_type TEXT NOT NULL,
    skip_if_keyword_present_json TEXT NOT NULL DEFAULT '[]',
    action_config_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rules_agent ON automation_rules(workspace_id, agent_id);
"""


class AutomationDB:
    """Thread-safe wrapper around one SQLite connection in WAL mode.

    Statements outside ``transaction()`` commit immediately. Rows come back
    as plain dicts.
    """

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._in_transaction = False
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            db_path, check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("AutomationDB is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes so they all commit or all roll back."""
        with self._lock:
            conn = self._connection()
            self._in_transaction = True
            try:
                yield
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()
            finally:
                self._in_transaction = False

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            conn = self._connection()
            cursor = conn.execute(sql, params)
            if not self._in_transaction:
                conn.commit()
            return cursor

    def fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        with self._lock:
            row = self._connection().execute(sql, params).fetchone()
        return dict(row) if row is not None else None

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._connection().execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> AutomationDB:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()
