"""Delivery dedupe store for webhook re-deliveries.

Platforms re-deliver the same event after slow or ambiguous responses. The
store records ``(external_event_id, workspace_id)`` on first processing and
rejects further claims inside the retention window.

Uses SQLite for persistence across restarts.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path

from src.config import DEFAULT_DEDUPE_WINDOW_SECONDS
from src.models import DeliveryDedupeRecord


class DeliveryDedupeStore:
    """SQLite-backed at-most-once claim store."""

    def __init__(
        self,
        db_path: str,
        window_seconds: int = DEFAULT_DEDUPE_WINDOW_SECONDS,
    ) -> None:
        self._db_path = db_path
        self._window_seconds = window_seconds
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def _init_schema(self) -> None:
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS delivery_dedupe (
                external_event_id TEXT NOT NULL,
                workspace_id TEXT NOT NULL,
                processed_at REAL NOT NULL,
                PRIMARY KEY (external_event_id, workspace_id)
            )"""
        )
        self._conn.commit()

    def claim(self, external_event_id: str, workspace_id: str, now: float | None = None) -> bool:
        """Return True if this delivery is new and is now recorded.

        Insert-if-absent in one statement: an existing record is only
        refreshed when it has aged out of the window, so two concurrent
        claims for the same key cannot both succeed.
        """
        now = time.time() if now is None else now
        cutoff = now - self._window_seconds
        with self._lock:
            cursor = self._conn.execute(
                """INSERT INTO delivery_dedupe (external_event_id, workspace_id, processed_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT (external_event_id, workspace_id)
                   DO UPDATE SET processed_at = excluded.processed_at
                   WHERE delivery_dedupe.processed_at < ?""",
                (external_event_id, workspace_id, now, cutoff),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def get(self, external_event_id: str, workspace_id: str) -> DeliveryDedupeRecord | None:
        with self._lock:
            row = self._conn.execute(
                """SELECT external_event_id, workspace_id, processed_at
                   FROM delivery_dedupe
                   WHERE external_event_id = ? AND workspace_id = ?""",
                (external_event_id, workspace_id),
            ).fetchone()
        if row is None:
            return None
        return DeliveryDedupeRecord(
            external_event_id=row[0], workspace_id=row[1], processed_at=row[2],
        )

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM delivery_dedupe").fetchone()
        return int(row[0])

    def purge_expired(self, now: float | None = None) -> int:
        """Delete records older than the window; returns the number removed."""
        now = time.time() if now is None else now
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM delivery_dedupe WHERE processed_at < ?",
                (now - self._window_seconds,),
            )
            self._conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
