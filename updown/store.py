"""Embedded state store.

One SQLite file (WAL) holding JSON documents by key. ``update()`` runs the
read-modify-write inside a single ``BEGIN IMMEDIATE`` transaction under a
process lock, so two markets qualifying in the same cycle cannot lose each
other's daily-state or news-gate updates.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable

log = logging.getLogger(__name__)

# Well-known keys
DAILY_STATE = "daily_state"
NEWS_STATE = "news_state"
ACTIVE_TRADES = "active_trades"
PRICE_HISTORY = "price_history"
ODDS_HISTORY = "odds_history"
SESSION_DATA = "session_data"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateStore:
    """Thread-safe SQLite key/value store for cross-cycle state."""

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=10, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._lock:
            conn = self.connect()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
            finally:
                conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            conn = self.connect()
            try:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            log.warning("Corrupt value for %s, using default", key)
            return default

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            conn = self.connect()
            try:
                self._write(conn, key, value)
            finally:
                conn.close()

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically apply ``fn`` to the stored value and persist its result.

        ``fn`` receives the current value (or ``default``) and returns the new
        value. If ``fn`` raises, nothing is written.
        """
        with self._lock:
            conn = self.connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
                    current = json.loads(row["value"]) if row is not None else default
                    new = fn(current)
                    self._write(conn, key, new)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
            finally:
                conn.close()
        return new

    @staticmethod
    def _write(conn: sqlite3.Connection, key: str, value: Any) -> None:
        conn.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, json.dumps(value), _now_iso()),
        )
