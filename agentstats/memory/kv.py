"""Key/value backends for persisted statistics snapshots.

The engine only needs ``get(key) -> bytes | None`` and ``put(key, value)``.
``SQLiteKeyValueStore`` keeps one row per key in a single table. All queries
are parameterized. Connections are created per-operation with
check_same_thread=False so the background persistence thread can use them,
and the schema is auto-created on first access via CREATE TABLE IF NOT EXISTS
(idempotent).
"""

import logging
import sqlite3
import threading
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT PRIMARY KEY,
    value       BLOB NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal storage contract the persistence adapter depends on."""

    def get(self, key: str) -> bytes | None: ...

    def put(self, key: str, value: bytes) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store. Used when no database path is configured, and in tests."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode for concurrent reads.

    Args:
        db_path: Path to the database file. Pass ":memory:" for in-memory databases (tests).

    Raises:
        ValueError: If the path is empty.
    """
    if not db_path:
        msg = "Stats store not configured (STATS_DB_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the kv table if it doesn't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


class SQLiteKeyValueStore:
    """Durable key/value store on a single SQLite table.

    ``":memory:"`` databases only live as long as a connection, so for that
    path one shared connection is kept open instead of one per operation.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._shared: sqlite3.Connection | None = None
        if db_path == ":memory:":
            self._shared = get_connection(db_path)
            init_schema(self._shared)
        else:
            conn = get_connection(db_path)
            try:
                init_schema(conn)
            finally:
                conn.close()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            finally:
                self._release(conn)
        if row is None:
            return None
        return bytes(row["value"])

    def put(self, key: str, value: bytes) -> None:
        now = datetime.now(UTC).isoformat()
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                       ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                    (key, sqlite3.Binary(value), now),
                )
                conn.commit()
            finally:
                self._release(conn)

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    def _connect(self) -> sqlite3.Connection:
        if self._shared is not None:
            return self._shared
        return get_connection(self.db_path)

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn is not self._shared:
            conn.close()


def build_key_value_store(db_path: str) -> KeyValueStore:
    """SQLite-backed store when a path is configured, in-memory otherwise."""
    if db_path:
        logger.info("Using SQLite stats store at %s", db_path)
        return SQLiteKeyValueStore(db_path)
    return InMemoryKeyValueStore()
