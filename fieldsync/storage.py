"""SQLite-backed key-value storage for the outbox, cache, and credentials."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)

SCHEMA = """
-- Flat key-value table: one JSON document per key
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_kv_updated ON kv_store(updated_at);
"""


class KeyValueStore:
    """Durable string key-value store.

    Values are opaque strings (the callers store JSON). Writes are committed
    immediately so state survives a process restart.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open {self.db_path}: {e}") from e

        logger.info(f"KeyValueStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""
        conn = self._ensure_connected()
        try:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {key!r}: {e}") from e
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        self.set_many({key: value})

    def set_many(self, values: dict[str, str]) -> None:
        """Store several keys in a single transaction."""
        conn = self._ensure_connected()
        now = datetime.now().isoformat()
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    [(key, value, now) for key, value in values.items()],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {', '.join(values)}: {e}") from e

    def delete(self, key: str) -> bool:
        """Delete ``key``.

        Returns:
            True if a value was removed.
        """
        conn = self._ensure_connected()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {key!r}: {e}") from e
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with ``prefix``, sorted."""
        conn = self._ensure_connected()
        try:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}") from e
        return [row["key"] for row in rows]
