"""SQLite storage backend."""

import asyncio
import sqlite3
import threading
from pathlib import Path

from .base import BackendKind, BaseBackend


class SQLiteBackend(BaseBackend):
    """Key/value table in a SQLite database.

    ``":memory:"`` gives a store that lives as long as the process session;
    a database file inside a synchronized folder acts as a remote-synced
    medium.
    """

    def __init__(
        self,
        db_path: Path | str,
        kind: BackendKind = BackendKind.LOCAL,
        quota_bytes: int | None = None,
    ):
        super().__init__(kind, quota_bytes)
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self.conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the connection, opening it on first use."""
        with self._lock:
            if self.conn is None:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
                self._initialize(self.conn)
            return self.conn

    def _initialize(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
        """)
        conn.commit()

    def probe(self) -> bool:
        try:
            with self._lock:
                self.connection.execute("SELECT 1").fetchone()
        except (sqlite3.Error, OSError):
            return False
        return True

    def _read_sync(self, key: str) -> bytes | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return bytes(row[0]) if row else None

    def _write_sync(self, key: str, data: bytes) -> None:
        with self._lock:
            conn = self.connection
            if self.quota_bytes is not None:
                (used,) = conn.execute(
                    "SELECT COALESCE(SUM(length(value)), 0) FROM kv WHERE key != ?",
                    (key,),
                ).fetchone()
                self._check_quota(key, len(data), used)
            with conn:
                conn.execute(
                    """
                    INSERT INTO kv (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, sqlite3.Binary(data)),
                )

    def _delete_sync(self, key: str) -> bool:
        with self._lock:
            with self.connection as conn:
                cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def _keys_sync(self) -> list[str]:
        with self._lock:
            rows = self.connection.execute("SELECT key FROM kv ORDER BY key").fetchall()
        return [row[0] for row in rows]

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read_sync, key)

    async def set(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write_sync, key, data)

    async def remove(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, key)

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys_sync)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
