"""SQLite-backed key-value cache for on-device persistence."""

import logging
from pathlib import Path

import aiosqlite

from src.core.config import settings


logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
)
"""

MEMORY_PATH = ":memory:"


def get_db_path(db_path: str | None = None) -> str:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    if path_str == MEMORY_PATH:
        return path_str
    return str(Path(path_str).resolve())


class LocalCache:
    """Durable key-value storage holding one serialized entry per aggregate.

    Reads and writes are best-effort: failures are logged and never raised,
    so callers can always proceed with their in-memory state.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = get_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        """Open the connection and make sure the table exists."""
        if self._conn is not None:
            return

        if self._db_path != MEMORY_PATH:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(self._db_path)
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute(_SCHEMA)
        await conn.commit()
        self._conn = conn
        logger.info("Opened local cache", extra={"db_path": self._db_path})

    async def close(self) -> None:
        """Close the connection if open."""
        if self._conn is None:
            return
        try:
            await self._conn.close()
            logger.info("Closed local cache", extra={"db_path": self._db_path})
        except Exception as e:
            logger.warning("Error closing local cache", extra={"error": str(e)})
        finally:
            self._conn = None

    async def get(self, key: str) -> str | None:
        """Return the stored value for ``key``, or None when absent or unreadable."""
        if self._conn is None:
            logger.warning("Local cache read before open", extra={"key": key})
            return None
        try:
            cursor = await self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
            await cursor.close()
        except Exception as e:
            logger.error("local_cache_get_failed", extra={"key": key, "error": str(e)})
            return None

        if row is None:
            return None
        logger.debug("Local cache hit for key: %s", key)
        return row[0]

    async def set(self, key: str, value: str) -> bool:
        """Store ``value`` under ``key``, replacing the whole entry.

        Returns:
            True if the write landed, False if it failed (already logged)
        """
        if self._conn is None:
            logger.warning("Local cache write before open", extra={"key": key})
            return False
        try:
            await self._conn.execute(
                "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')",
                (key, value),
            )
            await self._conn.commit()
        except Exception as e:
            logger.error("local_cache_set_failed", extra={"key": key, "error": str(e)})
            return False

        logger.debug("Stored key: %s (%d bytes)", key, len(value))
        return True

    async def delete(self, key: str) -> bool:
        """Remove ``key`` from the cache."""
        if self._conn is None:
            return False
        try:
            await self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await self._conn.commit()
        except Exception as e:
            logger.error("local_cache_delete_failed", extra={"key": key, "error": str(e)})
            return False
        return True

    async def keys(self) -> list[str]:
        """List every stored key."""
        if self._conn is None:
            return []
        cursor = await self._conn.execute("SELECT key FROM kv_store ORDER BY key")
        rows = await cursor.fetchall()
        await cursor.close()
        return [row[0] for row in rows]
