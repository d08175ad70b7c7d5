"""
SQLite-backed durable store.

Stores each blob as a row in a single table using aiosqlite. An optional
quota caps the summed size of all values, mirroring the capacity limits of
browser storage.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite

from rlcache.exceptions import QuotaExceededError, StorageError
from rlcache.logging import get_logger
from rlcache.storage.base import DurableStore
from rlcache.types import ms_to_datetime, now_ms

logger = get_logger(__name__)


def _is_full_error(error: sqlite3.Error) -> bool:
    """SQLITE_FULL surfaces as OperationalError('database or disk is full')."""
    return isinstance(error, sqlite3.OperationalError) and "full" in str(error).lower()


class SQLiteStore(DurableStore):
    """Durable store persisting blobs to a SQLite database file."""

    def __init__(self, db_path: str | Path, quota_bytes: int | None = None) -> None:
        """Initialize SQLite store.

        Args:
            db_path: Path to the database file.
            quota_bytes: Optional cap on the total stored size.
        """
        self.db_path = Path(db_path)
        self.quota_bytes = quota_bytes
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await self._db.commit()
        logger.debug("SQLite store initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("SQLiteStore not initialized. Call init() first.")
        return self._db

    async def load(self, key: str) -> bytes | None:
        db = self._conn()
        try:
            async with db.execute("SELECT value FROM blobs WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(
                "Failed to load blob", {"key": key, "operation": "load", "error": str(e)}
            ) from e
        return bytes(row["value"]) if row else None

    async def save(self, key: str, value: bytes) -> None:
        db = self._conn()
        try:
            if self.quota_bytes is not None:
                async with db.execute(
                    "SELECT COALESCE(SUM(LENGTH(value)), 0) AS used FROM blobs WHERE key != ?",
                    (key,),
                ) as cursor:
                    row = await cursor.fetchone()
                used = row["used"] if row else 0
                if used + len(value) > self.quota_bytes:
                    raise QuotaExceededError(
                        "Storage quota exceeded",
                        {"key": key, "size": len(value), "quota_bytes": self.quota_bytes},
                    )

            await db.execute(
                """
                INSERT INTO blobs (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, ms_to_datetime(now_ms()).isoformat()),
            )
            await db.commit()
        except sqlite3.Error as e:
            await db.rollback()
            if _is_full_error(e):
                raise QuotaExceededError(
                    "Database is full", {"key": key, "size": len(value), "error": str(e)}
                ) from e
            raise StorageError(
                "Failed to save blob", {"key": key, "operation": "save", "error": str(e)}
            ) from e

    async def remove(self, key: str) -> None:
        db = self._conn()
        try:
            await db.execute("DELETE FROM blobs WHERE key = ?", (key,))
            await db.commit()
        except sqlite3.Error as e:
            raise StorageError(
                "Failed to remove blob", {"key": key, "operation": "remove", "error": str(e)}
            ) from e

    async def list_keys(self, prefix: str) -> list[str]:
        db = self._conn()
        try:
            async with db.execute(
                "SELECT key FROM blobs WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(
                "Failed to list keys",
                {"prefix": prefix, "operation": "list_keys", "error": str(e)},
            ) from e
        return [row["key"] for row in rows]
