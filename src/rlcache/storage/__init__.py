"""
Durable storage adapters for namespace blobs.

- MemoryStore (memory.py): in-process map with an optional quota
- SQLiteStore (sqlite.py): aiosqlite table of blobs
- FileStore (file.py): one file per blob with atomic replace
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rlcache.storage.base import DurableStore
from rlcache.storage.file import FileStore
from rlcache.storage.memory import MemoryStore
from rlcache.storage.sqlite import SQLiteStore

if TYPE_CHECKING:
    from rlcache.config import Settings

__all__ = ["DurableStore", "FileStore", "MemoryStore", "SQLiteStore", "create_storage"]


def create_storage(settings: Settings) -> DurableStore:
    """Build the durable store selected by CACHE_BACKEND.

    The returned store still needs ``await store.init()``.
    """
    if settings.CACHE_BACKEND == "memory":
        return MemoryStore(quota_bytes=settings.CACHE_QUOTA_BYTES)
    if settings.CACHE_BACKEND == "file":
        return FileStore(settings.blobs_dir, quota_bytes=settings.CACHE_QUOTA_BYTES)
    return SQLiteStore(settings.sqlite_path, quota_bytes=settings.CACHE_QUOTA_BYTES)
