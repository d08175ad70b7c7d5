"""
rlcache - namespaced, persisted key-value cache.

Entries carry a TTL and a schema version, namespaces are size bounded with
usage-aware eviction, large payloads are compressed, and storage quota errors
are recovered from by shrinking the namespace.
"""

from rlcache.cache import CacheProtocol, CacheRegistry, CacheStore
from rlcache.exceptions import (
    CacheError,
    QuotaExceededError,
    RLCacheError,
    SerializationError,
    StorageError,
    StorageFullError,
)
from rlcache.storage import DurableStore, FileStore, MemoryStore, SQLiteStore
from rlcache.types import CacheConfig, CacheEntry, CacheStats, GlobalCacheStats

__version__ = "0.1.0"

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheError",
    "CacheProtocol",
    "CacheRegistry",
    "CacheStats",
    "CacheStore",
    "DurableStore",
    "FileStore",
    "GlobalCacheStats",
    "MemoryStore",
    "QuotaExceededError",
    "RLCacheError",
    "SQLiteStore",
    "SerializationError",
    "StorageError",
    "StorageFullError",
]
