"""
Base classes for caching.

CacheProtocol is the abstract surface of a namespaced cache. CacheStore
(kv_cache.py) is the durable implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from rlcache.types import CacheEntry, CacheStats


class CacheProtocol(ABC):
    """Abstract interface for cache implementations."""

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """Get a live entry from the cache."""
        ...

    @abstractmethod
    async def set(self, key: str, data: Any, ttl_ms: int | None = None) -> None:
        """Set a value in the cache."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a value from the cache."""
        ...

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Check if a live entry exists in the cache."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry of the cache."""
        ...

    @abstractmethod
    async def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        ...

    async def get_value(self, key: str, default: Any = None) -> Any:
        """Get the cached value, or default on a miss."""
        entry = await self.get(key)
        return entry.data if entry is not None else default
