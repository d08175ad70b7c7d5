"""
Durable key/value byte store contract.

CacheStore persists each namespace as a single blob through a DurableStore.
Adapters must surface failures instead of hiding them:
- QuotaExceededError when a save would exceed the medium's capacity
- StorageError for anything else
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class DurableStore(ABC):
    """Abstract interface for durable blob storage."""

    async def init(self) -> None:
        """Prepare the store for use."""

    async def close(self) -> None:
        """Release resources held by the store."""

    @abstractmethod
    async def load(self, key: str) -> bytes | None:
        """Get a blob, or None if absent."""
        ...

    @abstractmethod
    async def save(self, key: str, value: bytes) -> None:
        """Create or replace a blob."""
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a blob. Removing an absent key is not an error."""
        ...

    @abstractmethod
    async def list_keys(self, prefix: str) -> list[str]:
        """List keys starting with prefix, sorted."""
        ...

    async def __aenter__(self) -> DurableStore:
        await self.init()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
