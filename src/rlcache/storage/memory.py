"""
In-process durable store.

Behaves like browser localStorage: a flat map of keys to byte values with an
optional quota over the total stored size. Used by tests and the memory
backend.
"""

from __future__ import annotations

from rlcache.exceptions import QuotaExceededError
from rlcache.storage.base import DurableStore


class MemoryStore(DurableStore):
    """Dict-backed store with an optional byte quota.

    The quota counts value lengths only. A save that would push the total past
    the quota raises QuotaExceededError and leaves the previous value intact.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, bytes] = {}

    @property
    def used_bytes(self) -> int:
        return sum(len(value) for value in self._data.values())

    async def load(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def save(self, key: str, value: bytes) -> None:
        if self.quota_bytes is not None:
            projected = self.used_bytes - len(self._data.get(key, b"")) + len(value)
            if projected > self.quota_bytes:
                raise QuotaExceededError(
                    "Storage quota exceeded",
                    {"key": key, "size": len(value), "quota_bytes": self.quota_bytes},
                )
        self._data[key] = bytes(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str) -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))
