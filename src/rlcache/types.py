"""
Core types for the cache subsystem.

This module defines the data structures shared across the package:
- Payload union (PlainPayload / CompressedPayload) for stored values
- CacheEntry, the mutable per-key record with access statistics
- CacheConfig, the frozen per-store configuration
- CacheStats and GlobalCacheStats snapshots
- Helper functions for epoch-millisecond timestamps
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Union

from rlcache.exceptions import ConfigurationError

Clock = Callable[[], int]

DEFAULT_STORAGE_PREFIX = "recordlane-cache"
DEFAULT_SCHEMA_VERSION = "1.0"
DEFAULT_TTL_MS = 7 * 24 * 60 * 60 * 1000
DEFAULT_CLEANUP_INTERVAL_MS = 60 * 60 * 1000
DEFAULT_MAX_NAMESPACE_SIZE_BYTES = 1024 * 1024
DEFAULT_COMPRESSION_THRESHOLD_BYTES = 10 * 1024


def now_ms() -> int:
    """Get current wall-clock time as epoch milliseconds."""
    return time.time_ns() // 1_000_000


def ms_to_datetime(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class PlainPayload:
    """A decoded value stored inline as JSON."""

    value: Any


@dataclass(frozen=True)
class CompressedPayload:
    """zlib-compressed JSON bytes of a value."""

    blob: bytes


Payload = Union[PlainPayload, CompressedPayload]


@dataclass
class CacheEntry:
    """One stored item of a namespace.

    Timestamps are epoch milliseconds. size_bytes is the exact length of the
    serialized payload (after compression when compressed) and is used for
    both size accounting and eviction scoring.
    """

    payload: Payload
    created_at: int
    expires_at: int
    schema_version: str
    size_bytes: int
    access_count: int = 0
    last_accessed_at: int = 0
    stored_compressed: bool = False

    def __post_init__(self) -> None:
        if self.expires_at < self.created_at:
            raise ValueError("expires_at must not precede created_at")
        if not self.last_accessed_at:
            self.last_accessed_at = self.created_at

    @property
    def compressed(self) -> bool:
        """Whether the value is stored compressed, also after get() decoded it."""
        return self.stored_compressed or isinstance(self.payload, CompressedPayload)

    @property
    def data(self) -> Any:
        """Decoded value. Only available on entries returned by CacheStore.get()."""
        if isinstance(self.payload, PlainPayload):
            return self.payload.value
        raise ValueError("Compressed payload must be decoded by the codec first")

    def is_live(self, now: int, schema_version: str) -> bool:
        """Whether the entry is visible: current schema version and not expired."""
        return self.schema_version == schema_version and now < self.expires_at

    def touch(self, now: int) -> None:
        """Record a successful read."""
        self.access_count += 1
        self.last_accessed_at = now

    def with_payload(self, payload: Payload) -> CacheEntry:
        """Copy of this entry carrying a different payload.

        The copy remembers whether the original was stored compressed.
        """
        return replace(self, payload=payload, stored_compressed=self.compressed)


@dataclass(frozen=True)
class CacheConfig:
    """Per-store cache configuration.

    Attributes:
        default_ttl_ms: TTL applied when set() gets no explicit ttl.
        max_namespace_size_bytes: Size bound that triggers eviction.
        cleanup_interval_ms: Period of the background cleanup task.
        schema_version: Entries with another version are treated as absent.
        compression_threshold_bytes: Payloads larger than this get compressed.
        compression_enabled: Master switch for compression.
        storage_prefix: Prefix of namespace blob keys.
        eviction_target_ratio: Eviction stops at this fraction of max size.
        quota_recovery_fraction: Share of entries dropped on quota recovery.
    """

    default_ttl_ms: int = DEFAULT_TTL_MS
    max_namespace_size_bytes: int = DEFAULT_MAX_NAMESPACE_SIZE_BYTES
    cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS
    schema_version: str = DEFAULT_SCHEMA_VERSION
    compression_threshold_bytes: int = DEFAULT_COMPRESSION_THRESHOLD_BYTES
    compression_enabled: bool = True
    storage_prefix: str = DEFAULT_STORAGE_PREFIX
    eviction_target_ratio: float = 0.8
    quota_recovery_fraction: float = 0.5

    def __post_init__(self) -> None:
        if self.default_ttl_ms <= 0:
            raise ConfigurationError(
                "default_ttl_ms must be positive", {"default_ttl_ms": self.default_ttl_ms}
            )
        if self.max_namespace_size_bytes <= 0:
            raise ConfigurationError(
                "max_namespace_size_bytes must be positive",
                {"max_namespace_size_bytes": self.max_namespace_size_bytes},
            )
        if self.cleanup_interval_ms <= 0:
            raise ConfigurationError(
                "cleanup_interval_ms must be positive",
                {"cleanup_interval_ms": self.cleanup_interval_ms},
            )
        if self.compression_threshold_bytes < 0:
            raise ConfigurationError(
                "compression_threshold_bytes must not be negative",
                {"compression_threshold_bytes": self.compression_threshold_bytes},
            )
        if not self.storage_prefix:
            raise ConfigurationError("storage_prefix must not be empty")
        if not 0.0 < self.eviction_target_ratio <= 1.0:
            raise ConfigurationError(
                "eviction_target_ratio must be in (0, 1]",
                {"eviction_target_ratio": self.eviction_target_ratio},
            )
        if not 0.0 < self.quota_recovery_fraction <= 1.0:
            raise ConfigurationError(
                "quota_recovery_fraction must be in (0, 1]",
                {"quota_recovery_fraction": self.quota_recovery_fraction},
            )

    def storage_key(self, namespace: str) -> str:
        """Storage key of a namespace blob."""
        return f"{self.storage_prefix}-{namespace}"

    @property
    def key_prefix(self) -> str:
        """Prefix shared by all namespace blob keys."""
        return f"{self.storage_prefix}-"

    def namespace_from_key(self, storage_key: str) -> str:
        """Inverse of storage_key()."""
        return storage_key[len(self.key_prefix):]


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of one namespace."""

    entries: int
    total_size_bytes: int
    hit_rate: float
    oldest_entry_timestamp: int | None
    newest_entry_timestamp: int | None
    estimated_memory_bytes: int
    hits: int = 0
    misses: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": self.entries,
            "total_size_bytes": self.total_size_bytes,
            "hit_rate": self.hit_rate,
            "oldest_entry_timestamp": self.oldest_entry_timestamp,
            "newest_entry_timestamp": self.newest_entry_timestamp,
            "estimated_memory_bytes": self.estimated_memory_bytes,
            "hits": self.hits,
            "misses": self.misses,
        }


@dataclass(frozen=True)
class GlobalCacheStats:
    """Aggregate over every persisted namespace blob."""

    total_caches: int
    total_entries: int
    total_size_bytes: int
    total_blob_bytes: int
    average_hit_rate: float
    corrupted_caches: int = 0
    entries_by_namespace: dict[str, int] = field(default_factory=dict)
