"""
Namespaced key-value cache persisted through a DurableStore.

Each namespace is stored as one blob. Every operation loads the whole map,
mutates it and writes it back while holding the namespace lock, so concurrent
coroutines never lose each other's updates.

Features:
- TTL expiry and schema-version invalidation (purged on observation)
- Size-bounded namespaces with score-based eviction down to a target ratio
- Transparent zlib compression of large payloads
- Recovery from storage quota errors by dropping the worst-ranked entries
- Hit/miss accounting and a background cleanup task
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from rlcache.cache.base import CacheProtocol
from rlcache.cache.eviction import (
    evict_to_target,
    select_for_quota_recovery,
    total_size,
)
from rlcache.codec import SerializationCodec, decode_namespace, encode_namespace
from rlcache.exceptions import (
    ConfigurationError,
    DecompressionError,
    QuotaExceededError,
    RLCacheError,
    SerializationError,
    StorageCorruptedError,
    StorageError,
    StorageFullError,
)
from rlcache.logging import get_logger, log_context
from rlcache.storage.base import DurableStore
from rlcache.types import (
    CacheConfig,
    CacheEntry,
    CacheStats,
    Clock,
    PlainPayload,
    now_ms,
)

logger = get_logger(__name__)


class CacheStore(CacheProtocol):
    """Durable, bounded, self-cleaning cache for one namespace.

    Example:
        store = CacheStore("thumbnails", storage)
        await store.set("rec_42", {"url": "..."}, ttl_ms=60_000)
        entry = await store.get("rec_42")
    """

    def __init__(
        self,
        namespace: str,
        storage: DurableStore,
        config: CacheConfig | None = None,
        *,
        max_size_bytes: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            namespace: Name of the namespace.
            storage: Durable store holding the namespace blob.
            config: Cache configuration. Defaults to CacheConfig().
            max_size_bytes: Size bound overriding config.max_namespace_size_bytes.
            clock: Callable returning epoch milliseconds.
        """
        if not namespace:
            raise ConfigurationError("namespace must not be empty")

        self.namespace = namespace
        self.storage = storage
        self.config = config or CacheConfig()
        self.max_size_bytes = (
            max_size_bytes if max_size_bytes is not None else self.config.max_namespace_size_bytes
        )
        if self.max_size_bytes <= 0:
            raise ConfigurationError(
                "max_size_bytes must be positive",
                {"namespace": namespace, "max_size_bytes": self.max_size_bytes},
            )
        self.storage_key = self.config.storage_key(namespace)

        self._clock = clock or now_ms
        self._codec = SerializationCodec(
            compression_enabled=self.config.compression_enabled,
            compression_threshold_bytes=self.config.compression_threshold_bytes,
        )
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._cleanup_task: asyncio.Task[None] | None = None
        self._disposed = False

        self._start_cleanup()

    @property
    def lock(self) -> asyncio.Lock:
        """Lock serializing load-mutate-save sequences on this namespace."""
        return self._lock

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def hit_rate(self) -> float:
        lookups = self._hits + self._misses
        return self._hits / lookups if lookups else 0.0

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def set(self, key: str, data: Any, ttl_ms: int | None = None) -> None:
        """Store a value.

        Args:
            key: Cache key, unique within the namespace.
            data: JSON-serializable value.
            ttl_ms: Time-to-live in milliseconds. Defaults to config.default_ttl_ms.

        Raises:
            ValueError: If ttl_ms is not positive.
            SerializationError: If data cannot be serialized.
            StorageFullError: If the write still exceeds the quota after recovery.
            StorageError: For other storage failures.
        """
        ttl = self.config.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl}")

        self._start_cleanup()
        with log_context(namespace=self.namespace, operation="set"):
            try:
                payload, size = self._codec.encode(data)
            except SerializationError as e:
                e.context.update({"namespace": self.namespace, "key": key})
                raise

            async with self._lock:
                now = self._clock()
                entry = CacheEntry(
                    payload=payload,
                    created_at=now,
                    expires_at=now + ttl,
                    schema_version=self.config.schema_version,
                    size_bytes=size,
                    access_count=0,
                    last_accessed_at=now,
                )

                entries = await self._load()
                self._purge_dead(entries, now)
                entries[key] = entry
                self._evict(entries, now)
                if key not in entries:
                    logger.warning(
                        "Entry exceeds the eviction target and was dropped",
                        key=key,
                        size=size,
                        max_size_bytes=self.max_size_bytes,
                    )

                try:
                    await self._save(entries)
                except QuotaExceededError as e:
                    logger.warning("Storage quota exceeded, recovering", key=key, error=str(e))
                    await self._retry_after_recovery(key, entry, now)

            logger.debug("Cached entry", key=key, size=size, compressed=entry.compressed)

    async def get(self, key: str) -> CacheEntry | None:
        """Get a live entry, recording a hit or miss.

        Expired, version-mismatched and undecodable entries are deleted and
        reported as misses. A hit updates the entry's access statistics and
        persists them.

        Returns:
            Entry with a decoded payload, or None.
        """
        self._start_cleanup()
        with log_context(namespace=self.namespace, operation="get"):
            async with self._lock:
                now = self._clock()
                entries = await self._load()
                entry = entries.get(key)

                if entry is None:
                    self._misses += 1
                    logger.debug("Cache miss", key=key)
                    return None

                if not entry.is_live(now, self.config.schema_version):
                    del entries[key]
                    await self._save_quietly(entries)
                    self._misses += 1
                    logger.debug(
                        "Purged stale entry",
                        key=key,
                        expired=now >= entry.expires_at,
                        schema_version=entry.schema_version,
                    )
                    return None

                try:
                    value = self._codec.decode(entry.payload)
                except DecompressionError as e:
                    del entries[key]
                    await self._save_quietly(entries)
                    self._misses += 1
                    logger.warning("Dropped undecodable entry", key=key, error=str(e))
                    return None

                entry.touch(now)
                await self._save_quietly(entries)
                self._hits += 1
                logger.debug("Cache hit", key=key, access_count=entry.access_count)
                return entry.with_payload(PlainPayload(value))

    async def has(self, key: str) -> bool:
        """Whether a live entry exists. Does not count as a read."""
        self._start_cleanup()
        async with self._lock:
            now = self._clock()
            entries = await self._load()
            entry = entries.get(key)
            if entry is None:
                return False
            if not entry.is_live(now, self.config.schema_version):
                del entries[key]
                await self._save_quietly(entries)
                return False
            return True

    async def delete(self, key: str) -> None:
        """Remove one entry. Deleting an absent key is a no-op."""
        self._start_cleanup()
        with log_context(namespace=self.namespace, operation="delete"):
            async with self._lock:
                entries = await self._load()
                if entries.pop(key, None) is not None:
                    await self._save(entries)
                    logger.debug("Deleted entry", key=key)

    async def clear(self) -> None:
        """Remove the namespace blob and reset hit/miss counters."""
        self._start_cleanup()
        with log_context(namespace=self.namespace, operation="clear"):
            async with self._lock:
                await self.storage.remove(self.storage_key)
                self._hits = 0
                self._misses = 0
            logger.info("Cleared namespace")

    async def cleanup(self) -> int:
        """Remove every expired or version-mismatched entry.

        Returns:
            Number of entries removed.
        """
        with log_context(namespace=self.namespace, operation="cleanup"):
            async with self._lock:
                entries = await self._load()
                removed = self._purge_dead(entries, self._clock())
                if removed:
                    await self._save(entries)
                    logger.debug("Cleanup removed entries", removed=removed)
                return removed

    async def get_stats(self) -> CacheStats:
        """Snapshot of this namespace. Dead entries are purged first."""
        self._start_cleanup()
        async with self._lock:
            entries = await self._load()
            if self._purge_dead(entries, self._clock()):
                await self._save_quietly(entries)

            created = [entry.created_at for entry in entries.values()]
            return CacheStats(
                entries=len(entries),
                total_size_bytes=total_size(entries),
                hit_rate=self.hit_rate,
                oldest_entry_timestamp=min(created) if created else None,
                newest_entry_timestamp=max(created) if created else None,
                estimated_memory_bytes=len(encode_namespace(entries)) if entries else 0,
                hits=self._hits,
                misses=self._misses,
            )

    async def dispose(self) -> None:
        """Stop the background cleanup task. Persisted data is kept."""
        self._disposed = True
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_cleanup(self) -> None:
        """Start the cleanup task once an event loop is available."""
        if self._disposed or self._cleanup_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cleanup_task = loop.create_task(
            self._cleanup_loop(), name=f"rlcache-cleanup-{self.namespace}"
        )

    async def _cleanup_loop(self) -> None:
        interval = self.config.cleanup_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup()
            except RLCacheError as e:
                logger.warning(
                    "Background cleanup failed", namespace=self.namespace, error=str(e)
                )
            except Exception:
                logger.exception(
                    "Unexpected error in background cleanup", namespace=self.namespace
                )

    async def _load(self) -> dict[str, CacheEntry]:
        """Load the namespace map. A corrupted blob is dropped and read as empty."""
        raw = await self.storage.load(self.storage_key)
        if raw is None:
            return {}
        try:
            return decode_namespace(raw)
        except StorageCorruptedError as e:
            logger.warning(
                "Corrupted namespace blob, resetting namespace",
                namespace=self.namespace,
                error=str(e),
            )
            await self.storage.remove(self.storage_key)
            return {}

    async def _save(self, entries: dict[str, CacheEntry]) -> None:
        if entries:
            await self.storage.save(self.storage_key, encode_namespace(entries))
        else:
            await self.storage.remove(self.storage_key)

    async def _save_quietly(self, entries: dict[str, CacheEntry]) -> None:
        """Persist bookkeeping changes; failures only cost accuracy."""
        try:
            await self._save(entries)
        except StorageError as e:
            logger.warning("Failed to persist cache bookkeeping", error=str(e))

    def _purge_dead(self, entries: dict[str, CacheEntry], now: int) -> int:
        dead = [
            key
            for key, entry in entries.items()
            if not entry.is_live(now, self.config.schema_version)
        ]
        for key in dead:
            del entries[key]
        return len(dead)

    def _evict(self, entries: dict[str, CacheEntry], now: int) -> None:
        evicted = evict_to_target(
            entries, self.max_size_bytes, self.config.eviction_target_ratio, now
        )
        if evicted:
            logger.debug(
                "Evicted entries",
                removed=len(evicted),
                remaining_bytes=total_size(entries),
                max_size_bytes=self.max_size_bytes,
            )

    async def _retry_after_recovery(self, key: str, entry: CacheEntry, now: int) -> None:
        """Shrink the persisted namespace, then retry the write once."""
        entries = await self._recover_from_quota(now)
        entries[key] = entry
        self._evict(entries, now)
        try:
            await self._save(entries)
        except QuotaExceededError as e:
            raise StorageFullError(
                "Storage full after quota recovery",
                {"namespace": self.namespace, "key": key, "size_bytes": entry.size_bytes},
            ) from e

    async def _recover_from_quota(self, now: int) -> dict[str, CacheEntry]:
        """Drop the worst-ranked share of entries; clear the namespace if that fails."""
        entries = await self._load()
        self._purge_dead(entries, now)
        victims = select_for_quota_recovery(entries, self.config.quota_recovery_fraction, now)
        for victim in victims:
            del entries[victim]

        try:
            await self._save(entries)
        except QuotaExceededError as e:
            logger.warning(
                "Quota recovery could not persist, clearing namespace", error=str(e)
            )
            await self.storage.remove(self.storage_key)
            return {}

        logger.info(
            "Quota recovery removed entries", removed=len(victims), remaining=len(entries)
        )
        return entries
