"""
Tests for CacheStore.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from fakes import BrokenStore, FakeClock, FlakyStore, YieldingStore
from rlcache.cache.kv_cache import CacheStore
from rlcache.codec import decode_namespace, encode_namespace
from rlcache.exceptions import SerializationError, StorageFullError
from rlcache.storage.memory import MemoryStore
from rlcache.types import CacheConfig, CacheEntry, CompressedPayload, PlainPayload


def value_of_size(size: int, fill: str = "x") -> str:
    """A string whose JSON encoding is exactly size bytes."""
    return fill * (size - 2)


class TestCacheStoreRoundTrip:
    """Test set/get basics."""

    @pytest.mark.asyncio
    async def test_set_then_get_returns_data(self, store: CacheStore) -> None:
        """Test that a value read back immediately is unchanged."""
        data = {"id": "rec_1", "tags": ["demo", "onboarding"], "duration": 12.5, "public": True}

        await store.set("rec_1", data, ttl_ms=5000)
        entry = await store.get("rec_1")

        assert entry is not None
        assert entry.data == data
        assert entry.compressed is False

    @pytest.mark.asyncio
    async def test_entry_metadata(self, store: CacheStore, clock: FakeClock) -> None:
        """Test timestamps, version and size on a fresh entry."""
        created = clock.now
        await store.set("k", "hello", ttl_ms=1000)

        clock.advance(10)
        entry = await store.get("k")

        assert entry is not None
        assert entry.created_at == created
        assert entry.expires_at == created + 1000
        assert entry.schema_version == "1.0"
        assert entry.size_bytes == len(b'"hello"')
        assert entry.access_count == 1
        assert entry.last_accessed_at == created + 10

    @pytest.mark.asyncio
    async def test_default_ttl_applied(self, store: CacheStore, clock: FakeClock) -> None:
        """Test that set() without ttl uses the configured default."""
        await store.set("k", 1)
        entry = await store.get("k")

        assert entry is not None
        assert entry.expires_at - entry.created_at == 60_000

    @pytest.mark.asyncio
    async def test_non_positive_ttl_rejected(self, store: CacheStore) -> None:
        """Test that ttl_ms must be positive."""
        with pytest.raises(ValueError):
            await store.set("k", 1, ttl_ms=0)
        with pytest.raises(ValueError):
            await store.set("k", 1, ttl_ms=-5)

    @pytest.mark.asyncio
    async def test_overwrite_replaces_entry(self, store: CacheStore) -> None:
        """Test that setting an existing key replaces it and resets access stats."""
        await store.set("k", "old")
        await store.get("k")
        await store.set("k", "new")

        entry = await store.get("k")
        assert entry is not None
        assert entry.data == "new"
        assert entry.access_count == 1

    @pytest.mark.asyncio
    async def test_get_value_helper(self, store: CacheStore) -> None:
        """Test get_value returns data or the default."""
        await store.set("k", [1, 2, 3])

        assert await store.get_value("k") == [1, 2, 3]
        assert await store.get_value("missing", default="fallback") == "fallback"


class TestCacheStoreExpiry:
    """Test TTL and schema-version invalidation."""

    @pytest.mark.asyncio
    async def test_expired_entry_is_miss(self, store: CacheStore, clock: FakeClock) -> None:
        """Test that an entry is gone once its TTL has passed."""
        await store.set("k", "v", ttl_ms=1)
        clock.advance(2)

        assert await store.get("k") is None
        stats = await store.get_stats()
        assert stats.entries == 0
        assert stats.misses == 1

    @pytest.mark.asyncio
    async def test_expiry_boundary(self, store: CacheStore, clock: FakeClock) -> None:
        """Test that an entry expires exactly at expires_at."""
        await store.set("k", "v", ttl_ms=100)

        clock.advance(99)
        assert await store.get("k") is not None

        clock.advance(1)
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_expiry_with_wall_clock(self, memory_storage: MemoryStore) -> None:
        """Test expiry using the real clock."""
        cache = CacheStore("wall", memory_storage)
        try:
            await cache.set("k", "v", ttl_ms=1)
            await asyncio.sleep(0.02)

            assert await cache.get("k") is None
            assert (await cache.get_stats()).entries == 0
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_version_change_invalidates(
        self, memory_storage: MemoryStore, clock: FakeClock
    ) -> None:
        """Test that entries written under v1 are absent when reopened as v2."""
        v1 = CacheStore("ns", memory_storage, CacheConfig(schema_version="v1"), clock=clock)
        await v1.set("k", "v")
        await v1.dispose()

        v2 = CacheStore("ns", memory_storage, CacheConfig(schema_version="v2"), clock=clock)
        try:
            assert await v2.get("k") is None
            assert await memory_storage.load(v2.storage_key) is None
        finally:
            await v2.dispose()

    @pytest.mark.asyncio
    async def test_has_does_not_count_lookups(self, store: CacheStore, clock: FakeClock) -> None:
        """Test that has() reports liveness without touching stats."""
        await store.set("k", "v", ttl_ms=10)

        assert await store.has("k") is True
        assert await store.has("missing") is False

        clock.advance(10)
        assert await store.has("k") is False

        stats = await store.get_stats()
        assert stats.hits == 0
        assert stats.misses == 0


class TestCacheStoreAccounting:
    """Test hit/miss counters and access statistics."""

    @pytest.mark.asyncio
    async def test_hit_rate(self, store: CacheStore) -> None:
        """Test hit_rate == hits / (hits + misses)."""
        await store.set("a", 1)
        await store.set("b", 2)

        for key in ("a", "b", "a"):
            assert await store.get(key) is not None
        for key in ("x", "y"):
            assert await store.get(key) is None

        stats = await store.get_stats()
        assert stats.hits == 3
        assert stats.misses == 2
        assert stats.hit_rate == pytest.approx(3 / 5)

    @pytest.mark.asyncio
    async def test_hit_rate_without_lookups(self, store: CacheStore) -> None:
        """Test that an untouched store reports a zero hit rate."""
        assert (await store.get_stats()).hit_rate == 0.0

    @pytest.mark.asyncio
    async def test_clear_resets_counters(self, store: CacheStore) -> None:
        """Test that clear() drops entries and hit/miss counters."""
        await store.set("a", 1)
        await store.get("a")
        await store.get("missing")

        await store.clear()

        stats = await store.get_stats()
        assert stats.entries == 0
        assert stats.hits == 0
        assert stats.misses == 0

    @pytest.mark.asyncio
    async def test_access_stats_persist_across_instances(
        self, memory_storage: MemoryStore, cache_config: CacheConfig, clock: FakeClock
    ) -> None:
        """Test that access counts survive reopening the namespace."""
        first = CacheStore("ns", memory_storage, cache_config, clock=clock)
        await first.set("k", "v")
        await first.get("k")
        await first.get("k")
        await first.dispose()

        second = CacheStore("ns", memory_storage, cache_config, clock=clock)
        try:
            entry = await second.get("k")
            assert entry is not None
            assert entry.access_count == 3
        finally:
            await second.dispose()

    @pytest.mark.asyncio
    async def test_stats_timestamps_and_sizes(self, store: CacheStore, clock: FakeClock) -> None:
        """Test oldest/newest timestamps and size totals."""
        first = clock.now
        await store.set("a", value_of_size(100))
        last = clock.advance(500)
        await store.set("b", value_of_size(50))

        stats = await store.get_stats()
        assert stats.entries == 2
        assert stats.total_size_bytes == 150
        assert stats.oldest_entry_timestamp == first
        assert stats.newest_entry_timestamp == last
        assert stats.estimated_memory_bytes > stats.total_size_bytes

    @pytest.mark.asyncio
    async def test_empty_stats(self, store: CacheStore) -> None:
        """Test stats of an empty namespace."""
        stats = await store.get_stats()
        assert stats.entries == 0
        assert stats.total_size_bytes == 0
        assert stats.oldest_entry_timestamp is None
        assert stats.newest_entry_timestamp is None
        assert stats.estimated_memory_bytes == 0


class TestCacheStoreEviction:
    """Test size-bounded eviction."""

    @pytest.mark.asyncio
    async def test_total_size_stays_within_bound(self, store: CacheStore, clock: FakeClock) -> None:
        """Test that inserting past max size keeps the namespace within it."""
        for i in range(15):
            clock.advance(100)
            await store.set(f"k{i}", value_of_size(100))
            stats = await store.get_stats()
            assert stats.total_size_bytes <= store.max_size_bytes

    @pytest.mark.asyncio
    async def test_eviction_leaves_headroom(self, store: CacheStore, clock: FakeClock) -> None:
        """Test that eviction shrinks to the 80% target, not just under max."""
        for i in range(10):
            clock.advance(100)
            await store.set(f"k{i}", value_of_size(100))
        assert (await store.get_stats()).total_size_bytes == 1000

        clock.advance(100)
        await store.set("k10", value_of_size(100))

        stats = await store.get_stats()
        assert stats.total_size_bytes == 800
        assert await store.has("k0") is False
        assert await store.has("k10") is True

    @pytest.mark.asyncio
    async def test_less_recently_used_evicted_first(
        self, memory_storage: MemoryStore, clock: FakeClock
    ) -> None:
        """Test that of two equal entries the one never read goes first."""
        cache = CacheStore(
            "lru", memory_storage, CacheConfig(max_namespace_size_bytes=300), clock=clock
        )
        try:
            await cache.set("idle", value_of_size(100))
            await cache.set("recent", value_of_size(100))

            clock.advance(1000)
            assert await cache.get("recent") is not None

            clock.advance(1000)
            await cache.set("new", value_of_size(120))

            assert await cache.has("idle") is False
            assert await cache.has("recent") is True
            assert await cache.has("new") is True
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_max_size_override(self, memory_storage: MemoryStore, clock: FakeClock) -> None:
        """Test that max_size_bytes overrides the configured bound."""
        cache = CacheStore("small", memory_storage, max_size_bytes=250, clock=clock)
        try:
            for i in range(5):
                clock.advance(10)
                await cache.set(f"k{i}", value_of_size(100))

            stats = await cache.get_stats()
            assert stats.total_size_bytes <= 250
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_expired_entries_purged_before_eviction(
        self, store: CacheStore, memory_storage: MemoryStore, clock: FakeClock
    ) -> None:
        """Test that a dead entry is dropped instead of evicting live data."""
        await store.set("a", value_of_size(400))
        clock.advance(1000)
        await store.set("short", value_of_size(400), ttl_ms=5)
        clock.advance(10)

        await store.set("b", value_of_size(400))

        persisted = decode_namespace(await memory_storage.load(store.storage_key))
        assert sorted(persisted) == ["a", "b"]
        assert await store.has("a") is True
        assert (await store.get_stats()).total_size_bytes == 800

    @pytest.mark.asyncio
    async def test_oversized_entry_dropped_with_warning(
        self, store: CacheStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that an entry above the eviction target is dropped visibly."""
        package_logger = logging.getLogger("rlcache")
        package_logger.addHandler(caplog.handler)
        try:
            await store.set("huge", value_of_size(1200))
        finally:
            package_logger.removeHandler(caplog.handler)

        assert await store.has("huge") is False
        assert any(
            record.levelno == logging.WARNING and "dropped" in record.getMessage()
            for record in caplog.records
        )


class TestCacheStoreCompression:
    """Test transparent compression."""

    @pytest.mark.asyncio
    async def test_large_payload_compressed_transparently(
        self, store: CacheStore, memory_storage: MemoryStore
    ) -> None:
        """Test that a large compressible payload is stored compressed."""
        data = {"listing": [{"name": f"folder-{i % 7}", "kind": "folder"} for i in range(400)]}

        await store.set("big", data)

        persisted = decode_namespace(await memory_storage.load(store.storage_key))
        assert persisted["big"].compressed is True
        assert persisted["big"].size_bytes < 10 * 1024

        entry = await store.get("big")
        assert entry is not None
        assert entry.data == data
        assert entry.compressed is True
        assert entry.size_bytes == persisted["big"].size_bytes

    @pytest.mark.asyncio
    async def test_compression_disabled(self, memory_storage: MemoryStore, clock: FakeClock) -> None:
        """Test that disabling compression stores payloads as-is."""
        cache = CacheStore(
            "plain",
            memory_storage,
            CacheConfig(compression_enabled=False, max_namespace_size_bytes=100_000),
            clock=clock,
        )
        try:
            await cache.set("big", "a" * 20_000)
            persisted = decode_namespace(await memory_storage.load(cache.storage_key))
            assert persisted["big"].compressed is False
            assert persisted["big"].size_bytes == 20_002
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_corrupt_compressed_entry_is_miss(
        self, store: CacheStore, memory_storage: MemoryStore, clock: FakeClock
    ) -> None:
        """Test that an undecodable entry is deleted and reported as a miss."""
        now = clock.now
        entries = {
            "bad": CacheEntry(
                payload=CompressedPayload(b"definitely not zlib"),
                created_at=now,
                expires_at=now + 60_000,
                schema_version="1.0",
                size_bytes=19,
                last_accessed_at=now,
            ),
            "good": CacheEntry(
                payload=PlainPayload("ok"),
                created_at=now,
                expires_at=now + 60_000,
                schema_version="1.0",
                size_bytes=4,
                last_accessed_at=now,
            ),
        }
        await memory_storage.save(store.storage_key, encode_namespace(entries))

        assert await store.get("bad") is None
        assert await store.has("bad") is False
        good = await store.get("good")
        assert good is not None and good.data == "ok"

        stats = await store.get_stats()
        assert stats.misses == 1
        assert stats.hits == 1


class TestCacheStoreErrors:
    """Test error handling and degradation."""

    @pytest.mark.asyncio
    async def test_serialization_failure_keeps_existing_data(self, store: CacheStore) -> None:
        """Test that an unserializable value fails without touching stored data."""
        await store.set("k", {"ok": 1})

        with pytest.raises(SerializationError) as exc_info:
            await store.set("k", object())

        assert exc_info.value.context["key"] == "k"
        entry = await store.get("k")
        assert entry is not None
        assert entry.data == {"ok": 1}

    @pytest.mark.asyncio
    async def test_corrupted_blob_treated_as_empty(
        self, memory_storage: MemoryStore, cache_config: CacheConfig, clock: FakeClock
    ) -> None:
        """Test that a malformed blob empties only its own namespace."""
        healthy = CacheStore("healthy", memory_storage, cache_config, clock=clock)
        broken = CacheStore("broken", memory_storage, cache_config, clock=clock)
        try:
            await healthy.set("k", "fine")
            await memory_storage.save(broken.storage_key, b"{not json")

            assert await broken.get("k") is None
            assert await memory_storage.load(broken.storage_key) is None

            await broken.set("k", "fresh")
            fresh = await broken.get("k")
            assert fresh is not None and fresh.data == "fresh"

            entry = await healthy.get("k")
            assert entry is not None
            assert entry.data == "fine"
        finally:
            await healthy.dispose()
            await broken.dispose()

    @pytest.mark.asyncio
    async def test_malformed_entry_corrupts_namespace(
        self, store: CacheStore, memory_storage: MemoryStore
    ) -> None:
        """Test that a blob with a malformed entry is dropped as a whole."""
        await memory_storage.save(store.storage_key, b'{"k": {"data": 1}}')

        assert (await store.get_stats()).entries == 0
        assert await memory_storage.load(store.storage_key) is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store: CacheStore) -> None:
        """Test deleting present and absent keys."""
        await store.set("k", "v")

        await store.delete("k")
        await store.delete("k")
        await store.delete("never-set")

        assert await store.get("k") is None


class TestCacheStoreQuotaRecovery:
    """Test recovery from storage quota errors."""

    async def _seed(self, cache: CacheStore, clock: FakeClock, count: int) -> None:
        for i in range(count):
            clock.advance(10)
            await cache.set(f"k{i}", value_of_size(50))

    @pytest.mark.asyncio
    async def test_recovery_drops_half_and_retries(
        self, cache_config: CacheConfig, clock: FakeClock
    ) -> None:
        """Test that a quota error removes half the entries and the write lands."""
        storage = FlakyStore()
        cache = CacheStore("quota", storage, cache_config, clock=clock)
        try:
            await self._seed(cache, clock, 10)

            storage.fail_saves = 1
            clock.advance(10)
            await cache.set("new", "payload")

            stats = await cache.get_stats()
            assert stats.entries == 6
            assert await cache.has("new") is True
            # Oldest idle entries rank highest
            for i in range(5):
                assert await cache.has(f"k{i}") is False
            for i in range(5, 10):
                assert await cache.has(f"k{i}") is True
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_recovery_with_real_quota(self, cache_config: CacheConfig, clock: FakeClock) -> None:
        """Test recovery against a store that enforces a byte quota."""
        storage = MemoryStore()
        cache = CacheStore("quota", storage, cache_config, clock=clock)
        try:
            await self._seed(cache, clock, 10)
            storage.quota_bytes = storage.used_bytes + 20

            clock.advance(10)
            await cache.set("new", value_of_size(50))

            stats = await cache.get_stats()
            assert 0 < stats.entries < 10
            entry = await cache.get("new")
            assert entry is not None
            assert storage.used_bytes <= storage.quota_bytes
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_degraded_clear_keeps_new_entry(
        self, cache_config: CacheConfig, clock: FakeClock
    ) -> None:
        """Test that a failed recovery clears the namespace and retries with the new entry."""
        storage = FlakyStore()
        cache = CacheStore("quota", storage, cache_config, clock=clock)
        try:
            await self._seed(cache, clock, 4)

            storage.fail_saves = 2
            await cache.set("new", "payload")

            stats = await cache.get_stats()
            assert stats.entries == 1
            assert await cache.has("new") is True
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_storage_full_when_retry_fails(
        self, cache_config: CacheConfig, clock: FakeClock
    ) -> None:
        """Test that an unrecoverable quota error raises StorageFullError."""
        storage = FlakyStore()
        cache = CacheStore("quota", storage, cache_config, clock=clock)
        try:
            await self._seed(cache, clock, 4)

            storage.fail_saves = 3
            with pytest.raises(StorageFullError) as exc_info:
                await cache.set("new", "payload")

            assert exc_info.value.context["key"] == "new"
            assert await storage.load(cache.storage_key) is None
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_recovery_purges_dead_entries_first(
        self, cache_config: CacheConfig, clock: FakeClock
    ) -> None:
        """Test that expired entries do not use up the recovery budget."""
        storage = FlakyStore()
        cache = CacheStore("quota", storage, cache_config, clock=clock)
        now = clock.now
        entries = {
            f"k{i}": CacheEntry(
                payload=PlainPayload("v"),
                created_at=now - 40 + i * 10,
                expires_at=now + 60_000,
                schema_version="1.0",
                size_bytes=50,
            )
            for i in range(4)
        }
        for name in ("dead0", "dead1"):
            entries[name] = CacheEntry(
                payload=PlainPayload("v"),
                created_at=now - 100,
                expires_at=now - 50,
                schema_version="1.0",
                size_bytes=50,
                last_accessed_at=now - 1,
            )
        await storage.save(cache.storage_key, encode_namespace(entries))
        try:
            storage.fail_saves = 1
            await cache.set("new", "payload")

            persisted = decode_namespace(await storage.load(cache.storage_key))
            assert sorted(persisted) == ["k2", "k3", "new"]
        finally:
            await cache.dispose()


class TestCacheStoreConcurrency:
    """Test per-namespace serialization of read-modify-write sequences."""

    @pytest.mark.asyncio
    async def test_concurrent_sets_lose_nothing(self, cache_config: CacheConfig) -> None:
        """Test that interleaved writers all land."""
        storage = YieldingStore()
        cache = CacheStore("busy", storage, cache_config)
        try:
            await asyncio.gather(*(cache.set(f"k{i}", i) for i in range(25)))

            stats = await cache.get_stats()
            assert stats.entries == 25
        finally:
            await cache.dispose()

    @pytest.mark.asyncio
    async def test_concurrent_reads_count_every_access(self, cache_config: CacheConfig) -> None:
        """Test that concurrent hits all update the access count."""
        storage = YieldingStore()
        cache = CacheStore("busy", storage, cache_config)
        try:
            await cache.set("k", "v")
            results = await asyncio.gather(*(cache.get("k") for _ in range(10)))

            assert all(result is not None for result in results)
            persisted = decode_namespace(await storage.load(cache.storage_key))
            assert persisted["k"].access_count == 10
        finally:
            await cache.dispose()


class TestCacheStoreCleanup:
    """Test explicit and background cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_removes_dead_entries(self, store: CacheStore, clock: FakeClock) -> None:
        """Test that cleanup purges expired entries it was never asked about."""
        await store.set("short", "v", ttl_ms=10)
        await store.set("long", "v", ttl_ms=10_000)
        clock.advance(20)

        removed = await store.cleanup()

        assert removed == 1
        assert await store.has("long") is True
        assert await store.cleanup() == 0

    @pytest.mark.asyncio
    async def test_background_cleanup_runs(self, memory_storage: MemoryStore, clock: FakeClock) -> None:
        """Test that the periodic task purges write-only keys."""
        cache = CacheStore(
            "bg", memory_storage, CacheConfig(cleanup_interval_ms=10), clock=clock
        )
        try:
            assert cache.cleanup_running is True
            await cache.set("k", "v", ttl_ms=5)
            clock.advance(10)

            for _ in range(50):
                if await memory_storage.load(cache.storage_key) is None:
                    break
                await asyncio.sleep(0.01)

            assert await memory_storage.load(cache.storage_key) is None
        finally:
            await cache.dispose()

        assert cache.cleanup_running is False

    @pytest.mark.asyncio
    async def test_background_cleanup_survives_unexpected_errors(self, clock: FakeClock) -> None:
        """Test that a non-cache exception is logged and the task keeps running."""
        storage = BrokenStore()
        cache = CacheStore("bg", storage, CacheConfig(cleanup_interval_ms=10), clock=clock)
        storage.broken = True
        try:
            for _ in range(100):
                if storage.load_calls >= 2:
                    break
                await asyncio.sleep(0.01)

            assert storage.load_calls >= 2
            assert cache.cleanup_running is True
        finally:
            await cache.dispose()

        assert cache.cleanup_running is False

    def test_cleanup_starts_lazily_without_loop(
        self, memory_storage: MemoryStore, clock: FakeClock
    ) -> None:
        """Test that a store built outside an event loop starts cleanup on first use."""
        cache = CacheStore("lazy", memory_storage, clock=clock)
        assert cache.cleanup_running is False

        async def use() -> bool:
            await cache.set("k", "v")
            running = cache.cleanup_running
            await cache.dispose()
            return running

        assert asyncio.run(use()) is True
