"""
Registry of named CacheStore instances.

The registry is an explicit object handed to callers rather than a module
global, so separate registries (for example one per test) stay isolated. It
is the only place that creates and disposes CacheStore instances, which keeps
one instance, and therefore one lock, per namespace.
"""

from __future__ import annotations

from rlcache.cache.eviction import total_size
from rlcache.cache.kv_cache import CacheStore
from rlcache.codec import decode_namespace
from rlcache.exceptions import StorageCorruptedError
from rlcache.logging import get_logger
from rlcache.storage.base import DurableStore
from rlcache.types import CacheConfig, Clock, GlobalCacheStats

logger = get_logger(__name__)


class CacheRegistry:
    """Process-wide set of namespaced caches sharing one durable store.

    Example:
        registry = CacheRegistry(storage, settings.cache_config())
        folders = registry.get_instance("folder-listings")
        await folders.set("root", [...])
        await registry.dispose_all()
    """

    def __init__(
        self,
        storage: DurableStore,
        config: CacheConfig | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self.storage = storage
        self.config = config or CacheConfig()
        self._clock = clock
        self._instances: dict[str, CacheStore] = {}

    @property
    def namespaces(self) -> list[str]:
        """Names of the currently instantiated stores."""
        return sorted(self._instances)

    def get_instance(self, namespace: str, max_size_bytes: int | None = None) -> CacheStore:
        """Get the store for a namespace, creating it on first use.

        The first call fixes the store's size bound. Later calls with a
        different max_size_bytes return the existing store unchanged.
        """
        store = self._instances.get(namespace)
        if store is not None:
            if max_size_bytes is not None and max_size_bytes != store.max_size_bytes:
                logger.debug(
                    "Ignoring max_size_bytes for existing store",
                    namespace=namespace,
                    requested=max_size_bytes,
                    current=store.max_size_bytes,
                )
            return store

        store = CacheStore(
            namespace,
            self.storage,
            self.config,
            max_size_bytes=max_size_bytes,
            clock=self._clock,
        )
        self._instances[namespace] = store
        logger.debug("Created cache store", namespace=namespace, max_size_bytes=store.max_size_bytes)
        return store

    async def clear_all(self) -> None:
        """Remove every persisted namespace blob and drop all live stores.

        Blobs of namespaces never instantiated in this process are removed
        too.
        """
        keys = await self.storage.list_keys(self.config.key_prefix)
        for key in keys:
            store = self._instances.get(self.config.namespace_from_key(key))
            if store is not None:
                async with store.lock:
                    await self.storage.remove(key)
            else:
                await self.storage.remove(key)

        await self.dispose_all()
        logger.info("Cleared all caches", removed=len(keys))

    async def get_global_stats(self) -> GlobalCacheStats:
        """Aggregate statistics by scanning storage directly.

        Entry counts and sizes cover every persisted namespace. The hit rate
        is averaged over instantiated stores only, since stores never opened
        in this process have no lookups to report.
        """
        total_caches = 0
        total_entries = 0
        total_bytes = 0
        blob_bytes = 0
        corrupted = 0
        by_namespace: dict[str, int] = {}

        for key in await self.storage.list_keys(self.config.key_prefix):
            raw = await self.storage.load(key)
            if raw is None:
                continue
            total_caches += 1
            blob_bytes += len(raw)

            try:
                entries = decode_namespace(raw)
            except StorageCorruptedError as e:
                corrupted += 1
                logger.warning("Skipping corrupted namespace blob", key=key, error=str(e))
                continue

            total_entries += len(entries)
            total_bytes += total_size(entries)
            by_namespace[self.config.namespace_from_key(key)] = len(entries)

        rates = [store.hit_rate for store in self._instances.values()]

        return GlobalCacheStats(
            total_caches=total_caches,
            total_entries=total_entries,
            total_size_bytes=total_bytes,
            total_blob_bytes=blob_bytes,
            average_hit_rate=sum(rates) / len(rates) if rates else 0.0,
            corrupted_caches=corrupted,
            entries_by_namespace=by_namespace,
        )

    async def dispose(self, namespace: str) -> None:
        """Stop and drop one store without deleting its data."""
        store = self._instances.pop(namespace, None)
        if store is not None:
            await store.dispose()

    async def dispose_all(self) -> None:
        """Stop every store's cleanup task and drop all instances.

        Persisted data is kept.
        """
        stores = list(self._instances.values())
        self._instances.clear()
        for store in stores:
            await store.dispose()
