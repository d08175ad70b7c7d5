"""
Cache package.

This package provides:
- CacheProtocol (base.py): abstract cache surface
- CacheStore (kv_cache.py): durable namespaced key-value cache
- Eviction scoring (eviction.py)
- CacheRegistry (registry.py): named store instances and global stats
"""

from rlcache.cache.base import CacheProtocol
from rlcache.cache.kv_cache import CacheStore
from rlcache.cache.registry import CacheRegistry

__all__ = ["CacheProtocol", "CacheRegistry", "CacheStore"]
