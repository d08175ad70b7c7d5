"""
Pytest configuration and fixtures for cache tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import patch

import pytest

from fakes import FakeClock
from rlcache.cache.kv_cache import CacheStore
from rlcache.config import Settings, clear_settings_cache
from rlcache.storage.memory import MemoryStore
from rlcache.types import CacheConfig


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide cache environment variables for testing."""
    env_vars = {
        "CACHE_BACKEND": "memory",
        "CACHE_DIR": ".test_cache",
        "CACHE_SCHEMA_VERSION": "2.0",
        "CACHE_DEFAULT_TTL_MS": "60000",
        "CACHE_MAX_NAMESPACE_SIZE_BYTES": "4096",
        "CACHE_CLEANUP_INTERVAL_MS": "30000",
        "CACHE_COMPRESSION_THRESHOLD_BYTES": "512",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str], temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide a Settings instance rooted in temp_dir."""
    with patch.dict(os.environ, {"CACHE_DIR": str(temp_dir / "cache")}):
        clear_settings_cache()
        from rlcache.config import get_settings

        settings = get_settings()
        settings.ensure_directories()
        yield settings
        clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def memory_storage() -> MemoryStore:
    """Provide an empty, unbounded in-memory store."""
    return MemoryStore()


@pytest.fixture
def cache_config() -> CacheConfig:
    """Small, deterministic configuration for CacheStore tests."""
    return CacheConfig(
        default_ttl_ms=60_000,
        max_namespace_size_bytes=1000,
        cleanup_interval_ms=3_600_000,
        schema_version="1.0",
    )


@pytest.fixture
async def store(
    memory_storage: MemoryStore, cache_config: CacheConfig, clock: FakeClock
) -> AsyncGenerator[CacheStore, None]:
    """Provide a CacheStore over memory storage with a fake clock."""
    cache = CacheStore("test", memory_storage, cache_config, clock=clock)
    yield cache
    await cache.dispose()
