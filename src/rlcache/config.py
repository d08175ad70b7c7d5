"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates ranges and builds the CacheConfig used by CacheStore instances.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rlcache.types import (
    DEFAULT_CLEANUP_INTERVAL_MS,
    DEFAULT_COMPRESSION_THRESHOLD_BYTES,
    DEFAULT_MAX_NAMESPACE_SIZE_BYTES,
    DEFAULT_SCHEMA_VERSION,
    DEFAULT_STORAGE_PREFIX,
    DEFAULT_TTL_MS,
    CacheConfig,
)


class Settings(BaseSettings):
    """Cache settings loaded from environment variables.

    Optional:
        CACHE_BACKEND: Durable store adapter (memory, sqlite, file)
        CACHE_DIR: Directory for the sqlite database or blob files
        CACHE_QUOTA_BYTES: Simulated storage quota across all namespaces
        CACHE_STORAGE_PREFIX: Prefix of namespace blob keys
        CACHE_SCHEMA_VERSION: Current entry schema version
        CACHE_DEFAULT_TTL_MS: Default entry time-to-live
        CACHE_MAX_NAMESPACE_SIZE_BYTES: Per-namespace size bound
        CACHE_CLEANUP_INTERVAL_MS: Background cleanup period
        CACHE_COMPRESSION_ENABLED: Compress large payloads
        CACHE_COMPRESSION_THRESHOLD_BYTES: Size above which payloads compress
        CACHE_EVICTION_TARGET_RATIO: Eviction stops at this share of max size
        CACHE_QUOTA_RECOVERY_FRACTION: Share of entries dropped on quota errors
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    CACHE_BACKEND: Literal["memory", "sqlite", "file"] = Field(
        default="sqlite", description="Durable store adapter"
    )
    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache directory")
    CACHE_QUOTA_BYTES: int | None = Field(
        default=None, ge=1, description="Storage quota in bytes (unbounded if unset)"
    )
    CACHE_STORAGE_PREFIX: str = Field(
        default=DEFAULT_STORAGE_PREFIX, min_length=1, description="Namespace blob key prefix"
    )

    # Entry lifecycle
    CACHE_SCHEMA_VERSION: str = Field(
        default=DEFAULT_SCHEMA_VERSION, min_length=1, description="Entry schema version"
    )
    CACHE_DEFAULT_TTL_MS: int = Field(
        default=DEFAULT_TTL_MS, ge=1, description="Default time-to-live in ms"
    )
    CACHE_CLEANUP_INTERVAL_MS: int = Field(
        default=DEFAULT_CLEANUP_INTERVAL_MS, ge=1, description="Cleanup period in ms"
    )

    # Size bounds and compression
    CACHE_MAX_NAMESPACE_SIZE_BYTES: int = Field(
        default=DEFAULT_MAX_NAMESPACE_SIZE_BYTES,
        ge=1,
        description="Maximum total entry size per namespace",
    )
    CACHE_COMPRESSION_ENABLED: bool = Field(default=True, description="Compress large payloads")
    CACHE_COMPRESSION_THRESHOLD_BYTES: int = Field(
        default=DEFAULT_COMPRESSION_THRESHOLD_BYTES,
        ge=0,
        description="Payloads above this size are compressed",
    )
    CACHE_EVICTION_TARGET_RATIO: float = Field(
        default=0.8, description="Eviction target as a share of max size"
    )
    CACHE_QUOTA_RECOVERY_FRACTION: float = Field(
        default=0.5, description="Share of entries removed on quota recovery"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("CACHE_EVICTION_TARGET_RATIO", "CACHE_QUOTA_RECOVERY_FRACTION")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        """Ratios must lie in (0, 1]."""
        if not 0.0 < v <= 1.0:
            raise ValueError("must be greater than 0 and at most 1")
        return v

    @field_validator("CACHE_STORAGE_PREFIX")
    @classmethod
    def validate_storage_prefix(cls, v: str) -> str:
        """The prefix is joined with '-', so it must not end with one."""
        if v.endswith("-"):
            raise ValueError("CACHE_STORAGE_PREFIX must not end with '-'")
        return v

    def cache_config(self) -> CacheConfig:
        """Build the per-store CacheConfig from these settings."""
        return CacheConfig(
            default_ttl_ms=self.CACHE_DEFAULT_TTL_MS,
            max_namespace_size_bytes=self.CACHE_MAX_NAMESPACE_SIZE_BYTES,
            cleanup_interval_ms=self.CACHE_CLEANUP_INTERVAL_MS,
            schema_version=self.CACHE_SCHEMA_VERSION,
            compression_threshold_bytes=self.CACHE_COMPRESSION_THRESHOLD_BYTES,
            compression_enabled=self.CACHE_COMPRESSION_ENABLED,
            storage_prefix=self.CACHE_STORAGE_PREFIX,
            eviction_target_ratio=self.CACHE_EVICTION_TARGET_RATIO,
            quota_recovery_fraction=self.CACHE_QUOTA_RECOVERY_FRACTION,
        )

    @property
    def sqlite_path(self) -> Path:
        """Database file used by the sqlite backend."""
        return self.CACHE_DIR / "cache.db"

    @property
    def blobs_dir(self) -> Path:
        """Directory used by the file backend."""
        return self.CACHE_DIR / "blobs"

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings for display."""
        return {
            "CACHE_BACKEND": self.CACHE_BACKEND,
            "CACHE_DIR": str(self.CACHE_DIR),
            "CACHE_QUOTA_BYTES": self.CACHE_QUOTA_BYTES,
            "CACHE_STORAGE_PREFIX": self.CACHE_STORAGE_PREFIX,
            "CACHE_SCHEMA_VERSION": self.CACHE_SCHEMA_VERSION,
            "CACHE_DEFAULT_TTL_MS": self.CACHE_DEFAULT_TTL_MS,
            "CACHE_CLEANUP_INTERVAL_MS": self.CACHE_CLEANUP_INTERVAL_MS,
            "CACHE_MAX_NAMESPACE_SIZE_BYTES": self.CACHE_MAX_NAMESPACE_SIZE_BYTES,
            "CACHE_COMPRESSION_ENABLED": self.CACHE_COMPRESSION_ENABLED,
            "CACHE_COMPRESSION_THRESHOLD_BYTES": self.CACHE_COMPRESSION_THRESHOLD_BYTES,
            "CACHE_EVICTION_TARGET_RATIO": self.CACHE_EVICTION_TARGET_RATIO,
            "CACHE_QUOTA_RECOVERY_FRACTION": self.CACHE_QUOTA_RECOVERY_FRACTION,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
