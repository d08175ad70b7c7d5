"""
Custom exception hierarchy for the cache subsystem.

All exceptions inherit from RLCacheError, which provides optional context
for structured error handling and logging.

Only systemic storage failures reach callers of the cache. Expiry, version
skew and decode failures are resolved inside CacheStore and surface as misses.
"""

from __future__ import annotations

from typing import Any


class RLCacheError(Exception):
    """Base exception for all cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(RLCacheError):
    """Raised when cache configuration is invalid.

    Examples:
        - Eviction target ratio outside (0, 1]
        - Negative size limits or intervals
    """

    pass


class CacheError(RLCacheError):
    """Raised by CacheStore operations that cannot be resolved locally."""

    pass


class SerializationError(CacheError):
    """Raised when a value cannot be serialized for storage.

    Context should include:
        - namespace: The cache namespace
        - key: The cache key being written
        - type: The Python type of the rejected value
    """

    pass


class StorageFullError(CacheError):
    """Raised when a write still exceeds the storage quota after recovery.

    Callers may treat this as "skip caching for this write".

    Context should include:
        - namespace: The cache namespace
        - key: The cache key being written
        - size_bytes: Size of the rejected entry
    """

    pass


class CodecError(RLCacheError):
    """Base class for compression codec failures."""

    pass


class CompressionError(CodecError):
    """Raised when a payload cannot be compressed."""

    pass


class DecompressionError(CodecError):
    """Raised when a stored compressed payload cannot be restored."""

    pass


class StorageError(RLCacheError):
    """Raised by DurableStore adapters for failed storage operations.

    Context should include:
        - key: The storage key involved
        - operation: load, save, remove or list_keys
    """

    pass


class QuotaExceededError(StorageError):
    """Raised when a save would exceed the durable medium's capacity."""

    pass


class StorageCorruptedError(StorageError):
    """Raised when a persisted namespace blob cannot be decoded."""

    pass
