"""
Serialization codec for cache payloads and namespace blobs.

Values are serialized with orjson. Payloads above the compression threshold
are zlib-compressed and tagged as CompressedPayload, so decoding dispatches on
the payload type rather than on a marker inside the value.

A namespace blob is one orjson object mapping cache keys to wire entries:

    {"<key>": {"data": ..., "createdAt": 0, "expiresAt": 0,
               "schemaVersion": "1.0", "accessCount": 0,
               "lastAccessedAt": 0, "sizeBytes": 0, "compressed": false}}

Compressed data is stored as base64 text of the compressed bytes.
"""

from __future__ import annotations

import base64
import binascii
import math
import zlib
from typing import Any

import orjson

from rlcache.exceptions import (
    CompressionError,
    DecompressionError,
    SerializationError,
    StorageCorruptedError,
)
from rlcache.logging import get_logger
from rlcache.types import CacheEntry, CompressedPayload, Payload, PlainPayload

logger = get_logger(__name__)

COMPRESSION_LEVEL = 6

_WIRE_FIELDS = (
    "data",
    "createdAt",
    "expiresAt",
    "schemaVersion",
    "accessCount",
    "lastAccessedAt",
    "sizeBytes",
)


def _has_non_finite(value: Any) -> bool:
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, dict):
        return any(_has_non_finite(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(_has_non_finite(item) for item in value)
    return False


def serialize_value(value: Any) -> bytes:
    """Serialize a value to JSON bytes.

    Some types do not survive a round trip: tuples come back as lists, and
    datetimes, dates, UUIDs and enums come back as their JSON strings or
    values. NaN and infinities are rejected since JSON would turn them into
    null.

    Raises:
        SerializationError: If the value is not JSON-serializable.
    """
    if _has_non_finite(value):
        raise SerializationError(
            "Value contains NaN or infinity", {"type": type(value).__name__}
        )
    try:
        return orjson.dumps(value)
    except TypeError as e:
        raise SerializationError(
            "Value is not serializable", {"type": type(value).__name__, "error": str(e)}
        ) from e


def deserialize_value(raw: bytes) -> Any:
    """Parse JSON bytes produced by serialize_value()."""
    return orjson.loads(raw)


def compress(raw: bytes, level: int = COMPRESSION_LEVEL) -> bytes:
    """Compress bytes with zlib.

    Raises:
        CompressionError: If zlib rejects the input or level.
    """
    try:
        return zlib.compress(raw, level)
    except (zlib.error, ValueError, TypeError) as e:
        raise CompressionError("Compression failed", {"size": len(raw), "error": str(e)}) from e


def decompress(blob: bytes) -> bytes:
    """Decompress zlib bytes.

    Raises:
        DecompressionError: If the data is not a valid zlib stream.
    """
    try:
        return zlib.decompress(blob)
    except (zlib.error, TypeError) as e:
        raise DecompressionError(
            "Decompression failed", {"size": len(blob), "error": str(e)}
        ) from e


class SerializationCodec:
    """Converts values to stored payloads and back.

    Example:
        codec = SerializationCodec(compression_threshold_bytes=10 * 1024)
        payload, size = codec.encode({"thumbnail": "..."})
        value = codec.decode(payload)
    """

    def __init__(
        self,
        compression_enabled: bool = True,
        compression_threshold_bytes: int = 10 * 1024,
        level: int = COMPRESSION_LEVEL,
    ) -> None:
        """Initialize the codec.

        Args:
            compression_enabled: Whether large payloads may be compressed.
            compression_threshold_bytes: Serialized size above which to compress.
            level: zlib compression level.
        """
        self.compression_enabled = compression_enabled
        self.compression_threshold_bytes = compression_threshold_bytes
        self.level = level

    def encode(self, value: Any) -> tuple[Payload, int]:
        """Serialize a value, compressing it when large enough.

        Compression failure never fails the encode: the value is stored
        uncompressed instead. Compression that does not shrink the payload is
        discarded the same way.

        Returns:
            Tuple of (payload, size in bytes as stored).

        Raises:
            SerializationError: If the value is not serializable.
        """
        raw = serialize_value(value)

        if not self.compression_enabled or len(raw) <= self.compression_threshold_bytes:
            return PlainPayload(value), len(raw)

        try:
            blob = compress(raw, self.level)
        except CompressionError as e:
            logger.warning("Compression failed, storing uncompressed", error=str(e))
            return PlainPayload(value), len(raw)

        if len(blob) >= len(raw):
            return PlainPayload(value), len(raw)

        logger.debug("Compressed payload", raw_size=len(raw), stored_size=len(blob))
        return CompressedPayload(blob), len(blob)

    def decode(self, payload: Payload) -> Any:
        """Restore the value held by a payload.

        Raises:
            DecompressionError: If a compressed payload cannot be restored.
        """
        if isinstance(payload, PlainPayload):
            return payload.value
        if isinstance(payload, CompressedPayload):
            raw = decompress(payload.blob)
            try:
                return deserialize_value(raw)
            except orjson.JSONDecodeError as e:
                raise DecompressionError(
                    "Decompressed payload is not valid JSON", {"error": str(e)}
                ) from e
        raise TypeError(f"Unknown payload type: {type(payload).__name__}")


def entry_to_wire(entry: CacheEntry) -> dict[str, Any]:
    """Convert an entry to its JSON-compatible wire form."""
    compressed = isinstance(entry.payload, CompressedPayload)
    if isinstance(entry.payload, CompressedPayload):
        data: Any = base64.b64encode(entry.payload.blob).decode("ascii")
    else:
        data = entry.payload.value

    return {
        "data": data,
        "createdAt": entry.created_at,
        "expiresAt": entry.expires_at,
        "schemaVersion": entry.schema_version,
        "accessCount": entry.access_count,
        "lastAccessedAt": entry.last_accessed_at,
        "sizeBytes": entry.size_bytes,
        "compressed": compressed,
    }


def entry_from_wire(obj: Any) -> CacheEntry:
    """Build an entry from its wire form.

    Raises:
        ValueError: If fields are missing or have the wrong type.
    """
    if not isinstance(obj, dict):
        raise ValueError("Entry is not an object")

    missing = [name for name in _WIRE_FIELDS if name not in obj]
    if missing:
        raise ValueError(f"Entry is missing fields: {', '.join(missing)}")

    for name in ("createdAt", "expiresAt", "accessCount", "lastAccessedAt", "sizeBytes"):
        value = obj[name]
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"Entry field {name} must be an integer")
    if not isinstance(obj["schemaVersion"], str):
        raise ValueError("Entry field schemaVersion must be a string")

    payload: Payload
    if obj.get("compressed", False):
        if not isinstance(obj["data"], str):
            raise ValueError("Compressed entry data must be base64 text")
        try:
            payload = CompressedPayload(base64.b64decode(obj["data"], validate=True))
        except binascii.Error as e:
            raise ValueError(f"Compressed entry data is not base64: {e}") from e
    else:
        payload = PlainPayload(obj["data"])

    return CacheEntry(
        payload=payload,
        created_at=obj["createdAt"],
        expires_at=obj["expiresAt"],
        schema_version=obj["schemaVersion"],
        size_bytes=obj["sizeBytes"],
        access_count=obj["accessCount"],
        last_accessed_at=obj["lastAccessedAt"],
    )


def encode_namespace(entries: dict[str, CacheEntry]) -> bytes:
    """Serialize a namespace map to one blob."""
    return orjson.dumps({key: entry_to_wire(entry) for key, entry in entries.items()})


def decode_namespace(raw: bytes) -> dict[str, CacheEntry]:
    """Parse a namespace blob.

    Raises:
        StorageCorruptedError: If the blob or any entry in it is malformed.
    """
    try:
        obj = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise StorageCorruptedError("Namespace blob is not valid JSON", {"error": str(e)}) from e

    if not isinstance(obj, dict):
        raise StorageCorruptedError(
            "Namespace blob is not an object", {"type": type(obj).__name__}
        )

    entries: dict[str, CacheEntry] = {}
    for key, wire in obj.items():
        try:
            entries[key] = entry_from_wire(wire)
        except ValueError as e:
            raise StorageCorruptedError(
                "Malformed cache entry", {"key": key, "error": str(e)}
            ) from e
    return entries
