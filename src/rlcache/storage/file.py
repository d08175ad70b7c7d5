"""
File-based durable store.

One file per key under a root directory. Writes go to a temporary file in the
same directory and are moved into place with os.replace, so a reader never
sees a partially written blob.
"""

from __future__ import annotations

import errno
import os
import tempfile
from pathlib import Path
from urllib.parse import quote, unquote

from rlcache.exceptions import QuotaExceededError, StorageError
from rlcache.logging import get_logger
from rlcache.storage.base import DurableStore

logger = get_logger(__name__)

_BLOB_SUFFIX = ".blob"
_QUOTA_ERRNOS = {errno.ENOSPC, errno.EDQUOT}


class FileStore(DurableStore):
    """Durable store keeping each blob in its own file."""

    def __init__(self, root_dir: str | Path, quota_bytes: int | None = None) -> None:
        """Initialize file store.

        Args:
            root_dir: Directory holding the blob files.
            quota_bytes: Optional cap on the total stored size.
        """
        self.root_dir = Path(root_dir)
        self.quota_bytes = quota_bytes

    async def init(self) -> None:
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root_dir / f"{quote(key, safe='')}{_BLOB_SUFFIX}"

    def _used_bytes(self, exclude: Path) -> int:
        return sum(
            path.stat().st_size
            for path in self.root_dir.glob(f"*{_BLOB_SUFFIX}")
            if path != exclude
        )

    async def load(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(
                "Failed to load blob", {"key": key, "operation": "load", "error": str(e)}
            ) from e

    async def save(self, key: str, value: bytes) -> None:
        path = self._path(key)
        self.root_dir.mkdir(parents=True, exist_ok=True)

        if self.quota_bytes is not None and self._used_bytes(path) + len(value) > self.quota_bytes:
            raise QuotaExceededError(
                "Storage quota exceeded",
                {"key": key, "size": len(value), "quota_bytes": self.quota_bytes},
            )

        fd, tmp_name = tempfile.mkstemp(dir=self.root_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            if e.errno in _QUOTA_ERRNOS:
                raise QuotaExceededError(
                    "Disk is full", {"key": key, "size": len(value), "error": str(e)}
                ) from e
            raise StorageError(
                "Failed to save blob", {"key": key, "operation": "save", "error": str(e)}
            ) from e

        logger.debug("Stored blob", key=key, size=len(value))

    async def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(
                "Failed to remove blob", {"key": key, "operation": "remove", "error": str(e)}
            ) from e

    async def list_keys(self, prefix: str) -> list[str]:
        if not self.root_dir.exists():
            return []
        keys = (
            unquote(path.name[: -len(_BLOB_SUFFIX)])
            for path in self.root_dir.glob(f"*{_BLOB_SUFFIX}")
        )
        return sorted(key for key in keys if key.startswith(prefix))
