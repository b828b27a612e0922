"""
Bucket-partitioned object storage for uploaded files.

Objects are written once under generated names and never overwritten; the
original filename only contributes a sanitized extension.
"""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from handover.models.submission import FileCategory

logger = logging.getLogger(__name__)

KNOWN_BUCKETS = frozenset(category.bucket for category in FileCategory)

_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,10}$")


def generate_blob_name(filename: str) -> str:
    """Return '<uuid4 hex>.<ext>' (or just the hex when the extension is unusable)."""
    stem = uuid.uuid4().hex
    _, dot, ext = filename.rpartition(".")
    ext = ext.lower()
    if dot and _EXTENSION_RE.match(ext):
        return f"{stem}.{ext}"
    return stem


@dataclass(frozen=True)
class BlobInfo:
    bucket: str
    name: str
    modified_at: datetime


class AbstractBlobStore(ABC):
    @abstractmethod
    def put(self, bucket: str, name: str, content: bytes) -> None:
        """Write a new object. Raises FileExistsError if the name is taken."""

    @abstractmethod
    def get(self, bucket: str, name: str) -> bytes:
        """Read an object. Raises FileNotFoundError if absent."""

    @abstractmethod
    def list(self, bucket: str) -> list[BlobInfo]:
        """All objects in a bucket."""

    @abstractmethod
    def delete(self, bucket: str, name: str) -> None:
        """Remove an object if present."""


class LocalBlobStore(AbstractBlobStore):
    """One directory per bucket under a root directory."""

    def __init__(self, root: str) -> None:
        self._root = Path(root)

    def _path(self, bucket: str, name: str) -> Path:
        if bucket not in KNOWN_BUCKETS:
            raise ValueError(f"unknown bucket: {bucket}")
        if not name or Path(name).name != name or name.startswith("."):
            raise ValueError(f"invalid object name: {name!r}")
        return self._root / bucket / name

    def put(self, bucket: str, name: str, content: bytes) -> None:
        path = self._path(bucket, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        # "x" mode: objects are immutable once written
        with open(path, "xb") as fh:
            fh.write(content)
        logger.debug("[blobs] stored | bucket=%s | name=%s | bytes=%d", bucket, name, len(content))

    def get(self, bucket: str, name: str) -> bytes:
        return self._path(bucket, name).read_bytes()

    def list(self, bucket: str) -> list[BlobInfo]:
        directory = self._root / bucket
        if bucket not in KNOWN_BUCKETS or not directory.is_dir():
            return []
        return [
            BlobInfo(
                bucket=bucket,
                name=path.name,
                modified_at=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
            )
            for path in sorted(directory.iterdir())
            if path.is_file()
        ]

    def delete(self, bucket: str, name: str) -> None:
        self._path(bucket, name).unlink(missing_ok=True)
