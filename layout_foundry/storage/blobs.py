"""
Blob storage for original uploads and generated crops.

Stores are addressed by a base URI; only file:// is implemented.
Keys are opaque: a random hex id plus a normalized extension.
"""
from __future__ import annotations

import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlparse

from ..errors import NotFoundError, StorageUnavailableError

CHUNK_SIZE = 64 * 1024
_EXTENSION_RE = re.compile(r"[a-z0-9]{1,10}")


def _clean_extension(value: Optional[str]) -> str:
    ext = (value or "").strip().lstrip(".").lower()
    return ext if _EXTENSION_RE.fullmatch(ext) else ""


def normalize_extension(
    extension: Optional[str] = None, content_type: Optional[str] = None
) -> str:
    """Pick the file extension used in a storage key.

    The explicit extension wins when it is short and alphanumeric; otherwise
    the MIME subtype is used (``image/svg+xml`` -> ``svg``), then ``bin``.
    ``jpeg`` is always stored as ``jpg``.
    """
    ext = _clean_extension(extension)
    if not ext and content_type and "/" in content_type:
        subtype = content_type.split("/", 1)[1].split(";", 1)[0]
        ext = _clean_extension(subtype.split("+", 1)[0])
    if ext == "jpeg":
        ext = "jpg"
    return ext or "bin"


def generate_storage_key(
    extension: Optional[str] = None, content_type: Optional[str] = None
) -> str:
    """Random unique identifier plus normalized extension."""
    return f"{uuid.uuid4().hex}.{normalize_extension(extension, content_type)}"


class BlobStore(ABC):
    """Abstract base class for blob storage."""

    @abstractmethod
    def put(
        self, data: bytes, content_type: str, extension: Optional[str] = None
    ) -> str:
        """Store bytes and return the new storage key."""

    @abstractmethod
    def get_stream(self, key: str) -> Iterator[bytes]:
        """Yield the stored bytes in chunks."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Whether a blob is stored under key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a blob. Returns False if it did not exist."""

    @abstractmethod
    def get_uri(self) -> str:
        """Get the base URI of this store."""

    def read_bytes(self, key: str) -> bytes:
        return b"".join(self.get_stream(key))


class FileBlobStore(BlobStore):
    """Local filesystem blob store (file:// URIs).

    Keys are flat file names under the base directory; two-character
    fan-out directories keep any single directory small::

        /var/lib/layout-foundry/blobs/
        ├── 3f/3f9c...e1.png
        └── a0/a07b...44.jpg
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        # Keys are generated here; anything with a path separator is foreign.
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise NotFoundError("Blob", key)
        return self.base_path / key[:2] / key

    def put(
        self, data: bytes, content_type: str, extension: Optional[str] = None
    ) -> str:
        key = generate_storage_key(extension, content_type)
        full_path = self._path_for(key)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as e:
            raise StorageUnavailableError(
                f"Failed to write blob {key}: {e}", operation="put"
            ) from e
        return key

    def get_stream(self, key: str) -> Iterator[bytes]:
        full_path = self._path_for(key)
        if not full_path.is_file():
            raise NotFoundError("Blob", key)
        try:
            handle = open(full_path, "rb")
        except OSError as e:
            raise StorageUnavailableError(
                f"Failed to open blob {key}: {e}", operation="get_stream"
            ) from e
        return self._iter_file(handle)

    @staticmethod
    def _iter_file(handle) -> Iterator[bytes]:
        with handle:
            while True:
                chunk = handle.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    def exists(self, key: str) -> bool:
        try:
            return self._path_for(key).is_file()
        except NotFoundError:
            return False

    def delete(self, key: str) -> bool:
        try:
            full_path = self._path_for(key)
        except NotFoundError:
            return False
        try:
            full_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageUnavailableError(
                f"Failed to delete blob {key}: {e}", operation="delete"
            ) from e
        return True

    def get_uri(self) -> str:
        return f"file://{self.base_path}"


def create_blob_store(uri: str) -> BlobStore:
    """Factory function to create the appropriate BlobStore from a URI.

    Args:
        uri: Base URI (e.g., "file:///var/lib/layout-foundry/blobs")

    Raises:
        ValueError: If the URI scheme is not supported
    """
    parsed = urlparse(uri)

    if parsed.scheme == "file":
        # file://./data/blobs keeps the relative path in netloc
        raw_path = f"{parsed.netloc}{parsed.path}" if parsed.netloc else parsed.path
        return FileBlobStore(Path(raw_path))

    raise ValueError(
        f"Unsupported storage scheme: {parsed.scheme}. Supported: file://"
    )
