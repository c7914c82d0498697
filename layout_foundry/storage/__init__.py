"""Blob storage and signed access."""

from .blobs import (
    BlobStore,
    FileBlobStore,
    create_blob_store,
    generate_storage_key,
    normalize_extension,
)
from .signing import (
    SignedAccessService,
    SignedGrant,
    content_type_for_key,
)

__all__ = [
    "BlobStore",
    "FileBlobStore",
    "SignedAccessService",
    "SignedGrant",
    "content_type_for_key",
    "create_blob_store",
    "generate_storage_key",
    "normalize_extension",
]
