"""
Image ingestion.

Persisting the original bytes is best-effort: when blob storage fails the
upload record is still created, just without a storage key or checksum, and
the failure is reported in the result and logged.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from .db.models import UploadModel
from .db.services import UploadService
from .errors import StorageUnavailableError
from .schemas.artifacts import UploadCreate
from .storage.blobs import BlobStore

logger = structlog.get_logger()


@dataclass
class PersistOutcome:
    """Result of the best-effort blob write."""

    ok: bool
    storage_key: Optional[str] = None
    checksum: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "storage_key": self.storage_key,
            "checksum": self.checksum,
            "error": self.error,
        }


@dataclass
class IngestResult:
    upload: UploadModel
    persisted: PersistOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {"upload": self.upload.to_dict(), "persisted": self.persisted.to_dict()}


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class IngestionService:
    """Records an ingested design image and stores its bytes."""

    def __init__(self, db: Session, blob_store: BlobStore):
        self.blob_store = blob_store
        self.uploads = UploadService(db)

    def persist_original(
        self, data: bytes, mime: str, extension: Optional[str] = None
    ) -> PersistOutcome:
        try:
            key = self.blob_store.put(data, mime, extension)
        except StorageUnavailableError as e:
            logger.error(
                "ingest_persist_failed",
                mime=mime,
                size=len(data),
                error=e.message,
            )
            return PersistOutcome(ok=False, error=e.code)
        return PersistOutcome(ok=True, storage_key=key, checksum=sha256_hex(data))

    def ingest(
        self,
        filename: str,
        mime: str,
        data: bytes,
        user_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        extension = filename.rsplit(".", 1)[-1] if "." in filename else None
        outcome = self.persist_original(data, mime, extension)

        record_meta = dict(meta or {})
        if not outcome.ok:
            record_meta["persist_error"] = outcome.error

        upload = self.uploads.create(
            UploadCreate(
                filename=filename,
                mime=mime,
                size=len(data),
                user_id=user_id,
                checksum=outcome.checksum,
                storage_key=outcome.storage_key,
                meta=record_meta,
            )
        )
        logger.info(
            "upload_ingested",
            upload_id=upload.id,
            size=upload.size,
            persisted=outcome.ok,
        )
        return IngestResult(upload=upload, persisted=outcome)
