"""
Database services for uploads, splits and split assets.

Every operation that touches the database converts SQLAlchemy failures into
StorageUnavailableError after rolling back the session.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

import structlog
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import (
    InvalidStatusTransitionError,
    NotFoundError,
    StorageUnavailableError,
)
from ..schemas.artifacts import AssetKind, SplitStatus, UploadCreate
from .audit_service import AuditService
from .models import (
    DETACHABLE_SPLIT_RECORDS,
    AssetModel,
    SplitModel,
    UploadModel,
    generate_id,
    utc_now,
)

logger = structlog.get_logger()

# Legal moves when strict split transitions are enabled. Same-status writes
# are always accepted.
SPLIT_TRANSITIONS = {
    "pending": {"processing", "failed"},
    "processing": {"completed", "failed"},
    "failed": {"processing"},
    "completed": set(),
}


@contextmanager
def storage_errors(db: Session, operation: str) -> Iterator[None]:
    """Translate database failures into StorageUnavailableError."""
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("storage_unavailable", operation=operation, error=str(e))
        raise StorageUnavailableError(
            f"Database operation '{operation}' failed", operation=operation
        ) from e


def _value(item: Union[str, SplitStatus, AssetKind]) -> str:
    return item.value if hasattr(item, "value") else str(item)


@dataclass
class CascadeDeleteResult:
    """Counts from an upload cascade delete."""

    upload_id: str
    splits_deleted: int = 0
    assets_deleted: int = 0
    detached: Dict[str, int] = field(default_factory=dict)
    blob_keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upload_id": self.upload_id,
            "splits_deleted": self.splits_deleted,
            "assets_deleted": self.assets_deleted,
            "detached": dict(self.detached),
        }


class UploadService:
    """Service for managing uploads."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def create(
        self, upload: UploadCreate, actor_id: str = "ingest"
    ) -> UploadModel:
        """Create a new upload record."""
        with storage_errors(self.db, "create_upload"):
            db_upload = UploadModel(
                id=generate_id(),
                user_id=upload.user_id,
                filename=upload.filename,
                mime=upload.mime,
                size=upload.size,
                checksum=upload.checksum,
                storage_key=upload.storage_key,
                meta=upload.meta,
                created_at=utc_now(),
            )
            self.db.add(db_upload)
            self.db.commit()
            self.db.refresh(db_upload)

            self.audit.log_create(
                entity_kind="Upload",
                entity_id=db_upload.id,
                after=db_upload.to_dict(),
                actor_id=actor_id,
            )
        return db_upload

    def get(self, upload_id: str) -> Optional[UploadModel]:
        """Get an upload by ID."""
        with storage_errors(self.db, "get_upload"):
            return (
                self.db.query(UploadModel).filter(UploadModel.id == upload_id).first()
            )

    def list(
        self,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[UploadModel]:
        """List uploads, newest first."""
        with storage_errors(self.db, "list_uploads"):
            query = self.db.query(UploadModel)
            if user_id:
                query = query.filter(UploadModel.user_id == user_id)
            return (
                query.order_by(desc(UploadModel.created_at))
                .offset(offset)
                .limit(limit)
                .all()
            )

    def delete_cascade(
        self, upload_id: str, actor_id: str = "system"
    ) -> Optional[CascadeDeleteResult]:
        """Delete an upload with its splits and assets in one transaction.

        Phase 1 detaches audit-relevant rows (test runs, review feedback,
        validation records) from the doomed splits by nulling their split
        reference. Phase 2 deletes assets, then splits, then the upload.

        Returns None if the upload does not exist. Blob keys of the deleted
        rows are returned so the caller can free blob storage.
        """
        with storage_errors(self.db, "delete_upload_cascade"):
            upload = self.get(upload_id)
            if not upload:
                return None

            before = upload.to_dict()
            result = CascadeDeleteResult(upload_id=upload_id)
            if upload.storage_key:
                result.blob_keys.append(upload.storage_key)

            split_ids = [
                row.id
                for row in self.db.query(SplitModel.id).filter(
                    SplitModel.upload_id == upload_id
                )
            ]

            if split_ids:
                # Phase 1: detach
                for model in DETACHABLE_SPLIT_RECORDS:
                    result.detached[model.__tablename__] = (
                        self.db.query(model)
                        .filter(model.split_id.in_(split_ids))
                        .update({model.split_id: None}, synchronize_session="fetch")
                    )

                # Phase 2: delete children first
                result.blob_keys.extend(
                    row.storage_key
                    for row in self.db.query(AssetModel.storage_key).filter(
                        AssetModel.split_id.in_(split_ids),
                        AssetModel.storage_key.isnot(None),
                    )
                )
                result.assets_deleted = (
                    self.db.query(AssetModel)
                    .filter(AssetModel.split_id.in_(split_ids))
                    .delete(synchronize_session="fetch")
                )
                result.splits_deleted = (
                    self.db.query(SplitModel)
                    .filter(SplitModel.id.in_(split_ids))
                    .delete(synchronize_session="fetch")
                )

            self.db.query(UploadModel).filter(UploadModel.id == upload_id).delete(
                synchronize_session="fetch"
            )
            self.db.commit()

            logger.info(
                "upload_cascade_deleted",
                upload_id=upload_id,
                splits=result.splits_deleted,
                assets=result.assets_deleted,
                detached=result.detached,
            )
            self.audit.log_delete(
                entity_kind="Upload",
                entity_id=upload_id,
                before=before,
                actor_id=actor_id,
                note=(
                    f"Cascade removed {result.splits_deleted} split(s) and "
                    f"{result.assets_deleted} asset(s)"
                ),
            )
        return result


class SplitService:
    """Service for managing splits."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        enforce_transitions: bool = False,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.enforce_transitions = enforce_transitions

    def create(
        self,
        upload_id: str,
        status: Union[str, SplitStatus] = SplitStatus.PROCESSING,
        metrics: Optional[Dict[str, Any]] = None,
        project_id: Optional[str] = None,
    ) -> SplitModel:
        """Start a split over an existing upload."""
        with storage_errors(self.db, "create_split"):
            exists = (
                self.db.query(UploadModel.id)
                .filter(UploadModel.id == upload_id)
                .first()
            )
            if not exists:
                raise NotFoundError("Upload", upload_id)

            now = utc_now()
            db_split = SplitModel(
                id=generate_id(),
                upload_id=upload_id,
                status=SplitStatus(_value(status)).value,
                metrics=dict(metrics or {}),
                project_id=project_id,
                created_at=now,
                updated_at=now,
            )
            self.db.add(db_split)
            self.db.commit()
            self.db.refresh(db_split)
        return db_split

    def get(self, split_id: str) -> Optional[SplitModel]:
        """Get a split by ID."""
        with storage_errors(self.db, "get_split"):
            return self.db.query(SplitModel).filter(SplitModel.id == split_id).first()

    def list_for_upload(self, upload_id: str) -> List[SplitModel]:
        with storage_errors(self.db, "list_splits_for_upload"):
            return (
                self.db.query(SplitModel)
                .filter(SplitModel.upload_id == upload_id)
                .order_by(desc(SplitModel.created_at))
                .all()
            )

    def list_recent(self, limit: Optional[int] = 20, cap: int = 100) -> List[SplitModel]:
        """Most recent splits first; limit is clamped into [1, cap]."""
        take = max(1, min(limit if limit is not None else 20, cap))
        with storage_errors(self.db, "list_recent_splits"):
            return (
                self.db.query(SplitModel)
                .order_by(desc(SplitModel.created_at), desc(SplitModel.id))
                .limit(take)
                .all()
            )

    def update_status(
        self,
        split_id: str,
        status: Union[str, SplitStatus],
        actor_id: str = "split-service",
    ) -> Optional[SplitModel]:
        """Overwrite the split status.

        No transition guard unless the service was built with
        ``enforce_transitions=True``.
        """
        new_status = SplitStatus(_value(status)).value
        with storage_errors(self.db, "update_split_status"):
            split = self.get(split_id)
            if not split:
                return None

            old_status = split.status
            if (
                self.enforce_transitions
                and new_status != old_status
                and new_status not in SPLIT_TRANSITIONS.get(old_status, set())
            ):
                raise InvalidStatusTransitionError(
                    "Split", split_id, old_status, new_status
                )

            split.status = new_status
            split.updated_at = utc_now()
            self.db.commit()
            self.db.refresh(split)

            if old_status != new_status:
                self.audit.log_status_change(
                    entity_kind="Split",
                    entity_id=split.id,
                    old_status=old_status,
                    new_status=new_status,
                    actor_id=actor_id,
                )
        return split

    def merge_metrics(
        self,
        split_id: str,
        partial: Dict[str, Any],
        actor_id: str = "split-service",
    ) -> Optional[SplitModel]:
        """Shallow-merge partial into the split's metrics."""
        with storage_errors(self.db, "merge_split_metrics"):
            split = self.get(split_id)
            if not split:
                return None

            before = dict(split.metrics or {})
            # Reassign so the JSON column is marked dirty.
            split.metrics = {**before, **partial}
            split.updated_at = utc_now()
            self.db.commit()
            self.db.refresh(split)

            self.audit.log_update(
                entity_kind="Split",
                entity_id=split.id,
                before={"metrics": before},
                after={"metrics": dict(split.metrics)},
                actor_id=actor_id,
            )
        return split


class AssetService:
    """Service for managing split assets."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        split_id: str,
        kind: Union[str, AssetKind],
        storage_key: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        order: Optional[int] = None,
    ) -> AssetModel:
        """Create an asset under an existing split."""
        with storage_errors(self.db, "create_asset"):
            exists = (
                self.db.query(SplitModel.id).filter(SplitModel.id == split_id).first()
            )
            if not exists:
                raise NotFoundError("Split", split_id)

            db_asset = AssetModel(
                id=generate_id(),
                split_id=split_id,
                kind=AssetKind(_value(kind)).value,
                storage_key=storage_key,
                meta=dict(meta or {}),
                order_index=order,
                created_at=utc_now(),
            )
            self.db.add(db_asset)
            self.db.commit()
            self.db.refresh(db_asset)
        return db_asset

    def get(self, asset_id: str) -> Optional[AssetModel]:
        with storage_errors(self.db, "get_asset"):
            return self.db.query(AssetModel).filter(AssetModel.id == asset_id).first()

    def list_for_split(
        self, split_id: str, kind: Optional[Union[str, AssetKind]] = None
    ) -> List[AssetModel]:
        """Assets of a split ordered by order index (nulls last), then creation time."""
        with storage_errors(self.db, "list_assets"):
            query = self.db.query(AssetModel).filter(AssetModel.split_id == split_id)
            if kind is not None:
                query = query.filter(AssetModel.kind == AssetKind(_value(kind)).value)
            return query.order_by(
                AssetModel.order_index.is_(None),
                AssetModel.order_index,
                AssetModel.created_at,
                AssetModel.id,
            ).all()
