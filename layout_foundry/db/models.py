"""
SQLAlchemy models for uploads, splits and split assets.

Audit-relevant tables (test runs, review feedback, validation records) hold a
nullable split reference so they survive the deletion of the split.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from .base import Base


def generate_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


split_status_enum = Enum(
    "pending", "processing", "completed", "failed", name="split_status"
)

asset_kind_enum = Enum(
    "json", "image-crop", "html", "css", "other", name="asset_kind"
)


class UploadModel(Base):
    """One ingested design image."""

    __tablename__ = "uploads"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(128), nullable=True, index=True)
    filename = Column(String(512), nullable=False)
    mime = Column(String(128), nullable=False)
    size = Column(Integer, nullable=False)
    checksum = Column(String(64), nullable=True)
    storage_key = Column(String(256), nullable=True)
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "filename": self.filename,
            "mime": self.mime,
            "size": self.size,
            "checksum": self.checksum,
            "storage_key": self.storage_key,
            "meta": self.meta or {},
            "created_at": _iso(self.created_at),
        }


class SplitModel(Base):
    """One analysis run over an upload."""

    __tablename__ = "splits"

    id = Column(String(36), primary_key=True, default=generate_id)
    upload_id = Column(
        String(36), ForeignKey("uploads.id"), nullable=False, index=True
    )
    status = Column(split_status_enum, nullable=False, default="processing")
    metrics = Column(JSON, nullable=False, default=dict)
    project_id = Column(String(128), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("ix_splits_status", "status"),
        Index("ix_splits_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "upload_id": self.upload_id,
            "status": self.status,
            "metrics": self.metrics or {},
            "project_id": self.project_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AssetModel(Base):
    """A child artifact of a split. Immutable once written."""

    __tablename__ = "split_assets"

    id = Column(String(36), primary_key=True, default=generate_id)
    split_id = Column(String(36), ForeignKey("splits.id"), nullable=False, index=True)
    kind = Column(asset_kind_enum, nullable=False)
    storage_key = Column(String(256), nullable=True)
    meta = Column(JSON, nullable=False, default=dict)
    order_index = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_split_assets_kind", "kind"),
        Index("ix_split_assets_split_order", "split_id", "order_index"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "split_id": self.split_id,
            "kind": self.kind,
            "storage_key": self.storage_key,
            "meta": self.meta or {},
            "order": self.order_index,
            "created_at": _iso(self.created_at),
        }


# =============================================================================
# Audit-relevant records detached (not deleted) by the upload cascade
# =============================================================================


class TestRunModel(Base):
    """A test run executed against a split's generated output."""

    __tablename__ = "test_runs"
    __test__ = False  # keep pytest from collecting this class

    id = Column(String(36), primary_key=True, default=generate_id)
    split_id = Column(String(36), ForeignKey("splits.id"), nullable=True, index=True)
    module_id = Column(String(128), nullable=True, index=True)
    type = Column(String(50), nullable=False)
    status = Column(String(32), nullable=False, default="queued")
    summary = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "split_id": self.split_id,
            "module_id": self.module_id,
            "type": self.type,
            "status": self.status,
            "summary": self.summary,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


class ReviewFeedbackModel(Base):
    """Reviewer feedback on a split or module."""

    __tablename__ = "review_feedback"

    id = Column(String(36), primary_key=True, default=generate_id)
    split_id = Column(String(36), ForeignKey("splits.id"), nullable=True, index=True)
    module_id = Column(String(128), nullable=True, index=True)
    reviewer = Column(String(128), nullable=False)
    status = Column(String(32), nullable=False, default="pending")
    comments = Column(Text, nullable=False, default="")
    ratings = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "split_id": self.split_id,
            "module_id": self.module_id,
            "reviewer": self.reviewer,
            "status": self.status,
            "comments": self.comments,
            "ratings": self.ratings,
            "created_at": _iso(self.created_at),
        }


class ValidationRecordModel(Base):
    """Result of validating generated markup for a split."""

    __tablename__ = "validation_records"

    id = Column(String(36), primary_key=True, default=generate_id)
    split_id = Column(String(36), ForeignKey("splits.id"), nullable=True, index=True)
    validator = Column(String(64), nullable=False)
    passed = Column(Boolean, nullable=False, default=False)
    findings = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "split_id": self.split_id,
            "validator": self.validator,
            "passed": self.passed,
            "findings": self.findings,
            "created_at": _iso(self.created_at),
        }


# Tables whose rows are detached rather than deleted when their split goes away.
DETACHABLE_SPLIT_RECORDS = (TestRunModel, ReviewFeedbackModel, ValidationRecordModel)
