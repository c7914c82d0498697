"""
Module version documents.

One row per version holds the whole version document, file manifest
included. The per-module version index is a query over this table rather
than a separately written document, so the two can never drift apart.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base
from .models import utc_now


version_status_enum = Enum(
    "draft",
    "packaged",
    "deployed",
    "active",
    "inactive",
    "archived",
    name="module_version_status",
)


class ModuleVersionModel(Base):
    """Immutable content snapshot of a module with mutable lifecycle status."""

    __tablename__ = "module_versions"

    version_id = Column(String(64), primary_key=True)
    module_id = Column(String(128), nullable=False, index=True)
    # Position in the module's history; 1 for the first version.
    sequence = Column(Integer, nullable=False)
    version_number = Column(String(32), nullable=False)
    package_id = Column(String(256), nullable=False)
    deployment_id = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    created_by = Column(String(128), nullable=False)

    status = Column(version_status_enum, nullable=False, default="packaged")
    change_summary = Column(Text, nullable=False, default="")
    change_log = Column(JSON, nullable=False, default=list)

    # Metadata block
    module_name = Column(String(256), nullable=False)
    description = Column(Text, nullable=False, default="")
    file_count = Column(Integer, nullable=False, default=0)
    total_size_bytes = Column(Integer, nullable=False, default=0)
    checksum = Column(String(64), nullable=False, index=True)

    # path -> full file text
    files = Column(JSON, nullable=False, default=dict)

    deployment_info = Column(JSON, nullable=True)
    rollback_info = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("module_id", "sequence", name="uq_module_versions_sequence"),
        Index("ix_module_versions_module_status", "module_id", "status"),
        Index("ix_module_versions_created_at", "created_at"),
    )

    def metadata_dict(self) -> Dict[str, Any]:
        return {
            "module_name": self.module_name,
            "description": self.description,
            "file_count": self.file_count,
            "total_size_bytes": self.total_size_bytes,
            "checksum": self.checksum,
        }

    def to_summary(self) -> Dict[str, Any]:
        """Index entry: the version document without file content."""
        return {
            "version_id": self.version_id,
            "version_number": self.version_number,
            "module_id": self.module_id,
            "package_id": self.package_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "status": self.status,
            "change_summary": self.change_summary,
            "metadata": self.metadata_dict(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full version document."""
        document = self.to_summary()
        document.update(
            {
                "deployment_id": self.deployment_id,
                "change_log": list(self.change_log or []),
                "files": dict(self.files or {}),
                "deployment_info": self.deployment_info,
                "rollback_info": self.rollback_info,
            }
        )
        return document
