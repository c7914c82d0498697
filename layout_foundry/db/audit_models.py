"""
Audit trail for the artifact lifecycle.

Uploads, splits and module versions record one row per lifecycle change
with before/after snapshots. Rows reference entities by id only, so they
outlive the uploads and versions they describe.
"""

import enum
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Enum, Index, String, Text

from .base import Base
from .models import utc_now


class ActorKind(str, enum.Enum):
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


class AuditAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    DELETED = "deleted"
    ROLLED_BACK = "rolled_back"
    ARCHIVED = "archived"


# Entity kinds written by the services: "Upload", "Split", "ModuleVersion",
# and "Module" for operations spanning a module's versions.
audit_actor_kind_enum = Enum(
    *[k.value for k in ActorKind], name="audit_actor_kind"
)
audit_action_enum = Enum(*[a.value for a in AuditAction], name="audit_action")


class AuditLogModel(Base):
    """One lifecycle change."""

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True)
    ts = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    actor_kind = Column(audit_actor_kind_enum, nullable=False)
    actor_id = Column(String(128), nullable=False, index=True)
    action = Column(audit_action_enum, nullable=False, index=True)

    entity_kind = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(128), nullable=False, index=True)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts.isoformat() if self.ts else None,
            "actor_kind": self.actor_kind,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
        }
