"""
Audit Log Service.

Records lifecycle events for uploads, splits and module versions.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from .audit_models import ActorKind, AuditAction, AuditLogModel


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_create("Upload", upload.id, upload.to_dict(), actor_id="ingest")
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        actor_kind: str,
        actor_id: str,
        note: Optional[str],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=str(uuid.uuid4()),
            ts=datetime.now(timezone.utc),
            actor_kind=ActorKind(actor_kind).value,
            actor_id=actor_id,
            action=AuditAction(action).value,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the creation of an entity."""
        return self._record(
            "created", entity_kind, entity_id, None, after, actor_kind, actor_id, note
        )

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a status change on an entity."""
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            {"status": new_status},
            actor_kind,
            actor_id,
            note or f"Status changed: {old_status} -> {new_status}",
        )

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log an update to an entity."""
        return self._record(
            "updated", entity_kind, entity_id, before, after, actor_kind, actor_id, note
        )

    def log_delete(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the deletion of an entity."""
        return self._record(
            "deleted", entity_kind, entity_id, before, None, actor_kind, actor_id, note
        )

    def log_rollback(
        self,
        module_id: str,
        from_version_id: str,
        to_version_id: str,
        new_version_id: str,
        actor_id: str,
        reason: str,
    ) -> AuditLogModel:
        """Log a module rollback."""
        return self._record(
            "rolled_back",
            "Module",
            module_id,
            {"version_id": from_version_id},
            {"version_id": new_version_id, "restored_from": to_version_id},
            "human",
            actor_id,
            reason,
        )

    def log_archive(
        self,
        module_id: str,
        version_ids: List[str],
        actor_kind: str = "system",
        actor_id: str = "version-store",
    ) -> AuditLogModel:
        """Log a batch archival of module versions."""
        return self._record(
            "archived",
            "Module",
            module_id,
            None,
            {"version_ids": version_ids},
            actor_kind,
            actor_id,
            f"Archived {len(version_ids)} version(s)",
        )

    # =========================================================================
    # Query Methods
    # =========================================================================

    def get_entity_history(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
    ) -> List[AuditLogModel]:
        """Get audit history for an entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts))
            .limit(limit)
            .all()
        )

    def get_by_action(self, action: str, limit: int = 100) -> List[AuditLogModel]:
        """Get audit entries of one action type, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(AuditLogModel.action == action)
            .order_by(desc(AuditLogModel.ts))
            .limit(limit)
            .all()
        )
