"""
Module Version Store.

Append-only history of module content snapshots. File content is written
once at creation; afterwards only lifecycle status, deployment info and
archival change. Rollback always creates a new forward version.

Writes that allocate a sequence number or promote a version to ``active``
hold a per-module lock shared by every store instance in the process.
"""

from __future__ import annotations

import threading
import time
import uuid
import weakref
from typing import Any, Dict, List, Mapping, Optional, Union

import structlog
from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import utc_now
from ..db.services import storage_errors
from ..db.version_models import ModuleVersionModel
from ..errors import (
    ConcurrentActivationConflict,
    NotFoundError,
    VersionLineageError,
)
from ..schemas.versions import (
    DeploymentInfo,
    ModuleVersion,
    StoreStatistics,
    VersionComparison,
    VersionCreateMeta,
    VersionHistory,
    VersionStats,
    VersionStatus,
)
from .history import (
    calculate_checksum,
    compatibility_score,
    diff_files,
    migration_required,
    next_version_number,
    rollback_change_log,
    total_size_bytes,
)

logger = structlog.get_logger()

DEFAULT_KEEP_COUNT = 10

# Statuses archive_old_versions never touches.
_PROTECTED_FROM_ARCHIVE = {VersionStatus.ACTIVE.value, VersionStatus.DEPLOYED.value}


def generate_version_id() -> str:
    return f"v_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def to_document(version: ModuleVersionModel) -> ModuleVersion:
    return ModuleVersion.model_validate(version.to_dict())


def _status_value(status: Union[str, VersionStatus]) -> str:
    return VersionStatus(status.value if hasattr(status, "value") else status).value


class ModuleVersionStore:
    """Version history for packaged modules.

    Usage:
        store = ModuleVersionStore(db_session)
        v1 = store.create_version("mod-1", "pkg-1", files, meta)
        store.update_version_status(v1.version_id, VersionStatus.ACTIVE)
    """

    # Entries live only while some caller holds a reference to the lock.
    _module_locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
    _locks_guard = threading.Lock()

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    @classmethod
    def _lock_for(cls, module_id: str) -> threading.Lock:
        with cls._locks_guard:
            lock = cls._module_locks.get(module_id)
            if lock is None:
                lock = cls._module_locks[module_id] = threading.Lock()
            return lock

    # =========================================================================
    # Reads
    # =========================================================================

    def get_version(self, version_id: str) -> Optional[ModuleVersionModel]:
        with storage_errors(self.db, "get_version"):
            return (
                self.db.query(ModuleVersionModel)
                .filter(ModuleVersionModel.version_id == version_id)
                .first()
            )

    def _require(self, version_id: str) -> ModuleVersionModel:
        version = self.get_version(version_id)
        if not version:
            raise NotFoundError("ModuleVersion", version_id)
        return version

    def list_versions(self, module_id: str) -> List[ModuleVersionModel]:
        """All versions of a module, newest first."""
        with storage_errors(self.db, "list_versions"):
            return (
                self.db.query(ModuleVersionModel)
                .filter(ModuleVersionModel.module_id == module_id)
                .order_by(desc(ModuleVersionModel.sequence))
                .all()
            )

    def latest_version(self, module_id: str) -> Optional[ModuleVersionModel]:
        with storage_errors(self.db, "latest_version"):
            return (
                self.db.query(ModuleVersionModel)
                .filter(ModuleVersionModel.module_id == module_id)
                .order_by(desc(ModuleVersionModel.sequence))
                .first()
            )

    def get_index(self, module_id: str) -> List[Dict[str, Any]]:
        """Version summaries in creation order, without file content."""
        return [v.to_summary() for v in reversed(self.list_versions(module_id))]

    def active_version_ids(self, module_id: str) -> List[str]:
        with storage_errors(self.db, "active_versions"):
            return [
                row.version_id
                for row in self.db.query(ModuleVersionModel.version_id).filter(
                    ModuleVersionModel.module_id == module_id,
                    ModuleVersionModel.status == VersionStatus.ACTIVE.value,
                )
            ]

    def get_module_history(self, module_id: str) -> VersionHistory:
        versions = self.list_versions(module_id)
        documents = [to_document(v) for v in versions]

        deployed = [d for d in documents if d.deployment_info is not None]
        stats = VersionStats(
            total_deployments=len(deployed),
            successful_deployments=sum(
                1
                for d in deployed
                if d.status in (VersionStatus.ACTIVE, VersionStatus.DEPLOYED)
            ),
            failed_deployments=sum(
                1 for d in deployed if d.status == VersionStatus.INACTIVE
            ),
            rollbacks=sum(1 for d in documents if d.package_id.startswith("rollback_")),
        )

        return VersionHistory(
            module_id=module_id,
            versions=documents,
            total_versions=len(documents),
            active_version=next(
                (d for d in documents if d.status == VersionStatus.ACTIVE), None
            ),
            latest_version=documents[0] if documents else None,
            version_stats=stats,
        )

    def get_statistics(self) -> StoreStatistics:
        with storage_errors(self.db, "version_statistics"):
            total_modules, total_versions, storage = self.db.query(
                func.count(func.distinct(ModuleVersionModel.module_id)),
                func.count(ModuleVersionModel.version_id),
                func.coalesce(func.sum(ModuleVersionModel.total_size_bytes), 0),
            ).one()
            by_status = dict(
                self.db.query(
                    ModuleVersionModel.status, func.count(ModuleVersionModel.version_id)
                )
                .group_by(ModuleVersionModel.status)
                .all()
            )
        return StoreStatistics(
            total_modules=total_modules,
            total_versions=total_versions,
            active_versions=by_status.get(VersionStatus.ACTIVE.value, 0),
            archived_versions=by_status.get(VersionStatus.ARCHIVED.value, 0),
            storage_size_bytes=int(storage),
        )

    def verify_checksum(self, version_id: str) -> bool:
        """Recompute the checksum of a stored version and compare."""
        version = self._require(version_id)
        ok = calculate_checksum(version.files or {}) == version.checksum
        if not ok:
            logger.warning(
                "version_checksum_mismatch",
                version_id=version_id,
                module_id=version.module_id,
            )
        return ok

    # =========================================================================
    # Writes
    # =========================================================================

    def _new_version(
        self,
        module_id: str,
        package_id: str,
        files: Dict[str, str],
        meta: VersionCreateMeta,
    ) -> ModuleVersionModel:
        """Add the next version of a module to the session without committing.

        Callers hold the module lock and own the commit.
        """
        previous = self.latest_version(module_id)
        version = ModuleVersionModel(
            version_id=generate_version_id(),
            module_id=module_id,
            sequence=(previous.sequence + 1) if previous else 1,
            version_number=next_version_number(
                previous.version_number if previous else None
            ),
            package_id=package_id,
            created_at=utc_now(),
            created_by=meta.created_by,
            status=VersionStatus.PACKAGED.value,
            change_summary=meta.change_summary,
            change_log=list(meta.change_log),
            module_name=meta.module_name,
            description=meta.description,
            file_count=len(files),
            total_size_bytes=total_size_bytes(files),
            checksum=calculate_checksum(files),
            files=files,
            rollback_info={
                "can_rollback": previous is not None,
                "previous_version_id": previous.version_id if previous else None,
                "backup_id": None,
            },
        )
        self.db.add(version)
        return version

    def _record_created(self, version: ModuleVersionModel) -> None:
        logger.info(
            "version_created",
            module_id=version.module_id,
            version_id=version.version_id,
            version_number=version.version_number,
            file_count=version.file_count,
        )
        self.audit.log_create(
            entity_kind="ModuleVersion",
            entity_id=version.version_id,
            after=version.to_summary(),
            actor_kind="human",
            actor_id=version.created_by,
        )

    def create_version(
        self,
        module_id: str,
        package_id: str,
        files: Mapping[str, str],
        meta: VersionCreateMeta,
    ) -> ModuleVersionModel:
        """Package a new version of a module."""
        with self._lock_for(module_id):
            with storage_errors(self.db, "create_version"):
                version = self._new_version(module_id, package_id, dict(files), meta)
                self.db.commit()
                self.db.refresh(version)

        self._record_created(version)
        return version

    def update_version_status(
        self,
        version_id: str,
        status: Union[str, VersionStatus],
        deployment_info: Optional[Union[DeploymentInfo, Mapping[str, Any]]] = None,
        actor_id: str = "version-store",
    ) -> ModuleVersionModel:
        """Move a version to a new status.

        Promoting to ``active`` demotes every other active version of the
        module to ``deployed`` in the same transaction.
        """
        new_status = _status_value(status)
        version = self._require(version_id)
        module_id = version.module_id

        if deployment_info is not None and not isinstance(deployment_info, DeploymentInfo):
            deployment_info = DeploymentInfo.model_validate(deployment_info)

        with self._lock_for(module_id):
            with storage_errors(self.db, "update_version_status"):
                old_status = version.status
                demoted: List[str] = []
                if new_status == VersionStatus.ACTIVE.value:
                    siblings = self.db.query(ModuleVersionModel).filter(
                        ModuleVersionModel.module_id == module_id,
                        ModuleVersionModel.status == VersionStatus.ACTIVE.value,
                        ModuleVersionModel.version_id != version_id,
                    )
                    demoted = [v.version_id for v in siblings]
                    if demoted:
                        siblings.update(
                            {ModuleVersionModel.status: VersionStatus.DEPLOYED.value},
                            synchronize_session="fetch",
                        )

                version.status = new_status
                if deployment_info is not None:
                    version.deployment_info = deployment_info.model_dump(mode="json")
                    version.deployment_id = deployment_info.remote_module_id
                self.db.commit()
                self.db.refresh(version)

            if new_status == VersionStatus.ACTIVE.value:
                self._check_single_active(module_id)

        log = logger.bind(module_id=module_id, version_id=version_id)
        log.info("version_status_changed", old_status=old_status, new_status=new_status)
        for other_id in demoted:
            log.info("version_demoted", demoted_version_id=other_id)
            self.audit.log_status_change(
                entity_kind="ModuleVersion",
                entity_id=other_id,
                old_status=VersionStatus.ACTIVE.value,
                new_status=VersionStatus.DEPLOYED.value,
                actor_id=actor_id,
                note=f"Demoted by activation of {version_id}",
            )
        if old_status != new_status:
            self.audit.log_status_change(
                entity_kind="ModuleVersion",
                entity_id=version_id,
                old_status=old_status,
                new_status=new_status,
                actor_id=actor_id,
            )
        return version

    def _check_single_active(self, module_id: str) -> None:
        active = self.active_version_ids(module_id)
        if len(active) > 1:
            logger.error(
                "concurrent_activation_detected",
                module_id=module_id,
                active_version_ids=active,
            )
            raise ConcurrentActivationConflict(module_id, active)

    def compare_versions(self, version_id_a: str, version_id_b: str) -> VersionComparison:
        a = self._require(version_id_a)
        b = self._require(version_id_b)
        files_a, files_b = a.files or {}, b.files or {}

        differences = diff_files(files_a, files_b, a.metadata_dict(), b.metadata_dict())
        return VersionComparison(
            version_a=to_document(a),
            version_b=to_document(b),
            differences=differences,
            compatibility_score=compatibility_score(
                differences, len(files_a), len(files_b)
            ),
            migration_required=migration_required(differences),
        )

    def rollback_to_version(
        self,
        current_version_id: str,
        target_version_id: str,
        reason: str,
        performed_by: str,
    ) -> ModuleVersionModel:
        """Create a new version carrying the target's files.

        The current version is set ``inactive`` if it was ``active``. The new
        version and the demotion are committed together.
        """
        current = self._require(current_version_id)
        target = self._require(target_version_id)
        if current.module_id != target.module_id:
            raise VersionLineageError(
                f"Cannot roll back {current_version_id} ({current.module_id}) "
                f"to {target_version_id} ({target.module_id})"
            )

        module_id = target.module_id
        with self._lock_for(module_id):
            with storage_errors(self.db, "rollback_to_version"):
                self.db.refresh(current)
                was_active = current.status == VersionStatus.ACTIVE.value
                rollback = self._new_version(
                    module_id,
                    f"rollback_{target.package_id}",
                    dict(target.files or {}),
                    VersionCreateMeta(
                        module_name=target.module_name,
                        description=f"Rollback to version {target.version_number}",
                        created_by=performed_by,
                        change_summary=f"Rollback: {reason}",
                        change_log=rollback_change_log(
                            current.version_number,
                            target.version_number,
                            reason,
                            performed_by,
                        ),
                    ),
                )
                if was_active:
                    current.status = VersionStatus.INACTIVE.value
                self.db.commit()
                self.db.refresh(rollback)

        self._record_created(rollback)
        if was_active:
            self.audit.log_status_change(
                entity_kind="ModuleVersion",
                entity_id=current_version_id,
                old_status=VersionStatus.ACTIVE.value,
                new_status=VersionStatus.INACTIVE.value,
                actor_id=performed_by,
            )

        logger.info(
            "version_rolled_back",
            module_id=module_id,
            from_version_id=current_version_id,
            to_version_id=target_version_id,
            new_version_id=rollback.version_id,
        )
        self.audit.log_rollback(
            module_id=module_id,
            from_version_id=current_version_id,
            to_version_id=target_version_id,
            new_version_id=rollback.version_id,
            actor_id=performed_by,
            reason=reason,
        )
        return rollback

    def archive_old_versions(
        self, module_id: str, keep_count: int = DEFAULT_KEEP_COUNT
    ) -> int:
        """Archive versions beyond the newest keep_count.

        Active and deployed versions are never archived. Returns the number
        of versions newly archived by this call.
        """
        if keep_count < 0:
            raise ValueError("keep_count must be >= 0")

        with self._lock_for(module_id):
            with storage_errors(self.db, "archive_old_versions"):
                archived: List[str] = []
                for version in self.list_versions(module_id)[keep_count:]:
                    if version.status in _PROTECTED_FROM_ARCHIVE:
                        continue
                    if version.status == VersionStatus.ARCHIVED.value:
                        continue
                    version.status = VersionStatus.ARCHIVED.value
                    archived.append(version.version_id)
                if archived:
                    self.db.commit()

        if archived:
            logger.info("versions_archived", module_id=module_id, count=len(archived))
            self.audit.log_archive(module_id, archived)
        return len(archived)

    def delete_archived_versions(self, module_id: str) -> int:
        """Physically remove archived versions. Returns the number removed."""
        with self._lock_for(module_id):
            with storage_errors(self.db, "delete_archived_versions"):
                doomed = self.db.query(ModuleVersionModel).filter(
                    ModuleVersionModel.module_id == module_id,
                    ModuleVersionModel.status == VersionStatus.ARCHIVED.value,
                )
                version_ids = [v.version_id for v in doomed]
                if not version_ids:
                    return 0
                deleted = doomed.delete(synchronize_session="fetch")
                self.db.commit()

        logger.info("archived_versions_deleted", module_id=module_id, count=deleted)
        self.audit.log_delete(
            entity_kind="Module",
            entity_id=module_id,
            before={"version_ids": version_ids},
            note=f"Deleted {deleted} archived version(s)",
        )
        return deleted
