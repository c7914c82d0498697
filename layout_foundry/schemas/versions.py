"""
Module version schemas.

A ModuleVersion is an immutable content snapshot: a manifest mapping
relative file paths to full file text, plus lifecycle status and lineage.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, constr


class VersionStatus(str, Enum):
    """Version lifecycle.

    draft -> packaged -> {deployed | active} -> {inactive | archived},
    plus active -> deployed when a sibling version is promoted.
    """

    DRAFT = "draft"
    PACKAGED = "packaged"
    DEPLOYED = "deployed"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class VersionCreateMeta(BaseModel):
    """Caller-supplied metadata for a new version."""

    model_config = ConfigDict(extra="forbid")

    module_name: constr(min_length=1, max_length=256)
    description: str = ""
    created_by: constr(min_length=1, max_length=128)
    change_summary: str = ""
    change_log: List[str] = Field(default_factory=list)


class DeploymentInfo(BaseModel):
    """Where a version was deployed."""

    model_config = ConfigDict(extra="forbid")

    remote_module_id: constr(min_length=1, max_length=128)
    portal_id: constr(min_length=1, max_length=128)
    environment: Literal["sandbox", "production"]
    deployed_at: datetime
    deployment_url: Optional[str] = None


class RollbackInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    can_rollback: bool
    previous_version_id: Optional[str] = None
    backup_id: Optional[str] = None


class VersionMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    module_name: str
    description: str
    file_count: int
    total_size_bytes: int
    checksum: str


class ModuleVersion(BaseModel):
    """Full version document."""

    model_config = ConfigDict(extra="forbid")

    version_id: str
    version_number: str
    module_id: str
    package_id: str
    deployment_id: Optional[str] = None
    created_at: datetime
    created_by: str
    status: VersionStatus
    change_summary: str
    change_log: List[str]
    metadata: VersionMetadata
    files: Dict[str, str]
    deployment_info: Optional[DeploymentInfo] = None
    rollback_info: Optional[RollbackInfo] = None


class MetadataChange(BaseModel):
    old: Any
    new: Any


class VersionDifferences(BaseModel):
    files_added: List[str] = Field(default_factory=list)
    files_removed: List[str] = Field(default_factory=list)
    files_modified: List[str] = Field(default_factory=list)
    metadata_changes: Dict[str, MetadataChange] = Field(default_factory=dict)

    @property
    def total_changed(self) -> int:
        return len(self.files_added) + len(self.files_removed) + len(self.files_modified)


class VersionComparison(BaseModel):
    version_a: ModuleVersion
    version_b: ModuleVersion
    differences: VersionDifferences
    compatibility_score: int = Field(..., ge=0, le=100)
    migration_required: bool


class VersionStats(BaseModel):
    total_deployments: int = 0
    successful_deployments: int = 0
    failed_deployments: int = 0
    rollbacks: int = 0


class VersionHistory(BaseModel):
    module_id: str
    versions: List[ModuleVersion]
    total_versions: int
    active_version: Optional[ModuleVersion] = None
    latest_version: Optional[ModuleVersion] = None
    version_stats: VersionStats


class StoreStatistics(BaseModel):
    total_modules: int
    total_versions: int
    active_versions: int
    archived_versions: int
    storage_size_bytes: int


class VersionCreateRequest(BaseModel):
    """Request body for packaging a new version."""

    model_config = ConfigDict(extra="forbid")

    package_id: constr(min_length=1, max_length=256)
    files: Dict[str, str]
    meta: VersionCreateMeta


class VersionStatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: VersionStatus
    deployment_info: Optional[DeploymentInfo] = None


class RollbackRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_version_id: constr(min_length=1, max_length=64)
    reason: constr(min_length=1, max_length=2000)
    performed_by: constr(min_length=1, max_length=128)
