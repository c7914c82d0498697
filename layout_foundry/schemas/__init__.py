"""Pydantic schemas for the artifact lifecycle layer."""

from .artifacts import (
    AssetKind,
    Bounds,
    BoundsUnit,
    CropRequest,
    SectionInput,
    SignRequest,
    SplitCreate,
    SplitMetricsUpdate,
    SplitStatus,
    SplitStatusUpdate,
    UploadCreate,
)
from .versions import (
    DeploymentInfo,
    ModuleVersion,
    RollbackInfo,
    RollbackRequest,
    StoreStatistics,
    VersionComparison,
    VersionCreateMeta,
    VersionCreateRequest,
    VersionDifferences,
    VersionHistory,
    VersionMetadata,
    VersionStats,
    VersionStatus,
    VersionStatusUpdate,
)

__all__ = [
    "AssetKind",
    "Bounds",
    "BoundsUnit",
    "CropRequest",
    "DeploymentInfo",
    "ModuleVersion",
    "RollbackInfo",
    "RollbackRequest",
    "SectionInput",
    "SignRequest",
    "SplitCreate",
    "SplitMetricsUpdate",
    "SplitStatus",
    "SplitStatusUpdate",
    "StoreStatistics",
    "UploadCreate",
    "VersionComparison",
    "VersionCreateMeta",
    "VersionCreateRequest",
    "VersionDifferences",
    "VersionHistory",
    "VersionMetadata",
    "VersionStats",
    "VersionStatus",
    "VersionStatusUpdate",
]
