"""
Upload, split, asset and crop request schemas.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr


class SplitStatus(str, Enum):
    """Lifecycle of one analysis run."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AssetKind(str, Enum):
    """Kinds of split child artifacts."""

    JSON = "json"
    IMAGE_CROP = "image-crop"
    HTML = "html"
    CSS = "css"
    OTHER = "other"


class BoundsUnit(str, Enum):
    PX = "px"
    PERCENT = "percent"


class UploadCreate(BaseModel):
    """Schema for recording an ingested image."""

    model_config = ConfigDict(extra="forbid")

    filename: constr(min_length=1, max_length=512)
    mime: constr(min_length=1, max_length=128)
    size: int = Field(..., ge=0, description="Size in bytes")
    user_id: Optional[constr(min_length=1, max_length=128)] = None
    checksum: Optional[constr(min_length=1, max_length=64)] = None
    storage_key: Optional[constr(min_length=1, max_length=256)] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class SplitCreate(BaseModel):
    """Schema for starting a split over an upload."""

    model_config = ConfigDict(extra="forbid")

    status: SplitStatus = SplitStatus.PROCESSING
    metrics: Dict[str, Any] = Field(default_factory=dict)
    project_id: Optional[constr(min_length=1, max_length=128)] = None


class SplitStatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: SplitStatus


class SplitMetricsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metrics: Dict[str, Any]


class Bounds(BaseModel):
    """A rectangle in either pixel or percent-of-image units."""

    model_config = ConfigDict(extra="forbid", allow_inf_nan=False)

    x: float
    y: float
    width: float
    height: float


class SectionInput(BaseModel):
    """One detected section to crop out of the source image."""

    model_config = ConfigDict(extra="forbid")

    index: int = Field(..., ge=0, description="Position of the section; becomes the asset order")
    id: Optional[constr(min_length=1, max_length=128)] = Field(
        None, description="Upstream section identifier"
    )
    bounds: Bounds
    unit: BoundsUnit = BoundsUnit.PX


class CropRequest(BaseModel):
    """Request body for generating crops for a split."""

    model_config = ConfigDict(extra="forbid")

    sections: List[SectionInput] = Field(..., min_length=1)
    force: bool = Field(
        False, description="Regenerate even if crops already exist for the split"
    )


class SignRequest(BaseModel):
    """Request body for issuing a signed download grant."""

    model_config = ConfigDict(extra="forbid")

    key: constr(min_length=1, max_length=256)
    ttl_ms: Optional[int] = Field(None, ge=0, description="Grant lifetime; clamped to the configured maximum")
