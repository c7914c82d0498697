"""
Crop engine.

Cuts section rectangles out of a source image, re-encodes each as PNG,
stores the bytes in blob storage and records an ``image-crop`` asset per
section.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog
from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from ..db.models import AssetModel
from ..db.services import AssetService, SplitService
from ..errors import ImageDecodeError, NotFoundError, StorageUnavailableError
from ..schemas.artifacts import AssetKind, SectionInput
from ..storage.blobs import BlobStore
from .bounds import PixelRect, clamp_bounds, normalize_bounds, was_coerced

logger = structlog.get_logger()

CROP_MIME = "image/png"
CROP_EXTENSION = "png"

# Modes Pillow can write to PNG without conversion.
_PNG_MODES = {"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"}


@dataclass
class CropResult:
    key: str
    width: int
    height: int
    bounds: PixelRect
    asset: AssetModel

    @classmethod
    def from_asset(cls, asset: AssetModel) -> "CropResult":
        meta = asset.meta or {}
        b = meta.get("bounds") or {}
        return cls(
            key=meta.get("key") or asset.storage_key,
            width=meta.get("width", 0),
            height=meta.get("height", 0),
            bounds=PixelRect(b.get("x", 0), b.get("y", 0), b.get("width", 0), b.get("height", 0)),
            asset=asset,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "width": self.width,
            "height": self.height,
            "bounds": self.bounds.as_dict(),
            "asset": self.asset.to_dict(),
        }


@dataclass
class CropFailure:
    section_index: int
    section_id: Optional[str]
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_index": self.section_index,
            "section_id": self.section_id,
            "error": self.error,
        }


@dataclass
class CropBatchResult:
    split_id: str
    crops: List[CropResult] = field(default_factory=list)
    failures: List[CropFailure] = field(default_factory=list)
    reused: bool = False
    generation: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "split_id": self.split_id,
            "reused": self.reused,
            "generation": self.generation,
            "crops": [c.to_dict() for c in self.crops],
            "failures": [f.to_dict() for f in self.failures],
        }


def decode_image(source: bytes) -> Image.Image:
    """Fully decode source bytes, raising ImageDecodeError on any failure."""
    try:
        image = Image.open(io.BytesIO(source))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Unable to decode source image: {e}") from e
    width, height = image.size
    if not width or not height:
        raise ImageDecodeError("Unable to read image dimensions")
    return image


def encode_png(image: Image.Image) -> bytes:
    if image.mode not in _PNG_MODES:
        image = image.convert("RGBA")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _generation(asset: AssetModel) -> int:
    return int((asset.meta or {}).get("generation", 1))


class ImageCropService:
    """Generates and persists per-section crops for a split."""

    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        asset_service: Optional[AssetService] = None,
    ):
        self.db = db
        self.blob_store = blob_store
        self.assets = asset_service or AssetService(db)
        self.splits = SplitService(db)

    def list_crops(self, split_id: str) -> List[AssetModel]:
        """Crops of the newest generation, in section order."""
        crops = self.assets.list_for_split(split_id, kind=AssetKind.IMAGE_CROP)
        if not crops:
            return []
        latest = max(_generation(a) for a in crops)
        return [a for a in crops if _generation(a) == latest]

    def create_crops_for_split(
        self,
        split_id: str,
        source: bytes,
        sections: Sequence[SectionInput],
        force: bool = False,
    ) -> CropBatchResult:
        """Crop every section out of source and record the results.

        Existing crops are returned untouched unless force is set, in which
        case a new generation is written and supersedes the old one.
        Sections are processed strictly in the order given.
        """
        if not self.splits.get(split_id):
            raise NotFoundError("Split", split_id)

        existing = self.list_crops(split_id)
        if existing and not force:
            logger.info("crops_reused", split_id=split_id, count=len(existing))
            return CropBatchResult(
                split_id=split_id,
                crops=[CropResult.from_asset(a) for a in existing],
                reused=True,
                generation=_generation(existing[0]),
            )

        # Decode failure is fatal to the batch before anything is written.
        image = decode_image(source)
        image_width, image_height = image.size
        generation = (_generation(existing[0]) + 1) if existing else 1

        log = logger.bind(split_id=split_id, generation=generation)
        result = CropBatchResult(split_id=split_id, generation=generation)

        for section in sections:
            requested = normalize_bounds(
                section.bounds, section.unit, image_width, image_height
            )
            rect = clamp_bounds(requested, image_width, image_height)
            if was_coerced(requested, rect):
                log.warning(
                    "crop_bounds_coerced",
                    section_index=section.index,
                    requested=requested.model_dump(),
                    resolved=rect.as_dict(),
                )

            data = encode_png(image.crop(rect.box()))
            try:
                key = self.blob_store.put(data, CROP_MIME, CROP_EXTENSION)
                asset = self.assets.create(
                    split_id=split_id,
                    kind=AssetKind.IMAGE_CROP,
                    storage_key=key,
                    meta={
                        "key": key,
                        "file_name": f"split_{split_id}_section_{section.index}.png",
                        "mime": CROP_MIME,
                        "width": rect.width,
                        "height": rect.height,
                        "bounds": rect.as_dict(),
                        "original_dimensions": {
                            "width": image_width,
                            "height": image_height,
                        },
                        "section_id": section.id,
                        "generation": generation,
                    },
                    order=section.index,
                )
            except StorageUnavailableError as e:
                log.error(
                    "crop_write_failed",
                    section_index=section.index,
                    error=e.message,
                )
                result.failures.append(
                    CropFailure(section.index, section.id, e.code)
                )
                continue

            log.info("crop_written", section_index=section.index, key=key)
            result.crops.append(
                CropResult(
                    key=key,
                    width=rect.width,
                    height=rect.height,
                    bounds=rect,
                    asset=asset,
                )
            )

        return result
