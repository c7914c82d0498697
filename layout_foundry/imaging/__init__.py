"""Section geometry and image cropping."""

from .bounds import PixelRect, clamp_bounds, normalize_bounds, resolve_section_rect
from .crops import CropBatchResult, CropResult, ImageCropService, decode_image

__all__ = [
    "CropBatchResult",
    "CropResult",
    "ImageCropService",
    "PixelRect",
    "clamp_bounds",
    "decode_image",
    "normalize_bounds",
    "resolve_section_rect",
]
