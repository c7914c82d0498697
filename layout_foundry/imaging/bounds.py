"""
Section geometry helpers.

Pure functions: percent/pixel bounds in, clamped pixel rectangles out.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Union

from ..errors import InvalidGeometryError
from ..schemas.artifacts import Bounds, BoundsUnit


class PixelRect(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    def as_dict(self) -> dict:
        return self._asdict()

    def box(self) -> tuple:
        """(left, upper, right, lower) as used by Pillow."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)


def round_half_up(value: float) -> int:
    """Round .5 upwards, independent of Python's banker's rounding."""
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def normalize_bounds(
    bounds: Bounds,
    unit: Union[BoundsUnit, str],
    image_width: int,
    image_height: int,
) -> Bounds:
    """Convert percent bounds to pixels; pixel bounds pass through unchanged."""
    if BoundsUnit(unit) is BoundsUnit.PX:
        return bounds
    return Bounds(
        x=round_half_up(bounds.x / 100 * image_width),
        y=round_half_up(bounds.y / 100 * image_height),
        width=round_half_up(bounds.width / 100 * image_width),
        height=round_half_up(bounds.height / 100 * image_height),
    )


def clamp_bounds(bounds: Bounds, image_width: int, image_height: int) -> PixelRect:
    """Fit a pixel rectangle inside the image.

    The result always satisfies ``0 <= x < W``, ``0 <= y < H``,
    ``x + width <= W``, ``y + height <= H`` and is at least 1x1.
    """
    if image_width < 1 or image_height < 1:
        raise InvalidGeometryError(
            f"Image has no pixels ({image_width}x{image_height})"
        )
    left = _clamp(round_half_up(bounds.x), 0, image_width - 1)
    top = _clamp(round_half_up(bounds.y), 0, image_height - 1)
    width = _clamp(round_half_up(bounds.width), 1, image_width - left)
    height = _clamp(round_half_up(bounds.height), 1, image_height - top)
    return PixelRect(left, top, width, height)


def resolve_section_rect(
    bounds: Bounds,
    unit: Union[BoundsUnit, str],
    image_width: int,
    image_height: int,
) -> PixelRect:
    """normalize_bounds followed by clamp_bounds."""
    return clamp_bounds(
        normalize_bounds(bounds, unit, image_width, image_height),
        image_width,
        image_height,
    )


def was_coerced(requested: Bounds, rect: PixelRect) -> bool:
    """True when clamping had to change the requested rectangle."""
    return (
        round_half_up(requested.x) != rect.x
        or round_half_up(requested.y) != rect.y
        or round_half_up(requested.width) != rect.width
        or round_half_up(requested.height) != rect.height
    )
