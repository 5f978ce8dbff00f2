"""Size and placement computations for resizing, cropping and watermarking.

All functions here are pure: they work on integer pixel dimensions and never
touch image data.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class PositionKind(str, Enum):
    """How watermark offsets are interpreted."""

    POINT = "point"
    CENTER = "center"


@dataclass(frozen=True)
class Placement:
    """Watermark anchor and displacement in pixels."""

    kind: PositionKind
    dx: int = 0
    dy: int = 0


def scaled_size(width: int, height: int, scale: float) -> Tuple[int, int]:
    """Apply a uniform scale, rounding to the nearest pixel (never below 1)."""
    return max(1, round(width * scale)), max(1, round(height * scale))


def resize_scale(
    original_width: int,
    original_height: int,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> float:
    """
    Compute the uniform scale factor for a requested size.

    With a single dimension the other one follows the aspect ratio. With both,
    the image is fitted within the two constraints (smallest scale wins).

    Raises:
        ValueError: If neither dimension is requested
    """
    scales = []
    if width is not None:
        scales.append(width / original_width)
    if height is not None:
        scales.append(height / original_height)
    if not scales:
        raise ValueError("At least one of width or height is required")
    return min(scales)


def resize_target(
    original_width: int,
    original_height: int,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> Tuple[int, int]:
    """Target dimensions of an aspect-preserving resize."""
    scale = resize_scale(original_width, original_height, width, height)
    return scaled_size(original_width, original_height, scale)


def smartcrop_eligible(
    original_width: int,
    original_height: int,
    crop_width: Optional[int],
    crop_height: Optional[int],
) -> bool:
    """Smart crop only applies when both sizes are set and it never upscales."""
    if crop_width is None or crop_height is None:
        return False
    return original_width >= crop_width and original_height >= crop_height


def watermark_scale(
    base_width: int,
    base_height: int,
    wm_width: int,
    wm_height: int,
    size_factor: float,
) -> float:
    """
    Scale that brings the watermark to ``size_factor`` percent of the base.

    The watermark's larger dimension is matched against the same dimension of
    the base image; the other one follows the watermark's own aspect ratio.
    """
    if wm_width >= wm_height:
        return base_width * size_factor / 100 / wm_width
    return base_height * size_factor / 100 / wm_height


def watermark_target_size(
    base_width: int,
    base_height: int,
    wm_width: int,
    wm_height: int,
    size_factor: float,
) -> Tuple[int, int]:
    """Dimensions of the watermark once scaled relative to the base image."""
    scale = watermark_scale(base_width, base_height, wm_width, wm_height, size_factor)
    return scaled_size(wm_width, wm_height, scale)


def _edge_offset(base: int, size: int, delta: int) -> int:
    # Non-negative deltas are margins from the leading edge, negative ones
    # from the trailing edge.
    if delta >= 0:
        return delta
    return base - size + delta


def watermark_borders(
    base_width: int,
    base_height: int,
    wm_width: int,
    wm_height: int,
    placement: Placement,
) -> Tuple[int, int, int, int]:
    """
    Compute the space left around a placed watermark.

    Args:
        base_width: Width of the image the watermark is composited onto
        base_height: Height of the image the watermark is composited onto
        wm_width: Width of the (scaled) watermark
        wm_height: Height of the (scaled) watermark
        placement: Anchor kind and offsets

    Returns:
        Tuple of (left, top, right, bottom) in pixels. Values can be negative
        when the watermark overflows the base image.
    """
    if placement.kind == PositionKind.CENTER:
        left = (base_width - wm_width) // 2 + placement.dx
        top = (base_height - wm_height) // 2 + placement.dy
    else:
        left = _edge_offset(base_width, wm_width, placement.dx)
        top = _edge_offset(base_height, wm_height, placement.dy)

    right = base_width - wm_width - left
    bottom = base_height - wm_height - top
    return left, top, right, bottom
