"""Pillow-backed image primitives used by the transformation pipeline."""

import logging
from enum import Enum
from io import BytesIO
from types import TracebackType
from typing import Callable, Optional, Tuple, Type

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from image_service.core.errors import DecodeFailed
from image_service.core.geometry import scaled_size
from image_service.core.orientation import AccessMode

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)

# Longest side of the grayscale preview used to score crop windows.
ATTENTION_PREVIEW_SIZE = 256

# Clockwise rotations expressed as Pillow transpositions.
ROTATIONS = {
    0: None,
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}

DECODE_ERRORS = (
    UnidentifiedImageError,
    OSError,
    SyntaxError,
    ValueError,
    Image.DecompressionBombError,
)


class Interesting(str, Enum):
    """Strategy used to pick the smart crop window."""

    CENTRE = "centre"
    ATTENTION = "attention"


class ImageChain:
    """
    Owns the working image of a pipeline run.

    Each operation consumes the current image and produces the next one; the
    previous image is released as soon as its successor exists, and whatever
    is still held is released when the chain is left.
    """

    def __init__(self, image: Image.Image):
        self.image: Optional[Image.Image] = image

    def apply(self, operation: Callable[..., Image.Image], *args: object) -> Image.Image:
        """Run ``operation(image, *args)`` and make its result current."""
        if self.image is None:
            raise RuntimeError("Image chain has already been released")
        result = operation(self.image, *args)
        if result is not self.image:
            release(self.image)
            self.image = result
        return result

    def take(self) -> Image.Image:
        """Hand the current image over to the caller."""
        if self.image is None:
            raise RuntimeError("Image chain has already been released")
        image, self.image = self.image, None
        return image

    def __enter__(self) -> "ImageChain":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if self.image is not None:
            release(self.image)
            self.image = None


def release(image: Image.Image) -> None:
    """Free the pixel memory held by an image."""
    image.close()


def dimensions(image: Image.Image) -> Tuple[int, int]:
    """Return (width, height)."""
    return image.width, image.height


def has_alpha(image: Image.Image) -> bool:
    """Check whether the image carries an alpha band."""
    return image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info


def _normalize_mode(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "RGBA"):
        return image
    return image.convert("RGBA" if has_alpha(image) else "RGB")


def decode(
    buffer: bytes, access: AccessMode = AccessMode.SEQUENTIAL, rotation: Optional[int] = None
) -> Image.Image:
    """
    Decode an image buffer into an RGB or RGBA image.

    Sequential access reads the pixels as stored. Random access additionally
    applies the EXIF orientation and then the requested clockwise rotation.

    Args:
        buffer: Encoded image bytes
        access: Decode strategy
        rotation: Clockwise rotation in degrees (0, 90, 180, 270)

    Returns:
        Decoded image

    Raises:
        DecodeFailed: If the bytes cannot be decoded
    """
    try:
        image = Image.open(BytesIO(buffer))
        image.load()
    except DECODE_ERRORS as e:
        raise DecodeFailed(f"Unable to decode image: {e}") from e

    with ImageChain(image) as chain:
        if access == AccessMode.RANDOM:
            chain.apply(ImageOps.exif_transpose)
            if rotation:
                chain.apply(rotate, rotation)
        chain.apply(_normalize_mode)
        return chain.take()


def rotate(image: Image.Image, rotation: int) -> Image.Image:
    """Rotate clockwise by a multiple of 90 degrees."""
    if rotation not in ROTATIONS:
        raise ValueError(f"Unsupported rotation: {rotation}")
    method = ROTATIONS[rotation]
    if method is None:
        return image
    return image.transpose(method)


def resize(image: Image.Image, scale: float) -> Image.Image:
    """Resize uniformly by ``scale``."""
    target = scaled_size(image.width, image.height, scale)
    if target == image.size:
        return image
    # LANCZOS for high-quality resampling in both directions
    return image.resize(target, Image.Resampling.LANCZOS)


def _attention_origin(image: Image.Image, width: int, height: int) -> Tuple[int, int]:
    """Top-left corner of the crop window holding the most edge energy."""
    factor = max(1.0, max(image.width, image.height) / ATTENTION_PREVIEW_SIZE)
    preview_size = scaled_size(image.width, image.height, 1 / factor)

    with image.convert("L") as gray, gray.resize(preview_size, Image.Resampling.BILINEAR) as preview:
        arr = np.asarray(preview, dtype=np.float64)

    energy = np.zeros_like(arr)
    energy[:, 1:] += np.abs(np.diff(arr, axis=1))
    energy[1:, :] += np.abs(np.diff(arr, axis=0))

    if not energy.any():
        return (image.width - width) // 2, (image.height - height) // 2

    win_w = min(arr.shape[1], max(1, round(width / factor)))
    win_h = min(arr.shape[0], max(1, round(height / factor)))

    integral = np.zeros((arr.shape[0] + 1, arr.shape[1] + 1))
    integral[1:, 1:] = energy.cumsum(axis=0).cumsum(axis=1)
    sums = (
        integral[win_h:, win_w:]
        - integral[:-win_h, win_w:]
        - integral[win_h:, :-win_w]
        + integral[:-win_h, :-win_w]
    )
    top, left = np.unravel_index(int(np.argmax(sums)), sums.shape)

    x = min(round(int(left) * factor), image.width - width)
    y = min(round(int(top) * factor), image.height - height)
    return max(0, x), max(0, y)


def smart_crop(
    image: Image.Image, width: int, height: int, interesting: Interesting = Interesting.CENTRE
) -> Image.Image:
    """Crop to ``width`` x ``height`` around the most interesting region."""
    if (width, height) == image.size:
        return image

    if interesting == Interesting.ATTENTION:
        left, top = _attention_origin(image, width, height)
    else:
        left = (image.width - width) // 2
        top = (image.height - height) // 2

    logger.debug(f"Smart crop ({interesting.value}): {width}x{height} at ({left}, {top})")
    return image.crop((left, top, left + width, top + height))


def ensure_alpha(image: Image.Image) -> Image.Image:
    """Add a fully opaque alpha band when the image has none."""
    if image.mode == "RGBA":
        return image
    return image.convert("RGBA")


def scale_alpha(image: Image.Image, factor: float) -> Image.Image:
    """Multiply the alpha band by ``factor``, leaving colour bands untouched."""
    if factor >= 1.0:
        return image

    out = image.copy()
    with image.getchannel("A") as alpha:
        out.putalpha(alpha.point(lambda value: round(value * factor)))
    return out


def composite_over(base: Image.Image, overlay: Image.Image, x: int, y: int) -> Image.Image:
    """
    Alpha-composite ``overlay`` onto ``base`` with its top-left at (x, y).

    Parts of the overlay outside the base are clipped. The result keeps the
    base's mode.
    """
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    layer.paste(overlay, (x, y))

    backdrop = base if base.mode == "RGBA" else base.convert("RGBA")
    result = Image.alpha_composite(backdrop, layer)
    layer.close()
    if backdrop is not base:
        backdrop.close()

    if base.mode != "RGBA":
        flattened = result.convert(base.mode)
        result.close()
        return flattened
    return result


def pad_center(
    image: Image.Image, width: int, height: int, background: Tuple[int, int, int] = WHITE
) -> Image.Image:
    """Center the image on a ``width`` x ``height`` canvas filled with ``background``."""
    if (width, height) == image.size:
        return image

    fill = background + (255,) if image.mode == "RGBA" else background
    canvas = Image.new(image.mode, (width, height), fill)
    canvas.paste(image, ((width - image.width) // 2, (height - image.height) // 2))
    return canvas
