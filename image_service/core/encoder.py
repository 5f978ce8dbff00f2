"""Format-specific image encoding."""

import logging
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import Dict

import pillow_heif
from PIL import Image

from image_service.core.engine import WHITE, release
from image_service.core.errors import EncodeFailed

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()


class ImageFormat(str, Enum):
    """Supported output formats."""

    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    HEIC = "heic"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"


PIL_FORMATS: Dict[ImageFormat, str] = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.HEIC: "HEIF",
}

# WebP encoder effort, 0 (fast) to 6 (smallest output)
WEBP_METHOD = 2


@dataclass
class EncodedImage:
    """Encoded output bytes with their format."""

    data: bytes
    format: ImageFormat

    @property
    def mime_type(self) -> str:
        return self.format.mime_type


def encode_params(output_format: ImageFormat, quality: int) -> Dict[str, object]:
    """
    Map an output format and quality to Pillow save options.

    Args:
        output_format: Target format
        quality: Quality from 1 to 100

    Returns:
        Keyword arguments for ``Image.save``
    """
    if output_format == ImageFormat.JPEG:
        return {"quality": quality, "optimize": True, "progressive": True}
    if output_format == ImageFormat.WEBP:
        return {"quality": quality, "method": WEBP_METHOD}
    if output_format == ImageFormat.PNG:
        # PNG is lossless, quality drives the zlib effort instead
        return {"compress_level": round(quality * 9 / 100)}
    return {"quality": quality}


def _prepare(image: Image.Image, output_format: ImageFormat) -> Image.Image:
    """Convert the image into a mode the target encoder accepts."""
    if output_format == ImageFormat.JPEG and image.mode in ("RGBA", "LA"):
        background = Image.new("RGB", image.size, WHITE)
        background.paste(image, mask=image.getchannel("A"))
        return background

    if output_format == ImageFormat.JPEG and image.mode != "RGB":
        return image.convert("RGB")

    # 8-bit output for every other format
    if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        return image.convert("RGBA" if "A" in image.getbands() else "RGB")

    return image


def encode(image: Image.Image, output_format: ImageFormat, quality: int) -> EncodedImage:
    """
    Encode an image and release it right after.

    The image is released on every path, so callers must not use it again.

    Raises:
        EncodeFailed: If the encoder rejects the image or parameters
    """
    buffer = BytesIO()
    prepared = image
    try:
        prepared = _prepare(image, output_format)
        prepared.save(
            buffer, format=PIL_FORMATS[output_format], **encode_params(output_format, quality)
        )
    except (OSError, ValueError, KeyError) as e:
        raise EncodeFailed(f"Unable to encode image as {output_format.value}: {e}") from e
    finally:
        if prepared is not image:
            release(prepared)
        release(image)

    return EncodedImage(data=buffer.getvalue(), format=output_format)
