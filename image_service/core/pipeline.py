"""Image transformation pipeline: decode, resize, crop, watermark, pad, encode."""

import logging
from typing import Sequence, Tuple

from PIL import Image

from image_service.api.models import TransformRequest, WatermarkSpec
from image_service.core import engine
from image_service.core.encoder import EncodedImage, encode
from image_service.core.engine import ImageChain, Interesting
from image_service.core.errors import DecodeFailed, ImageProcessingError, ProcessingFailed
from image_service.core.geometry import (
    resize_scale,
    smartcrop_eligible,
    watermark_borders,
    watermark_scale,
    watermark_target_size,
)
from image_service.core.orientation import AccessMode, access_mode

logger = logging.getLogger(__name__)

WatermarkInput = Tuple[WatermarkSpec, bytes]

ENGINE_ERRORS = (OSError, ValueError, MemoryError)


def _prepare_watermark(
    buffer: bytes, spec: WatermarkSpec, base_width: int, base_height: int
) -> Image.Image:
    """Decode a watermark and bring it to its final size and opacity."""
    wm = engine.decode(buffer, AccessMode.RANDOM)
    with ImageChain(wm) as chain:
        wm_width, wm_height = engine.dimensions(wm)
        target_width, target_height = watermark_target_size(
            base_width, base_height, wm_width, wm_height, spec.size
        )
        scale = watermark_scale(base_width, base_height, wm_width, wm_height, spec.size)

        # Shrinking first keeps the alpha pass cheap; growing is left for last.
        shrink = wm_width * wm_height > target_width * target_height
        if shrink:
            chain.apply(engine.resize, scale)

        chain.apply(engine.ensure_alpha)
        chain.apply(engine.scale_alpha, spec.alpha)

        if not shrink:
            chain.apply(engine.resize, scale)

        return chain.take()


def _apply_watermarks(chain: ImageChain, watermarks: Sequence[WatermarkInput]) -> None:
    """Composite each watermark in order, skipping the ones that cannot be decoded."""
    assert chain.image is not None
    base_width, base_height = engine.dimensions(chain.image)

    for index, (spec, buffer) in enumerate(watermarks):
        logger.debug(f"Applying watermark {index}: {spec}")
        try:
            wm = _prepare_watermark(buffer, spec, base_width, base_height)
        except DecodeFailed as e:
            logger.warning(f"Skipping watermark {spec.image_address!r}: {e}")
            continue

        try:
            wm_width, wm_height = engine.dimensions(wm)
            left, top, right, bottom = watermark_borders(
                base_width, base_height, wm_width, wm_height, spec.placement
            )
            logger.debug(
                f"Watermark position - top: {top}, left: {left}, bottom: {bottom}, right: {right}"
            )
            chain.apply(engine.composite_over, wm, left, top)
        finally:
            engine.release(wm)


def _transform(
    buffer: bytes,
    watermarks: Sequence[WatermarkInput],
    request: TransformRequest,
    interesting: Interesting,
) -> Image.Image:
    mode = access_mode(buffer, request.rotation)
    image = engine.decode(buffer, mode, request.rotation)
    logger.debug(f"Decoded {image.width}x{image.height} {image.mode} image ({mode.value} access)")

    with ImageChain(image) as chain:
        if request.size is not None:
            width, height = engine.dimensions(image)
            scale = resize_scale(width, height, request.size.w, request.size.h)
            chain.apply(engine.resize, scale)

        if request.crop is not None:
            width, height = engine.dimensions(chain.image)
            if smartcrop_eligible(width, height, request.crop.w, request.crop.h):
                chain.apply(engine.smart_crop, request.crop.w, request.crop.h, interesting)
            else:
                logger.debug(f"Skipping smart crop {request.crop} on {width}x{height} image")

        if watermarks:
            _apply_watermarks(chain, watermarks)

        if request.square:
            width, height = engine.dimensions(chain.image)
            side = max(width, height)
            chain.apply(engine.pad_center, side, side, engine.WHITE)

        return chain.take()


def process_image(
    buffer: bytes,
    watermarks: Sequence[WatermarkInput],
    request: TransformRequest,
    interesting: Interesting = Interesting.CENTRE,
) -> EncodedImage:
    """
    Run the full transformation for one request.

    Blocking and CPU bound; meant to run on the compute pool.

    Args:
        buffer: Encoded source image
        watermarks: Watermark specs paired with their downloaded bytes, in z-order
        request: Parsed transform request
        interesting: Smart crop strategy

    Returns:
        Encoded output image

    Raises:
        DecodeFailed: If the source image cannot be decoded
        EncodeFailed: If the result cannot be encoded
        ProcessingFailed: If a transformation step fails
    """
    try:
        image = _transform(buffer, watermarks, request, interesting)
    except ImageProcessingError:
        raise
    except ENGINE_ERRORS as e:
        raise ProcessingFailed(f"Image transformation failed: {e}") from e

    logger.debug(f"Encoding to: {request.format.value}")
    return encode(image, request.format, request.quality)
