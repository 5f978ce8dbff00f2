"""Image transformation API endpoint."""

import asyncio
import logging
import time
from typing import Sequence

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter
from slowapi.util import get_remote_address

from image_service.api.config import CACHE_MAX_AGE_SECONDS, settings
from image_service.api.models import (
    TransformRequest,
    WatermarkSpec,
    apply_quality_overrides,
    parse_transform_request,
)
from image_service.core.engine import Interesting
from image_service.core.errors import ImageProcessingError, ResourceUnavailable
from image_service.core.fetcher import ImageFetcher
from image_service.core.pipeline import WatermarkInput, process_image
from image_service.core.worker import ComputePool, get_compute_pool
from image_service.utils.metrics import log_fetch_duration, log_fetch_failure, log_size_metrics

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)

router = APIRouter(prefix="/api/v1")


def get_image_fetcher() -> ImageFetcher:
    """Get image fetcher instance."""
    return ImageFetcher(
        cache_root=settings.public_img_path,
        timeout_seconds=settings.fetch_timeout_seconds,
        connect_timeout_seconds=settings.fetch_connect_timeout_seconds,
        max_input_size_mb=settings.max_input_size_mb,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        aws_region=settings.aws_region,
        allowed_buckets=settings.s3_allowed_buckets_list,
        endpoint_url=settings.s3_endpoint_url,
    )


async def fetch_watermarks(
    fetcher: ImageFetcher, specs: Sequence[WatermarkSpec]
) -> list[WatermarkInput]:
    """
    Download all watermarks concurrently.

    Watermarks that cannot be downloaded are dropped together with their
    spec, so the remaining pairs keep their order and their own settings.
    """
    results = await asyncio.gather(
        *(fetcher.fetch(spec.image_address) for spec in specs), return_exceptions=True
    )

    watermarks: list[WatermarkInput] = []
    for spec, result in zip(specs, results):
        if isinstance(result, ResourceUnavailable):
            logger.warning(f"Failed to download watermark {spec.image_address!r}: {result}")
            continue
        if isinstance(result, BaseException):
            raise result
        watermarks.append((spec, result))
    return watermarks


async def process_transform_request(
    request: Request,
    params: TransformRequest,
    fetcher: ImageFetcher,
    pool: ComputePool,
) -> Response:
    """Core transform processing logic."""
    if_modified_since = request.headers.get("if-modified-since")
    if await fetcher.is_not_modified(params.image_address, if_modified_since):
        logger.info(f"Not modified since {if_modified_since}: {params.image_address}")
        return Response(status_code=304)

    start_time = time.time()

    try:
        main_image = await fetcher.fetch(params.image_address)
    except ResourceUnavailable:
        log_fetch_failure(params.image_address, time.time() - start_time)
        raise
    last_modified = await fetcher.last_modified(params.image_address)
    watermarks = await fetch_watermarks(fetcher, params.watermarks)

    log_fetch_duration(params.image_address, time.time() - start_time, len(watermarks))

    encoded = await pool.run(
        process_image,
        main_image,
        watermarks,
        params,
        Interesting(settings.smartcrop_interesting),
    )

    input_size = len(main_image) + sum(len(buffer) for _, buffer in watermarks)
    log_size_metrics(params.format.value, input_size, len(encoded.data))

    headers = {"Cache-Control": f"public, max-age={CACHE_MAX_AGE_SECONDS}"}
    if last_modified:
        headers["Last-Modified"] = last_modified

    return Response(content=encoded.data, media_type=encoded.mime_type, headers=headers)


@router.get("/image")
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
@limiter.limit(f"{settings.rate_limit_per_hour}/hour")
async def transform_image(
    request: Request,
    fetcher: ImageFetcher = Depends(get_image_fetcher),
    pool: ComputePool = Depends(get_compute_pool),
) -> Response:
    """
    Transform an image and return the encoded result.

    Parameters are read from the query string: image_address, w, h, crop_w,
    crop_h, rotation, format, quality, square and watermarks[i].field.
    """
    try:
        params = parse_transform_request(request.query_params.multi_items())
        params = apply_quality_overrides(params, settings.quality_overrides)
        return await process_transform_request(request, params, fetcher, pool)

    except ImageProcessingError as e:
        logger.error(f"Image processing failed for {request.url.query!r}: {e}")
        raise HTTPException(status_code=e.status_code, detail=e.public_message)

    except Exception as e:
        logger.error(f"Unexpected error processing image: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/health")
async def health_check(
    fetcher: ImageFetcher = Depends(get_image_fetcher),
    pool: ComputePool = Depends(get_compute_pool),
) -> JSONResponse:
    """
    Health check endpoint.

    Checks the image store and the compute pool.
    """
    checks: dict[str, dict[str, object]] = {}
    overall_status = "healthy"

    if fetcher.cache.root.is_dir():
        checks["image_store"] = {"status": "healthy", "path": str(fetcher.cache.root)}
    else:
        checks["image_store"] = {"status": "unhealthy", "error": "image store directory missing"}
        overall_status = "degraded"

    if pool.closed:
        checks["compute_pool"] = {"status": "unhealthy", "error": "compute pool shut down"}
        overall_status = "degraded"
    else:
        checks["compute_pool"] = {"status": "healthy", "workers": pool.max_workers}

    return JSONResponse(
        content={
            "status": overall_status,
            "checks": checks,
        }
    )
