"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Response

from image_service.utils.metrics import get_metrics, get_metrics_content_type

router = APIRouter(prefix="/api/v1")


@router.get("/metrics")
async def metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Exposes image_fetch_duration_seconds, image_input_size_bytes and
    image_output_size_bytes along with the default process collectors.
    """
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
