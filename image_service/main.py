"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from image_service.api.config import settings
from image_service.api.routes import image, metrics
from image_service.core.worker import get_compute_pool, shutdown_compute_pool
from image_service.utils.metrics import configure_logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "Image Transformation Service"
SERVICE_VERSION = "1.0.0"


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Reject the request with the limit that was hit."""
    client = request.client.host if request.client else "-"
    logger.warning(f"Rate limit exceeded for {client}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded ({exc.detail}). Please try again later."},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Set up logging, the image store and the compute pool; tear the pool down on exit."""
    configure_logging(log_level=settings.log_level, log_format=settings.log_format)

    image_store = Path(settings.public_img_path)
    image_store.mkdir(parents=True, exist_ok=True)
    logger.info(f"Serving images from {image_store.resolve()}")

    pool = get_compute_pool()
    logger.info(f"{SERVICE_NAME} ready with {pool.max_workers} compute workers")

    try:
        yield
    finally:
        shutdown_compute_pool()
        logger.info(f"{SERVICE_NAME} stopped")


app = FastAPI(
    title=SERVICE_NAME,
    description="On-demand image resizing, cropping, watermarking and re-encoding",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.state.limiter = image.limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)  # type: ignore[arg-type]

# Images are fetched cross-origin by browsers; only reads are exposed.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_methods=["GET"],
    allow_headers=["If-Modified-Since"],
    expose_headers=["Last-Modified", "Cache-Control"],
)

app.include_router(image.router)
app.include_router(metrics.router)


@app.get("/")
async def root() -> dict[str, str]:
    """Service banner."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "image": "/api/v1/image",
        "health": "/api/v1/health",
        "metrics": "/api/v1/metrics",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "image_service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
