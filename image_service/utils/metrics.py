"""Logging configuration and Prometheus metrics for fetch timing and image sizes."""

import logging

import structlog
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Histogram, generate_latest

logger = logging.getLogger(__name__)

# Third-party loggers that are too chatty below INFO.
NOISY_LOGGERS = ("PIL", "botocore", "aiobotocore", "httpcore", "httpx")

TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

SIZE_BUCKETS = [
    1024 * 4,
    1024 * 16,
    1024 * 64,
    1024 * 256,
    1024 * 1024,
    1024 * 1024 * 4,
    1024 * 1024 * 16,
    1024 * 1024 * 64,
]

FETCH_DURATION = Histogram(
    "image_fetch_duration_seconds",
    "Time spent acquiring the source image and its watermarks",
    labelnames=["status"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

INPUT_SIZE = Histogram(
    "image_input_size_bytes",
    "Bytes of the source image and its watermarks",
    labelnames=["format"],
    buckets=SIZE_BUCKETS,
)

OUTPUT_SIZE = Histogram(
    "image_output_size_bytes",
    "Bytes of the encoded response",
    labelnames=["format"],
    buckets=SIZE_BUCKETS,
)


def build_formatter(log_format: str = "json") -> logging.Formatter:
    """
    Build the formatter for the root handler.

    ``json`` renders each record as one JSON object through structlog;
    anything else uses the plain text layout.
    """
    if log_format != "json":
        return logging.Formatter(TEXT_LOG_FORMAT)

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Format type ('json' or 'text')
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(log_format))

    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    logger.info(f"Logging configured: level={log_level}, format={log_format}")


def log_fetch_duration(address: str, duration_seconds: float, watermark_count: int) -> None:
    """Record how long the fetch phase of a request took."""
    FETCH_DURATION.labels(status="success").observe(duration_seconds)
    logger.info(
        f"Fetched {address} and {watermark_count} watermark(s) in {duration_seconds * 1000:.0f}ms"
    )


def log_fetch_failure(address: str, duration_seconds: float) -> None:
    """Record a fetch phase that ended without a source image."""
    FETCH_DURATION.labels(status="failure").observe(duration_seconds)
    logger.info(f"Fetching {address} failed after {duration_seconds * 1000:.0f}ms")


def log_size_metrics(output_format: str, input_size: int, output_size: int) -> None:
    """
    Record input and output sizes of a processed image.

    Args:
        output_format: Encoded format (jpeg, png, webp, heic)
        input_size: Total bytes of the source image and its watermarks
        output_size: Bytes of the encoded response
    """
    INPUT_SIZE.labels(format=output_format).observe(input_size)
    OUTPUT_SIZE.labels(format=output_format).observe(output_size)

    ratio = output_size / input_size if input_size else 0.0
    logger.info(
        f"Processed image: format={output_format}, input={input_size / 1024:.1f}KB, "
        f"output={output_size / 1024:.1f}KB, ratio={ratio:.2f}"
    )


def get_metrics() -> bytes:
    """Current metrics in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Content type of :func:`get_metrics` output."""
    return CONTENT_TYPE_LATEST
