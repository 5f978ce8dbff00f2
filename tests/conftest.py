"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from io import BytesIO
from pathlib import Path
from typing import Generator

import numpy as np
import pytest
from PIL import Image

from image_service.core.fetcher import ImageFetcher
from image_service.core.worker import ComputePool


def encode_image(image: Image.Image, fmt: str = "PNG", **kwargs: object) -> bytes:
    """Encode a PIL image to bytes."""
    buffer = BytesIO()
    image.save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


def gradient_image(width: int, height: int) -> Image.Image:
    """Create an RGB image with a horizontal/vertical colour gradient."""
    xs = np.linspace(0, 255, width, dtype=np.float64)
    ys = np.linspace(0, 255, height, dtype=np.float64)
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[..., 0] = xs[np.newaxis, :].astype(np.uint8)
    arr[..., 1] = ys[:, np.newaxis].astype(np.uint8)
    arr[..., 2] = 128
    return Image.fromarray(arr, mode="RGB")


@pytest.fixture
def sample_image() -> Image.Image:
    """Create a sample test image."""
    return gradient_image(533, 533)


@pytest.fixture
def sample_jpeg(sample_image: Image.Image) -> bytes:
    """Sample image encoded as JPEG."""
    return encode_image(sample_image, "JPEG", quality=95)


@pytest.fixture
def watermark_png() -> bytes:
    """Opaque red RGBA watermark, twice as wide as it is tall."""
    return encode_image(Image.new("RGBA", (200, 100), color=(255, 0, 0, 255)))


@pytest.fixture
def watermark_rgb_png() -> bytes:
    """Blue watermark without an alpha band."""
    return encode_image(Image.new("RGB", (100, 100), color=(0, 0, 255)))


@pytest.fixture
def image_store(tmp_path: Path, sample_jpeg: bytes, watermark_png: bytes) -> Path:
    """Local image store holding a sample image and a watermark."""
    (tmp_path / "img-test.jpg").write_bytes(sample_jpeg)
    (tmp_path / "watermarks").mkdir()
    (tmp_path / "watermarks" / "logo.png").write_bytes(watermark_png)
    (tmp_path / "broken.png").write_bytes(b"definitely not an image")
    return tmp_path


@pytest.fixture
def image_fetcher(image_store: Path) -> ImageFetcher:
    """Create an image fetcher backed by the local image store."""
    return ImageFetcher(cache_root=image_store, timeout_seconds=1)


@pytest.fixture
def compute_pool() -> Generator[ComputePool, None, None]:
    """Create a small compute pool."""
    pool = ComputePool(max_workers=2)
    yield pool
    pool.shutdown()
