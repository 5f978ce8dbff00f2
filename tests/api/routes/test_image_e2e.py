"""End-to-end integration tests for image API endpoint."""

from io import BytesIO
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from PIL import Image

from image_service.api.routes.image import get_image_fetcher, router
from image_service.core.fetcher import ImageFetcher
from image_service.core.worker import ComputePool, get_compute_pool


class TestImageEndToEnd:
    """End-to-end tests through the local image store and the compute pool."""

    @pytest.fixture
    def app(self, image_fetcher: ImageFetcher, compute_pool: ComputePool) -> FastAPI:
        """Create test FastAPI app backed by the local image store."""
        app = FastAPI()
        app.include_router(router)
        app.dependency_overrides[get_image_fetcher] = lambda: image_fetcher
        app.dependency_overrides[get_compute_pool] = lambda: compute_pool
        return app

    @pytest.fixture
    def client(self, app: FastAPI) -> TestClient:
        """Create test client."""
        return TestClient(app)

    def test_plain_jpeg(self, client: TestClient) -> None:
        """Test re-encoding the stored image keeps its size."""
        response = client.get(
            "/api/v1/image", params={"image_address": "img-test.jpg", "format": "jpeg"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert "last-modified" in response.headers
        assert "cache-control" in response.headers

        with Image.open(BytesIO(response.content)) as image:
            assert image.format == "JPEG"
            assert image.size == (533, 533)

    def test_resize_to_square(self, client: TestClient) -> None:
        """Test w=100,h=100 on the 533x533 sample gives 100x100."""
        response = client.get(
            "/api/v1/image",
            params={"image_address": "img-test.jpg", "format": "webp", "w": 100, "h": 100},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/webp"
        with Image.open(BytesIO(response.content)) as image:
            assert image.size == (100, 100)

    def test_crop_and_square(self, client: TestClient) -> None:
        """Test a crop followed by white square padding."""
        response = client.get(
            "/api/v1/image",
            params={
                "image_address": "img-test.jpg",
                "format": "png",
                "crop_w": 200,
                "crop_h": 100,
                "square": "true",
            },
        )

        assert response.status_code == 200
        with Image.open(BytesIO(response.content)) as image:
            assert image.size == (200, 200)
            assert image.convert("RGB").getpixel((100, 0)) == (255, 255, 255)

    def test_watermarked_image(self, client: TestClient) -> None:
        """Test a watermark from the local store is composited."""
        response = client.get(
            "/api/v1/image",
            params={
                "image_address": "img-test.jpg",
                "format": "png",
                "watermarks[0].image_address": "watermarks/logo.png",
                "watermarks[0].size": 20,
                "watermarks[0].x": 0,
                "watermarks[0].y": 0,
            },
        )

        assert response.status_code == 200
        with Image.open(BytesIO(response.content)) as image:
            assert image.convert("RGB").getpixel((5, 5)) == (255, 0, 0)

    def test_missing_and_broken_watermarks_are_skipped(self, client: TestClient) -> None:
        """Test watermark failures never fail the request."""
        response = client.get(
            "/api/v1/image",
            params={
                "image_address": "img-test.jpg",
                "format": "jpeg",
                "watermarks[0].image_address": "watermarks/missing.png",
                "watermarks[0].size": 20,
                "watermarks[1].image_address": "broken.png",
                "watermarks[1].size": 20,
            },
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"

    def test_directory_watermark_is_skipped(
        self, client: TestClient, image_store: Path
    ) -> None:
        """Test a watermark address naming a directory is dropped and the rest still composite."""
        (image_store / "folder").mkdir()

        response = client.get(
            "/api/v1/image",
            params={
                "image_address": "img-test.jpg",
                "format": "png",
                "watermarks[0].image_address": "folder",
                "watermarks[0].size": 10,
                "watermarks[1].image_address": "watermarks/logo.png",
                "watermarks[1].size": 20,
                "watermarks[1].x": 0,
                "watermarks[1].y": 0,
            },
        )

        assert response.status_code == 200
        with Image.open(BytesIO(response.content)) as image:
            assert image.convert("RGB").getpixel((5, 5)) == (255, 0, 0)

    def test_missing_image(self, client: TestClient) -> None:
        """Test a missing source image is a 404."""
        response = client.get(
            "/api/v1/image", params={"image_address": "nope.jpg", "format": "jpeg"}
        )
        assert response.status_code == 404

    def test_directory_image(self, client: TestClient, image_store: Path) -> None:
        """Test a source address naming a directory is a 404."""
        (image_store / "folder").mkdir()
        response = client.get(
            "/api/v1/image", params={"image_address": "folder", "format": "jpeg"}
        )
        assert response.status_code == 404

    def test_broken_image(self, client: TestClient) -> None:
        """Test an undecodable source image is a 400."""
        response = client.get(
            "/api/v1/image", params={"image_address": "broken.png", "format": "jpeg"}
        )

        assert response.status_code == 400
        assert "cannot be opened" in response.json()["detail"]

    def test_not_modified(self, client: TestClient) -> None:
        """Test revalidation with the returned Last-Modified."""
        params = {"image_address": "img-test.jpg", "format": "jpeg"}
        first = client.get("/api/v1/image", params=params)
        last_modified = first.headers["last-modified"]

        second = client.get(
            "/api/v1/image", params=params, headers={"If-Modified-Since": last_modified}
        )

        assert second.status_code == 304
        assert second.content == b""

    def test_invalid_uri(self, client: TestClient) -> None:
        """Test addresses escaping the image store are rejected."""
        response = client.get(
            "/api/v1/image", params={"image_address": "../secret.jpg", "format": "jpeg"}
        )

        assert response.status_code == 400
        assert "not valid" in response.json()["detail"]

    def test_health(self, client: TestClient, image_store: Path) -> None:
        """Test health reports the image store and the pool."""
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["image_store"]["path"] == str(image_store)
        assert data["checks"]["compute_pool"]["workers"] == 2


class TestApplication:
    """Test the assembled application."""

    def test_root(self) -> None:
        """Test the service banner."""
        from image_service.main import app

        response = TestClient(app).get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Image Transformation Service"
