"""Tests for the on-disk image cache."""

from datetime import timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from image_service.core.cache import DiskCache
from image_service.core.errors import FetchFailed, InvalidResourceUri


class TestPathResolution:
    """Test mapping relative paths into the cache root."""

    def test_nested_path(self, tmp_path: Path) -> None:
        """Test nested paths stay under the root."""
        cache = DiskCache(tmp_path)
        assert cache.path_for("a/b/c.jpg") == tmp_path / "a" / "b" / "c.jpg"

    def test_leading_slash_is_relative(self, tmp_path: Path) -> None:
        """Test URL paths map under the root."""
        cache = DiskCache(tmp_path)
        assert cache.path_for("/images/x.png") == tmp_path / "images" / "x.png"

    def test_parent_traversal_rejected(self, tmp_path: Path) -> None:
        """Test paths cannot escape the root."""
        cache = DiskCache(tmp_path)
        with pytest.raises(InvalidResourceUri):
            cache.path_for("../etc/passwd")
        with pytest.raises(InvalidResourceUri):
            cache.path_for("images/../../secret.jpg")

    def test_empty_path_rejected(self, tmp_path: Path) -> None:
        """Test an empty path is not an image."""
        cache = DiskCache(tmp_path)
        with pytest.raises(InvalidResourceUri):
            cache.path_for("/")


class TestDiskCache:
    """Test reading and writing cached images."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, tmp_path: Path) -> None:
        """Test basic set and get operations."""
        cache = DiskCache(tmp_path)
        path = cache.path_for("remote/photos/a.jpg")

        await cache.set(path, b"image bytes")

        assert await cache.get(path) == b"image bytes"
        assert path.read_bytes() == b"image bytes"

    @pytest.mark.asyncio
    async def test_cache_miss(self, tmp_path: Path) -> None:
        """Test cache miss returns None."""
        cache = DiskCache(tmp_path)
        assert await cache.get(cache.path_for("missing.jpg")) is None

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, tmp_path: Path) -> None:
        """Test writes replace the file atomically."""
        cache = DiskCache(tmp_path)
        path = cache.path_for("a.jpg")

        await cache.set(path, b"first")
        await cache.set(path, b"second")

        assert await cache.get(path) == b"second"
        assert [p.name for p in tmp_path.iterdir()] == ["a.jpg"]

    @pytest.mark.asyncio
    async def test_modified_at(self, tmp_path: Path) -> None:
        """Test modification time is UTC with whole seconds."""
        cache = DiskCache(tmp_path)
        path = cache.path_for("a.jpg")
        assert await cache.modified_at(path) is None

        await cache.set(path, b"x")
        modified = await cache.modified_at(path)

        assert modified is not None
        assert modified.tzinfo == timezone.utc
        assert modified.microsecond == 0

    @pytest.mark.asyncio
    async def test_modified_at_directory(self, tmp_path: Path) -> None:
        """Test a directory has no modification time."""
        cache = DiskCache(tmp_path)
        (tmp_path / "folder").mkdir()
        assert await cache.modified_at(cache.path_for("folder")) is None


class TestDiskCacheErrors:
    """Test filesystem errors on cached paths."""

    @pytest.mark.asyncio
    async def test_directory_is_a_miss(self, tmp_path: Path) -> None:
        """Test a directory at the cache path reads as a miss."""
        cache = DiskCache(tmp_path)
        (tmp_path / "folder").mkdir()
        assert await cache.get(cache.path_for("folder")) is None

    @pytest.mark.asyncio
    async def test_path_below_file_is_a_miss(self, tmp_path: Path) -> None:
        """Test a path nested under a regular file reads as a miss."""
        cache = DiskCache(tmp_path)
        (tmp_path / "a.jpg").write_bytes(b"x")
        assert await cache.get(cache.path_for("a.jpg/b.jpg")) is None

    @pytest.mark.asyncio
    async def test_unreadable_file(self, tmp_path: Path) -> None:
        """Test a read error is a fetch failure."""
        cache = DiskCache(tmp_path)
        path = cache.path_for("a.jpg")
        path.write_bytes(b"x")

        with patch.object(Path, "read_bytes", side_effect=PermissionError("denied")):
            with pytest.raises(FetchFailed):
                await cache.get(path)

    @pytest.mark.asyncio
    async def test_unwritable_path(self, tmp_path: Path) -> None:
        """Test a write below a regular file is a fetch failure."""
        cache = DiskCache(tmp_path)
        (tmp_path / "a.jpg").write_bytes(b"x")

        with pytest.raises(FetchFailed):
            await cache.set(cache.path_for("a.jpg/b.jpg"), b"y")

        assert (tmp_path / "a.jpg").read_bytes() == b"x"
