"""On-disk cache of source images mirroring their remote paths."""

import asyncio
import logging
import os
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional

from image_service.core.errors import FetchFailed, InvalidResourceUri

logger = logging.getLogger(__name__)

# Errors meaning "there is no cached file at this path".
MISSING_FILE_ERRORS = (FileNotFoundError, NotADirectoryError, IsADirectoryError)


class DiskCache:
    """Image files stored under a root directory."""

    def __init__(self, root: str | Path):
        """Initialize the cache rooted at ``root``."""
        self.root = Path(root)

    def path_for(self, relative_path: str) -> Path:
        """
        Resolve a relative path inside the cache root.

        Raises:
            InvalidResourceUri: If the path is empty or escapes the root
        """
        parts = [part for part in PurePosixPath(relative_path).parts if part not in ("/", ".")]
        if not parts or ".." in parts:
            raise InvalidResourceUri(relative_path)
        return self.root.joinpath(*parts)

    async def get(self, path: Path) -> Optional[bytes]:
        """
        Read a cached file.

        Returns:
            File content, or None if no regular file is cached at ``path``

        Raises:
            FetchFailed: If the file exists but cannot be read
        """
        loop = asyncio.get_running_loop()
        try:
            content = await loop.run_in_executor(None, path.read_bytes)
        except MISSING_FILE_ERRORS:
            logger.debug(f"Disk cache miss: {path}")
            return None
        except OSError as e:
            logger.error(f"Error reading cached image {path}: {e}")
            raise FetchFailed(f"Failed to read cached image {str(path)!r}: {e}") from e
        logger.debug(f"Disk cache hit: {path} ({len(content)} bytes)")
        return content

    async def set(self, path: Path, content: bytes) -> None:
        """
        Store ``content`` at ``path``, creating directories on first use.

        Raises:
            FetchFailed: If the file cannot be written
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_atomic, path, content)
        except OSError as e:
            logger.error(f"Error caching image {path}: {e}")
            raise FetchFailed(f"Failed to cache image at {str(path)!r}: {e}") from e
        logger.debug(f"Disk cache set: {path} ({len(content)} bytes)")

    def _write_atomic(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def modified_at(self, path: Path) -> Optional[datetime]:
        """Modification time of a cached file, truncated to the second."""
        loop = asyncio.get_running_loop()
        try:
            info = await loop.run_in_executor(None, path.stat)
        except OSError as e:
            logger.debug(f"No modification time for {path}: {e}")
            return None
        if not stat.S_ISREG(info.st_mode):
            return None
        return datetime.fromtimestamp(int(info.st_mtime), tz=timezone.utc)
