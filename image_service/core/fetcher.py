"""Image acquisition from the local store, HTTP(S) and S3."""

import asyncio
import logging
from email.utils import format_datetime, parsedate_to_datetime
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import aioboto3
import httpx

from image_service.api.config import (
    FETCH_CONNECT_TIMEOUT_SECONDS,
    FETCH_TIMEOUT_SECONDS,
    MAX_INPUT_SIZE_MB,
)
from image_service.core.cache import DiskCache
from image_service.core.errors import (
    ClientErrorStatus,
    FetchFailed,
    FetchTimedOut,
    ImageTooLarge,
    InvalidResourceUri,
    ResourceNotFound,
    ResourceUnavailable,
)

logger = logging.getLogger(__name__)

HTTP_SCHEMES = ("http", "https")


class ImageFetcher:
    """Resolve image addresses to bytes, caching remote images on disk."""

    def __init__(
        self,
        cache_root: str | Path,
        timeout_seconds: int = FETCH_TIMEOUT_SECONDS,
        connect_timeout_seconds: int = FETCH_CONNECT_TIMEOUT_SECONDS,
        max_input_size_mb: int = MAX_INPUT_SIZE_MB,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_region: str = "us-east-1",
        allowed_buckets: Optional[list[str]] = None,
        endpoint_url: Optional[str] = None,
    ):
        """Initialize the fetcher with its cache root, limits and AWS credentials."""
        self.cache = DiskCache(cache_root)
        self.timeout_seconds = timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.max_input_size_bytes = max_input_size_mb * 1024 * 1024
        self.aws_region = aws_region
        self.allowed_buckets = allowed_buckets or []
        self.endpoint_url = endpoint_url
        self.session = aioboto3.Session(
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=aws_region,
        )

    def cache_path(self, address: str) -> Path:
        """
        Local file backing an image address.

        Remote URLs map to their path component (prefixed by the bucket for
        S3); anything else is a path relative to the cache root.

        Raises:
            InvalidResourceUri: If the address cannot be resolved
        """
        parsed = urlparse(address)
        if parsed.scheme in HTTP_SCHEMES:
            if not parsed.netloc:
                raise InvalidResourceUri(address)
            return self.cache.path_for(parsed.path)
        if parsed.scheme == "s3":
            bucket, key = self._parse_s3_url(address)
            return self.cache.path_for(f"{bucket}/{key}")
        if parsed.scheme or parsed.netloc:
            raise InvalidResourceUri(address)
        return self.cache.path_for(address)

    async def fetch(self, address: str) -> bytes:
        """
        Fetch image bytes.

        Args:
            address: http(s) URL, s3://bucket/key URL or path relative to the cache root

        Returns:
            Image content as bytes

        Raises:
            ResourceUnavailable: If the image cannot be acquired
        """
        path = self.cache_path(address)
        scheme = urlparse(address).scheme

        cached = await self.cache.get(path)
        if cached is not None:
            return cached

        if scheme in HTTP_SCHEMES:
            content = await self._fetch_http(address)
        elif scheme == "s3":
            content = await self._fetch_s3(address)
        else:
            raise ResourceNotFound(address)

        self._check_size(address, len(content))
        await self.cache.set(path, content)
        return content

    async def last_modified(self, address: str) -> Optional[str]:
        """HTTP date of the cached file's modification time, if cached."""
        modified = await self.cache.modified_at(self.cache_path(address))
        if modified is None:
            return None
        return format_datetime(modified, usegmt=True)

    async def is_not_modified(self, address: str, if_modified_since: Optional[str]) -> bool:
        """Whether the client's copy matches the cached file."""
        if not if_modified_since:
            return False

        modified = await self.cache.modified_at(self.cache_path(address))
        if modified is None:
            return False

        try:
            since = parsedate_to_datetime(if_modified_since)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring malformed If-Modified-Since: {if_modified_since!r}")
            return False

        return since == modified

    async def _fetch_http(self, url: str) -> bytes:
        logger.info(f"Downloading image: {url}")
        timeout = httpx.Timeout(self.timeout_seconds, connect=self.connect_timeout_seconds)
        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                response = await asyncio.wait_for(client.get(url), timeout=self.timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise FetchTimedOut(f"Timeout downloading {url!r} after {self.timeout_seconds}s")
        except httpx.InvalidURL:
            raise InvalidResourceUri(url)
        except httpx.HTTPError as e:
            logger.error(f"Error downloading image {url!r}: {e}")
            raise FetchFailed(f"Failed to download {url!r}: {e}")

        if 400 <= response.status_code < 500:
            raise ClientErrorStatus(response.status_code, url)
        if not response.is_success:
            raise FetchFailed(f"Received status {response.status_code} while downloading {url!r}")

        logger.info(f"Downloaded image: {url} ({len(response.content) / 1024:.1f}KB)")
        return response.content

    async def _fetch_s3(self, s3_url: str) -> bytes:
        bucket, key = self._parse_s3_url(s3_url)
        logger.info(f"Fetching image from S3: bucket={bucket}, key={key}")

        client_config = {"region_name": self.aws_region}
        if self.endpoint_url:
            client_config["endpoint_url"] = self.endpoint_url

        try:
            async with self.session.client("s3", **client_config) as s3_client:
                try:
                    response = await asyncio.wait_for(
                        s3_client.get_object(Bucket=bucket, Key=key),
                        timeout=self.timeout_seconds,
                    )
                    content_length = response.get("ContentLength", 0)
                    self._check_size(s3_url, content_length)

                    body = response["Body"]
                    content: bytes = await asyncio.wait_for(
                        body.read(), timeout=self.timeout_seconds
                    )
                except s3_client.exceptions.NoSuchKey:
                    raise ClientErrorStatus(404, s3_url)
                except asyncio.TimeoutError:
                    raise FetchTimedOut(
                        f"Timeout fetching {s3_url!r} after {self.timeout_seconds}s"
                    )
        except ResourceUnavailable:
            raise
        except Exception as e:
            logger.error(f"Error fetching image from S3: {e}")
            raise FetchFailed(f"Failed to fetch {s3_url!r}: {e}")

        logger.info(f"Fetched image from S3: {len(content) / 1024:.1f}KB")
        return content

    def _check_size(self, address: str, size: int) -> None:
        if size > self.max_input_size_bytes:
            raise ImageTooLarge(
                f"Image too large: {address!r} is {size / (1024 * 1024):.2f}MB "
                f"(max: {self.max_input_size_bytes / (1024 * 1024):.0f}MB)"
            )

    def _parse_s3_url(self, s3_url: str) -> tuple[str, str]:
        """
        Parse S3 URL into bucket and key.

        Raises:
            InvalidResourceUri: If URL is invalid or bucket not allowed
        """
        parsed = urlparse(s3_url)
        bucket = parsed.netloc
        key = parsed.path.lstrip("/")

        if parsed.scheme != "s3" or not bucket or not key:
            raise InvalidResourceUri(s3_url)

        if self.allowed_buckets and bucket not in self.allowed_buckets:
            raise InvalidResourceUri(s3_url)

        return bucket, key
