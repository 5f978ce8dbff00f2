"""Compute pool that runs blocking image work off the event loop."""

import asyncio
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures.thread import BrokenThreadPool
from functools import partial
from typing import Callable, Optional, TypeVar

from image_service.api.config import settings
from image_service.core.errors import ImageProcessingError, WorkerDispatchFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ComputePool:
    """
    Bounded worker pool for CPU-bound pipeline runs.

    Each submission gets its own single-use future: the worker publishes
    exactly one outcome through it and the awaiting request task resumes.
    If the task is cancelled the worker still runs to completion and its
    outcome is discarded.
    """

    def __init__(self, max_workers: Optional[int] = None):
        """Initialize the pool, sized to the CPU count by default."""
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="image-pipeline"
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """
        Run ``func(*args)`` on the pool and wait for its result.

        Raises:
            ImageProcessingError: Errors raised by ``func`` itself, unchanged
            WorkerDispatchFailed: If the job cannot be submitted or the worker
                fails outside of the pipeline's own error handling
        """
        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(self._executor, partial(func, *args))
        except (RuntimeError, BrokenThreadPool) as e:
            logger.error(f"Failed to submit job to the compute pool: {e}")
            raise WorkerDispatchFailed(f"Failed to submit job to the compute pool: {e}") from e

        try:
            return await future
        except ImageProcessingError:
            raise
        except Exception as e:
            logger.error(f"Compute pool worker failed: {e}", exc_info=True)
            raise WorkerDispatchFailed(f"Compute pool worker failed: {e}") from e

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs and release the worker threads."""
        self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info("Compute pool shut down")


_pool: Optional[ComputePool] = None
_pool_lock = threading.Lock()


def get_compute_pool() -> ComputePool:
    """Get the process-wide compute pool, creating it on first use."""
    global _pool
    with _pool_lock:
        if _pool is None or _pool.closed:
            _pool = ComputePool(max_workers=settings.compute_workers)
            logger.info(f"Compute pool started with {_pool.max_workers} workers")
        return _pool


def shutdown_compute_pool() -> None:
    """Shut down the process-wide compute pool if it was started."""
    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    if pool is not None:
        pool.shutdown()
