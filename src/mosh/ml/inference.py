"""Thread pool that runs blocking face detection off the event loop.

Every capture session submits its detector calls here, so the pool is the
one place that bounds concurrent ONNX work across sessions. A call waits at
most ``inference_timeout`` seconds for a slot; the frame validator treats
``InferenceBusyError`` like any other failed detection and keeps its state.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from mosh.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferenceBusyError(TimeoutError):
    """No inference slot became free within the timeout."""


class InferencePool:
    """Bounds concurrent detections and reports the load for health checks.

    Counters are only touched from the event loop thread.
    """

    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.inference_timeout
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="face-detection",
        )
        self._waiting = 0
        self._running = 0
        self._closed = False

    @property
    def active_count(self) -> int:
        """Detections currently executing."""
        return self._running

    @property
    def queue_depth(self) -> int:
        """Detections waiting for a free slot."""
        return self._waiting

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a pool thread once a slot is free.

        Raises:
            InferenceBusyError: If no slot frees up within the timeout.
            RuntimeError: If the pool has been shut down.
        """
        if self._closed:
            raise RuntimeError("Inference pool is shut down")
        async with self._slot():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)

    def shutdown(self) -> None:
        """Stop accepting work and wait for running detections to finish."""
        self._closed = True
        logger.debug("Shutting down inference pool (%d running)", self._running)
        self._executor.shutdown(wait=True)

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._waiting += 1
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.debug("No inference slot free after %.1fs", self._timeout)
            raise InferenceBusyError(f"No inference slot free after {self._timeout}s") from None
        finally:
            self._waiting -= 1

        self._running += 1
        try:
            yield
        finally:
            self._running -= 1
            self._slots.release()
