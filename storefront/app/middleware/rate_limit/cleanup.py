"""Periodic eviction of idle rate limit state.

Buckets and windows of one-off clients would otherwise accumulate
forever in the in-memory stores.
"""

import asyncio
from typing import TYPE_CHECKING, Optional

from storefront.app.core.config import settings
from storefront.app.core.logging import get_logger

if TYPE_CHECKING:
    from storefront.app.middleware.rate_limit.backends import RateLimitBackend

logger = get_logger(__name__)


class RateLimitCleanupTask:
    """Runs backend.cleanup() in the background at a fixed interval.

    Usage:
        task = RateLimitCleanupTask(limiter)
        await task.start()
        ...
        await task.stop()
    """

    def __init__(
        self,
        backend: "RateLimitBackend",
        interval_seconds: Optional[float] = None,
        max_age_ms: Optional[float] = None,
    ):
        """Initialize the cleanup task.

        Args:
            backend: Backend (or RateLimiter facade) exposing async cleanup()
            interval_seconds: Time between cleanups (settings default: 1 hour)
            max_age_ms: Idle age after which state is evicted
        """
        self._backend = backend
        self._interval = (
            interval_seconds
            if interval_seconds is not None
            else settings.rate_limit_cleanup_interval_seconds
        )
        self._max_age_ms = (
            max_age_ms if max_age_ms is not None else settings.rate_limit_cleanup_max_age_ms
        )
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Rate limit cleanup already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started rate limit cleanup (interval: {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Rate limit cleanup did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped rate limit cleanup")

    async def run_once(self) -> None:
        await self._backend.cleanup(self._max_age_ms)
        self.runs += 1

    async def _run(self) -> None:
        """Wait one interval, clean up, repeat until stopped."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error during rate limit cleanup: {e}")
