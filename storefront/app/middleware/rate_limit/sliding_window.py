"""Exact sliding window rate limiting.

Every admitted request's timestamp is kept, so the window boundary is
recomputed from real timestamps on each call instead of fixed buckets.
"""

import math
from collections import deque
from typing import Deque, Optional

from storefront.app.middleware.rate_limit.clock import Clock, now_ms
from storefront.app.middleware.rate_limit.models import RateLimitResult
from storefront.app.middleware.rate_limit.store import InMemoryStore, RateLimitStore
from storefront.app.middleware.rate_limit.token_bucket import retry_after_seconds

KEY_PREFIX = "sw_"


def prune(timestamps: Deque[float], now: float, window_ms: float) -> None:
    """Drop timestamps that fell out of the window ending at now."""
    while timestamps and now - timestamps[0] >= window_ms:
        timestamps.popleft()


def ms_until_slot(now: float, oldest: float, window_ms: float) -> int:
    """Time until the oldest timestamp leaves the window, clamped to [0, window]."""
    remaining = window_ms - (now - oldest)
    return int(math.ceil(min(window_ms, max(0, remaining))))


class SlidingWindowLimiter:
    """Per-identifier request logs kept in a RateLimitStore."""

    def __init__(self, store: Optional[RateLimitStore] = None, clock: Clock = now_ms):
        self.store = store if store is not None else InMemoryStore()
        self._clock = clock

    def try_acquire(
        self,
        identifier: str,
        max_requests: int = 100,
        window_ms: float = 60000,
    ) -> RateLimitResult:
        """Admit the request if fewer than max_requests landed in the window."""
        limit = max(0, int(max_requests))
        key = KEY_PREFIX + identifier

        with self.store.lock(key):
            now = self._clock()
            timestamps = self.store.get(key)
            if timestamps is None:
                timestamps = deque()
            prune(timestamps, now, window_ms)

            if len(timestamps) < limit:
                # Keep the log ordered when the clock steps backwards
                timestamps.append(max(now, timestamps[-1]) if timestamps else now)
                self.store.set(key, timestamps)
                return RateLimitResult(
                    success=True,
                    limit=limit,
                    remaining=limit - len(timestamps),
                    reset=ms_until_slot(now, timestamps[0], window_ms),
                )

            if timestamps:
                self.store.set(key, timestamps)
                reset = ms_until_slot(now, timestamps[0], window_ms)
            else:
                # Nothing to wait for: max_requests <= 0
                self.store.delete(key)
                reset = int(math.ceil(window_ms))

            return RateLimitResult(
                success=False,
                limit=limit,
                remaining=0,
                reset=reset,
                retry_after=retry_after_seconds(reset),
            )

    def count(self, identifier: str, window_ms: Optional[float] = None) -> int:
        """Number of stored timestamps, optionally only those inside window_ms."""
        key = KEY_PREFIX + identifier
        with self.store.lock(key):
            timestamps = self.store.get(key)
            if not timestamps:
                return 0
            if window_ms is None:
                return len(timestamps)
            now = self._clock()
            return sum(1 for ts in timestamps if now - ts < window_ms)

    def reset(self, identifier: str) -> None:
        self.store.delete(KEY_PREFIX + identifier)

    def cleanup(self, max_age_ms: float) -> int:
        """Prune every window against max_age_ms and drop the empty ones.

        Returns:
            Number of windows removed
        """
        removed = 0
        for key, _ in self.store.items():
            if not key.startswith(KEY_PREFIX):
                continue
            with self.store.lock(key):
                timestamps = self.store.get(key)
                if timestamps is None:
                    continue
                prune(timestamps, self._clock(), max_age_ms)
                if not timestamps:
                    self.store.delete(key)
                    removed += 1
        return removed
