"""Token bucket rate limiting.

Allows bursts up to the bucket capacity while keeping a steady average
rate. Refill is computed lazily on each access; there are no timers.
"""

import math
from typing import Optional

from storefront.app.middleware.rate_limit.clock import Clock, now_ms
from storefront.app.middleware.rate_limit.models import RateLimitResult, TokenBucket
from storefront.app.middleware.rate_limit.store import InMemoryStore, RateLimitStore

KEY_PREFIX = "tb_"


def refill_bucket(
    bucket: TokenBucket,
    now: float,
    capacity: int,
    refill_rate: float,
    refill_interval_ms: float,
) -> None:
    """Add the tokens earned by whole intervals since the last refill.

    last_refill only moves when tokens were added, so a partial interval
    keeps counting towards the next refill.
    """
    if refill_interval_ms <= 0 or refill_rate <= 0:
        return
    elapsed = now - bucket.last_refill
    if elapsed <= 0:
        return
    intervals = math.floor(elapsed / refill_interval_ms)
    if intervals > 0:
        bucket.tokens = min(capacity, bucket.tokens + intervals * refill_rate)
        bucket.last_refill = now


def ms_until_full(
    tokens: float,
    capacity: int,
    refill_rate: float,
    refill_interval_ms: float,
) -> int:
    """Estimate how long until a bucket holding `tokens` is full again."""
    if refill_rate <= 0 or refill_interval_ms <= 0:
        return 0
    return max(0, math.ceil((capacity - tokens) * (refill_interval_ms / refill_rate)))


def ms_until_next_token(now: float, last_refill: float, refill_interval_ms: float) -> int:
    """Time left in the current refill interval, clamped to [0, interval]."""
    remaining = refill_interval_ms - (now - last_refill)
    return int(math.ceil(min(refill_interval_ms, max(0, remaining))))


def retry_after_seconds(reset_ms: int) -> int:
    return max(1, math.ceil(reset_ms / 1000))


class TokenBucketLimiter:
    """Per-identifier token buckets kept in a RateLimitStore."""

    def __init__(self, store: Optional[RateLimitStore] = None, clock: Clock = now_ms):
        self.store = store if store is not None else InMemoryStore()
        self._clock = clock

    def try_acquire(
        self,
        identifier: str,
        max_tokens: int = 10,
        refill_rate: float = 1,
        refill_interval_ms: float = 1000,
    ) -> RateLimitResult:
        """Consume one token for identifier if one is available.

        Args:
            identifier: Client key
            max_tokens: Bucket capacity; zero or less denies everything
            refill_rate: Tokens added per elapsed refill interval
            refill_interval_ms: Length of one refill interval

        Returns:
            RateLimitResult; on denial reset is the time to the next token
        """
        capacity = max(0, int(max_tokens))
        key = KEY_PREFIX + identifier

        with self.store.lock(key):
            now = self._clock()
            bucket = self.store.get(key)
            if bucket is None:
                bucket = TokenBucket(tokens=float(capacity), last_refill=now)
                self.store.set(key, bucket)

            refill_bucket(bucket, now, capacity, refill_rate, refill_interval_ms)

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return RateLimitResult(
                    success=True,
                    limit=capacity,
                    remaining=math.floor(bucket.tokens),
                    reset=ms_until_full(bucket.tokens, capacity, refill_rate, refill_interval_ms),
                )

            reset = ms_until_next_token(now, bucket.last_refill, refill_interval_ms)
            return RateLimitResult(
                success=False,
                limit=capacity,
                remaining=0,
                reset=reset,
                retry_after=retry_after_seconds(reset),
            )

    def refund(self, identifier: str, max_tokens: int) -> None:
        """Give back one token consumed by a request that was denied later."""
        capacity = max(0, int(max_tokens))
        key = KEY_PREFIX + identifier
        with self.store.lock(key):
            bucket = self.store.get(key)
            if bucket is not None:
                bucket.tokens = min(capacity, bucket.tokens + 1)

    def peek(self, identifier: str) -> Optional[TokenBucket]:
        """Return a copy of the bucket state without refilling or consuming."""
        key = KEY_PREFIX + identifier
        with self.store.lock(key):
            bucket = self.store.get(key)
            if bucket is None:
                return None
            return TokenBucket(tokens=bucket.tokens, last_refill=bucket.last_refill)

    def reset(self, identifier: str) -> None:
        self.store.delete(KEY_PREFIX + identifier)

    def cleanup(self, max_age_ms: float) -> int:
        """Remove buckets not refilled for longer than max_age_ms.

        Returns:
            Number of buckets removed
        """
        removed = 0
        for key, _ in self.store.items():
            if not key.startswith(KEY_PREFIX):
                continue
            with self.store.lock(key):
                bucket = self.store.get(key)
                if bucket is not None and self._clock() - bucket.last_refill > max_age_ms:
                    self.store.delete(key)
                    removed += 1
        return removed
