"""Combined token bucket + sliding window limiter.

The token bucket gives burst protection, the sliding window a strict
rate over a longer period. A request must pass both.
"""

from typing import Any, Dict, Optional

from storefront.app.core.logging import get_logger
from storefront.app.middleware.rate_limit.clock import Clock, now_ms
from storefront.app.middleware.rate_limit.models import RateLimitConfig, RateLimitResult
from storefront.app.middleware.rate_limit.sliding_window import SlidingWindowLimiter
from storefront.app.middleware.rate_limit.store import InMemoryStore, KeyedLock, RateLimitStore
from storefront.app.middleware.rate_limit.token_bucket import TokenBucketLimiter

logger = get_logger(__name__)

DEFAULT_CLEANUP_MAX_AGE_MS = 3600000


class CombinedLimiter:
    """Applies a token bucket and a sliding window to the same identifier.

    Usage:
        limiter = CombinedLimiter()
        result = limiter.try_acquire("ip_10.0.0.1_1mo", RateLimitConfig(max_tokens=5))
        if not result.success:
            # reject, surface result.retry_after
    """

    def __init__(
        self,
        token_store: Optional[RateLimitStore] = None,
        window_store: Optional[RateLimitStore] = None,
        clock: Clock = now_ms,
        shards: int = 64,
    ):
        """Initialize the combined limiter.

        Args:
            token_store: Store for token buckets (new InMemoryStore if omitted)
            window_store: Store for sliding windows (new InMemoryStore if omitted)
            clock: Time source returning epoch milliseconds
            shards: Lock shards for stores created here and for the combined lock
        """
        self.token_bucket = TokenBucketLimiter(
            token_store if token_store is not None else InMemoryStore(shards), clock
        )
        self.sliding_window = SlidingWindowLimiter(
            window_store if window_store is not None else InMemoryStore(shards), clock
        )
        self._locks = KeyedLock(shards)

    def try_acquire(
        self,
        identifier: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Check both algorithms, returning the more restrictive outcome."""
        config = config or RateLimitConfig()

        with self._locks(identifier):
            tb_result = self.token_bucket.try_acquire(
                identifier,
                config.max_tokens,
                config.refill_rate,
                config.refill_interval_ms,
            )
            if not tb_result.success:
                return tb_result

            sw_result = self.sliding_window.try_acquire(
                identifier,
                config.max_requests,
                config.window_ms,
            )
            if not sw_result.success:
                # The request is rejected, so it must not keep the token
                self.token_bucket.refund(identifier, config.max_tokens)
                return sw_result

        return RateLimitResult(
            success=True,
            limit=sw_result.limit,
            remaining=min(tb_result.remaining, sw_result.remaining),
            reset=max(tb_result.reset, sw_result.reset),
        )

    def cleanup(self, max_age_ms: float = DEFAULT_CLEANUP_MAX_AGE_MS) -> Dict[str, int]:
        """Evict state idle for longer than max_age_ms from both stores."""
        removed = {
            "token_buckets": self.token_bucket.cleanup(max_age_ms),
            "sliding_windows": self.sliding_window.cleanup(max_age_ms),
        }
        if any(removed.values()):
            logger.debug(
                f"Rate limit cleanup removed {removed['token_buckets']} buckets "
                f"and {removed['sliding_windows']} windows"
            )
        return removed

    def clear(self, identifier: Optional[str] = None) -> None:
        """Forget one identifier, or everything when identifier is None."""
        if identifier is None:
            self.token_bucket.store.clear()
            self.sliding_window.store.clear()
            return
        with self._locks(identifier):
            self.token_bucket.reset(identifier)
            self.sliding_window.reset(identifier)

    def get_state(self, identifier: str) -> Dict[str, Any]:
        """Report stored state for identifier without consuming anything."""
        bucket = self.token_bucket.peek(identifier)
        return {
            "identifier": identifier,
            "tokens": bucket.tokens if bucket else None,
            "last_refill": bucket.last_refill if bucket else None,
            "window_requests": self.sliding_window.count(identifier),
        }


_default_limiter: Optional[CombinedLimiter] = None


def get_default_limiter() -> CombinedLimiter:
    """Get the process-wide limiter used by the module-level functions."""
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = CombinedLimiter()
    return _default_limiter


def reset_default_limiter(limiter: Optional[CombinedLimiter] = None) -> None:
    """Replace (or drop) the process-wide limiter."""
    global _default_limiter
    _default_limiter = limiter


def rate_limit_token_bucket(
    identifier: str,
    max_tokens: int = 10,
    refill_rate: float = 1,
    refill_interval_ms: float = 1000,
) -> RateLimitResult:
    return get_default_limiter().token_bucket.try_acquire(
        identifier, max_tokens, refill_rate, refill_interval_ms
    )


def rate_limit_sliding_window(
    identifier: str,
    max_requests: int = 100,
    window_ms: float = 60000,
) -> RateLimitResult:
    return get_default_limiter().sliding_window.try_acquire(identifier, max_requests, window_ms)


def rate_limit_combined(
    identifier: str,
    config: Optional[RateLimitConfig] = None,
) -> RateLimitResult:
    return get_default_limiter().try_acquire(identifier, config)


def cleanup_old_buckets(max_age_ms: float = DEFAULT_CLEANUP_MAX_AGE_MS) -> Dict[str, int]:
    return get_default_limiter().cleanup(max_age_ms)
