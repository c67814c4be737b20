"""Rate limit backends.

InMemoryRateLimiter runs the combined limiter inside the process and is
suitable for single-instance deployments. RedisRateLimiter shares state
between instances through Lua scripts.
"""

import math
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis

from storefront.app.core.config import settings
from storefront.app.core.logging import get_logger
from storefront.app.middleware.rate_limit.clock import Clock, now_ms
from storefront.app.middleware.rate_limit.limiter import (
    DEFAULT_CLEANUP_MAX_AGE_MS,
    CombinedLimiter,
)
from storefront.app.middleware.rate_limit.models import RateLimitConfig, RateLimitResult
from storefront.app.middleware.rate_limit.redis_lua import (
    REFUND_TOKEN_SCRIPT,
    SLIDING_WINDOW_SCRIPT,
    TOKEN_BUCKET_SCRIPT,
)
from storefront.app.middleware.rate_limit.sliding_window import ms_until_slot
from storefront.app.middleware.rate_limit.token_bucket import (
    ms_until_full,
    ms_until_next_token,
    retry_after_seconds,
)

logger = get_logger(__name__)


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    name: str = "abstract"

    @abstractmethod
    async def try_acquire(
        self,
        identifier: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Check if a request from identifier is allowed.

        Args:
            identifier: Rate limit key
            config: Limits to apply (defaults when omitted)

        Returns:
            RateLimitResult with success status and header metadata
        """
        pass

    @abstractmethod
    async def cleanup(self, max_age_ms: float = DEFAULT_CLEANUP_MAX_AGE_MS) -> None:
        """Clean up expired entries."""
        pass

    @abstractmethod
    async def clear(self, identifier: Optional[str] = None) -> bool:
        """Reset limits for identifier, or for everyone when None."""
        pass

    @abstractmethod
    async def get_stats(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Current limiter state for identifier."""
        pass

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryRateLimiter(RateLimitBackend):
    """In-memory backend wrapping the combined limiter.

    The algorithms are synchronous and O(1) apart from window pruning,
    so they run directly on the event loop.
    """

    name = "memory"

    def __init__(
        self,
        limiter: Optional[CombinedLimiter] = None,
        shards: Optional[int] = None,
        clock: Clock = now_ms,
    ):
        self.limiter = limiter or CombinedLimiter(
            clock=clock,
            shards=shards or settings.rate_limit_store_shards,
        )

    async def try_acquire(
        self,
        identifier: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        return self.limiter.try_acquire(identifier, config)

    async def cleanup(self, max_age_ms: float = DEFAULT_CLEANUP_MAX_AGE_MS) -> None:
        self.limiter.cleanup(max_age_ms)

    async def clear(self, identifier: Optional[str] = None) -> bool:
        self.limiter.clear(identifier)
        return True

    async def get_stats(self, identifier: str) -> Optional[Dict[str, Any]]:
        stats = self.limiter.get_state(identifier)
        stats["backend"] = self.name
        return stats


class RedisRateLimiter(RateLimitBackend):
    """Redis-based distributed rate limiter.

    Token buckets live in hashes (tb:<identifier>), sliding windows in
    sorted sets of request timestamps (rl:<identifier>).
    """

    name = "redis"
    TOKEN_BUCKET_PREFIX = "tb"
    SLIDING_WINDOW_PREFIX = "rl"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        fail_closed: Optional[bool] = None,
        key_ttl_seconds: Optional[int] = None,
        clock: Clock = now_ms,
    ):
        """Initialize Redis rate limiter.

        Args:
            redis_client: Optional Redis client instance
            redis_url: Redis connection URL
            fail_closed: Deny requests when Redis fails (settings default)
            key_ttl_seconds: Expiry of token bucket hashes
            clock: Time source returning epoch milliseconds
        """
        self._redis_url = redis_url or settings.redis_url
        self._redis = redis_client
        self.fail_closed = (
            settings.rate_limit_fail_closed if fail_closed is None else fail_closed
        )
        self.key_ttl_seconds = key_ttl_seconds or settings.rate_limit_redis_key_ttl_seconds
        self._clock = clock

    def _get_redis(self) -> Any:
        """Get or create Redis connection."""
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _bucket_key(self, identifier: str) -> str:
        return f"{self.TOKEN_BUCKET_PREFIX}:{identifier}"

    def _window_key(self, identifier: str) -> str:
        return f"{self.SLIDING_WINDOW_PREFIX}:{identifier}"

    async def try_acquire(
        self,
        identifier: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Combined check: token bucket first, then sliding window."""
        config = config or RateLimitConfig()
        token_taken = False
        try:
            tb_result = await self._token_bucket(identifier, config)
            if not tb_result.success:
                return tb_result
            token_taken = True

            sw_result = await self._sliding_window(identifier, config)
            if not sw_result.success:
                await self._refund(identifier, config)
                return sw_result

            return RateLimitResult(
                success=True,
                limit=sw_result.limit,
                remaining=min(tb_result.remaining, sw_result.remaining),
                reset=max(tb_result.reset, sw_result.reset),
            )

        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}")
            error_type = "connection_error"
        except redis.TimeoutError as e:
            logger.warning(f"Redis timeout: {e}")
            error_type = "timeout"
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}")
            error_type = "redis_error"
        except Exception as e:
            logger.exception(f"Unexpected rate limit error: {e}")
            error_type = "unexpected"

        # The request never passed both checks, so the token it took goes back
        if token_taken:
            await self._refund(identifier, config)
        return self._handle_redis_failure(error_type, config)

    async def _token_bucket(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        redis_client = self._get_redis()
        capacity = max(0, int(config.max_tokens))
        now = int(self._clock())
        allowed, tokens, last_refill = await redis_client.eval(
            TOKEN_BUCKET_SCRIPT,
            1,
            self._bucket_key(identifier),  # KEYS[1]
            capacity,  # ARGV[1]
            config.refill_rate,  # ARGV[2]
            config.refill_interval_ms,  # ARGV[3]
            now,  # ARGV[4]
            self.key_ttl_seconds,  # ARGV[5]
        )
        tokens = float(tokens)

        if int(allowed) == 1:
            return RateLimitResult(
                success=True,
                limit=capacity,
                remaining=math.floor(tokens),
                reset=ms_until_full(tokens, capacity, config.refill_rate, config.refill_interval_ms),
            )

        reset = ms_until_next_token(now, float(last_refill), config.refill_interval_ms)
        return RateLimitResult(
            success=False,
            limit=capacity,
            remaining=0,
            reset=reset,
            retry_after=retry_after_seconds(reset),
        )

    async def _sliding_window(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        redis_client = self._get_redis()
        limit = max(0, int(config.max_requests))
        now = int(self._clock())
        allowed, count, oldest = await redis_client.eval(
            SLIDING_WINDOW_SCRIPT,
            1,
            self._window_key(identifier),  # KEYS[1]
            limit,  # ARGV[1]
            config.window_ms,  # ARGV[2]
            now,  # ARGV[3]
            f"{now}-{uuid.uuid4().hex}",  # ARGV[4] unique member
        )
        reset = ms_until_slot(now, float(oldest), config.window_ms)

        if int(allowed) == 1:
            return RateLimitResult(
                success=True,
                limit=limit,
                remaining=max(0, limit - int(count)),
                reset=reset,
            )
        return RateLimitResult(
            success=False,
            limit=limit,
            remaining=0,
            reset=reset,
            retry_after=retry_after_seconds(reset),
        )

    async def _refund(self, identifier: str, config: RateLimitConfig) -> bool:
        """Best-effort return of one token. Errors are logged, never raised."""
        try:
            await self._get_redis().eval(
                REFUND_TOKEN_SCRIPT,
                1,
                self._bucket_key(identifier),
                max(0, int(config.max_tokens)),
            )
        except redis.RedisError as e:
            logger.error(f"Failed to refund rate limit token for {identifier}: {e}")
            return False
        except Exception as e:
            logger.exception(f"Unexpected error refunding rate limit token: {e}")
            return False
        return True

    def _handle_redis_failure(self, error_type: str, config: RateLimitConfig) -> RateLimitResult:
        """Handle Redis failure with configurable fail-open/fail-closed policy.

        Args:
            error_type: Type of error for logging purposes
            config: Limits of the request being checked

        Returns:
            RateLimitResult based on fail_closed configuration
        """
        if self.fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. "
                "Request denied."
            )
            return RateLimitResult(
                success=False,
                limit=max(0, int(config.max_requests)),
                remaining=0,
                reset=int(config.window_ms),
                retry_after=retry_after_seconds(int(config.window_ms)),
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check."
        )
        return RateLimitResult(
            success=True,
            limit=max(0, int(config.max_requests)),
            remaining=0,
            reset=int(config.window_ms),
        )

    async def cleanup(self, max_age_ms: float = DEFAULT_CLEANUP_MAX_AGE_MS) -> None:
        """No-op for Redis (keys expire automatically)."""
        pass

    async def clear(self, identifier: Optional[str] = None) -> bool:
        """Delete the keys of identifier. Clearing everyone is not supported."""
        if identifier is None:
            logger.warning("Refusing to clear all rate limits on a shared Redis")
            return False
        try:
            deleted = await self._get_redis().delete(
                self._bucket_key(identifier), self._window_key(identifier)
            )
        except redis.RedisError as e:
            logger.error(f"Failed to clear rate limits for {identifier}: {e}")
            return False
        if deleted:
            logger.info(f"Cleared {deleted} rate limit keys for {identifier}")
        return bool(deleted)

    async def get_stats(self, identifier: str) -> Optional[Dict[str, Any]]:
        redis_client = self._get_redis()
        window_key = self._window_key(identifier)
        try:
            window_count = await redis_client.zcard(window_key)
            window_ttl_ms = await redis_client.pttl(window_key)
            bucket = await redis_client.hgetall(self._bucket_key(identifier))
        except redis.RedisError as e:
            logger.error(f"Failed to read rate limit stats for {identifier}: {e}")
            return None

        tokens = bucket.get(b"tokens") or bucket.get("tokens")
        return {
            "identifier": identifier,
            "backend": self.name,
            "tokens": float(tokens) if tokens is not None else None,
            "window_requests": int(window_count),
            "window_ttl_ms": int(window_ttl_ms),
        }

    async def health_check(self) -> bool:
        try:
            return bool(await self._get_redis().ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
            logger.info("Redis rate limiter connection closed")
