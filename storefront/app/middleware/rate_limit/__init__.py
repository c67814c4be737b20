"""Rate limiting middleware for the storefront.

This module provides rate limiting functionality to prevent abuse
and ensure fair usage of the platform. Every request must pass a token
bucket (burst protection) and an exact sliding window, backed either by
in-process stores or by Redis.
"""

from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from storefront.app.core.config import settings
from storefront.app.core.logging import get_log_context, get_logger
from storefront.app.exceptions import RateLimitExceededError

# Re-export models
from storefront.app.middleware.rate_limit.models import (
    RateLimitConfig,
    RateLimitPolicy,
    RateLimitResult,
    TokenBucket,
)

# Re-export stores and algorithms
from storefront.app.middleware.rate_limit.store import InMemoryStore, KeyedLock, RateLimitStore
from storefront.app.middleware.rate_limit.token_bucket import TokenBucketLimiter
from storefront.app.middleware.rate_limit.sliding_window import SlidingWindowLimiter
from storefront.app.middleware.rate_limit.limiter import (
    CombinedLimiter,
    cleanup_old_buckets,
    get_default_limiter,
    rate_limit_combined,
    rate_limit_sliding_window,
    rate_limit_token_bucket,
    reset_default_limiter,
)
from storefront.app.middleware.rate_limit.identifier import (
    get_request_identifier,
    is_api_key_identifier,
    redact_identifier,
    simple_hash,
)
from storefront.app.middleware.rate_limit.policies import (
    RATE_LIMIT_PRESETS,
    get_rate_limit_headers,
    get_rate_limit_policy,
)

# Re-export backends
from storefront.app.middleware.rate_limit.backends import (
    InMemoryRateLimiter,
    RateLimitBackend,
    RedisRateLimiter,
)
from storefront.app.middleware.rate_limit.cleanup import RateLimitCleanupTask

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateLimitConfig",
    "RateLimitPolicy",
    "RateLimitResult",
    "TokenBucket",
    # Stores and algorithms
    "RateLimitStore",
    "InMemoryStore",
    "KeyedLock",
    "TokenBucketLimiter",
    "SlidingWindowLimiter",
    "CombinedLimiter",
    "rate_limit_token_bucket",
    "rate_limit_sliding_window",
    "rate_limit_combined",
    "cleanup_old_buckets",
    "get_default_limiter",
    "reset_default_limiter",
    "get_request_identifier",
    "simple_hash",
    "RATE_LIMIT_PRESETS",
    "get_rate_limit_policy",
    "get_rate_limit_headers",
    # Backends
    "RateLimitBackend",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RateLimitCleanupTask",
    # Main classes
    "RateLimiter",
    "RateLimitMiddleware",
    "get_rate_limiter",
    "reset_rate_limiter",
    "require_rate_limit",
    "resolve_policy",
]


class RateLimiter:
    """Main rate limiter that selects appropriate backend.

    Automatically selects Redis backend if Redis is enabled in settings,
    otherwise uses in-memory backend.
    """

    def __init__(
        self,
        use_redis: Optional[bool] = None,
        redis_client: Optional[Any] = None,
        default_config: Optional[RateLimitConfig] = None,
    ):
        """Initialize rate limiter with appropriate backend.

        Args:
            use_redis: Force Redis usage (None = auto-detect from settings)
            redis_client: Optional Redis client for the Redis backend
            default_config: Limits used when a call passes none
        """
        self.default_config = default_config or RateLimitConfig.from_settings(settings)

        should_use_redis = use_redis if use_redis is not None else settings.redis_enabled

        if should_use_redis:
            try:
                self._backend: RateLimitBackend = RedisRateLimiter(redis_client=redis_client)
                logger.info("Using Redis rate limiter backend")
            except Exception as e:
                logger.warning(f"Failed to initialize Redis rate limiter: {e}. Using in-memory.")
                self._backend = InMemoryRateLimiter()
        else:
            self._backend = InMemoryRateLimiter()
            logger.debug("Using in-memory rate limiter backend")

    @property
    def backend(self) -> RateLimitBackend:
        return self._backend

    async def try_acquire(
        self,
        identifier: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Check if request is allowed."""
        return await self._backend.try_acquire(identifier, config or self.default_config)

    async def cleanup(self, max_age_ms: Optional[float] = None) -> None:
        """Clean up expired entries."""
        if max_age_ms is None:
            max_age_ms = settings.rate_limit_cleanup_max_age_ms
        await self._backend.cleanup(max_age_ms)

    async def clear(self, identifier: Optional[str] = None) -> bool:
        return await self._backend.clear(identifier)

    async def get_stats(self, identifier: str) -> Optional[Dict[str, Any]]:
        return await self._backend.get_stats(identifier)

    async def health_check(self) -> bool:
        return await self._backend.health_check()

    async def close(self) -> None:
        await self._backend.close()


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter instance."""
    global _rate_limiter
    _rate_limiter = None


def resolve_policy(path: str, identifier: str) -> Optional[RateLimitPolicy]:
    policy = get_rate_limit_policy(path)
    if policy is not None and is_api_key_identifier(identifier):
        return RateLimitPolicy("api_key", RATE_LIMIT_PRESETS["api_key"])
    return policy


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    The policy comes from the request path (auth, payment, admin, ...);
    clients sending an API key get the api_key policy. Each policy keeps
    its own budget per client.
    """

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        enabled: bool = True,
    ):
        super().__init__(app)
        self._limiter = limiter
        self.enabled = enabled

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter or get_rate_limiter()

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if not self.enabled:
            return await call_next(request)

        path = request.url.path
        identifier = get_request_identifier(request)
        policy = resolve_policy(path, identifier)
        if policy is None:
            return await call_next(request)

        result = await self.limiter.try_acquire(f"{policy.name}:{identifier}", policy.config)

        if not result.success:
            error = RateLimitExceededError(result, policy.name)
            logger.warning(
                "Rate limit exceeded",
                extra=get_log_context(
                    identifier=redact_identifier(identifier),
                    policy=policy.name,
                    path=path,
                    method=request.method,
                    retry_after=result.retry_after,
                ),
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers=error.headers,
            )

        response = await call_next(request)

        # Headers already set by a require_rate_limit route win
        for name, value in get_rate_limit_headers(result).items():
            response.headers.setdefault(name, value)

        return response


def require_rate_limit(
    policy_name: str,
    limiter: Optional[RateLimiter] = None,
) -> Callable[..., Any]:
    """Build a FastAPI dependency enforcing a named policy on one route.

    Admitted responses carry the route limit's headers; denials raise
    RateLimitExceededError, which the app maps to HTTP 429.

    Example:
        @app.post("/api/checkout", dependencies=[Depends(require_rate_limit("payment"))])
    """
    if policy_name not in RATE_LIMIT_PRESETS:
        raise ValueError(f"Unknown rate limit policy: {policy_name}")
    config = RATE_LIMIT_PRESETS[policy_name]

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        identifier = get_request_identifier(request)
        result = await (limiter or get_rate_limiter()).try_acquire(
            f"route-{policy_name}:{identifier}", config
        )
        if not result.success:
            raise RateLimitExceededError(result, policy_name)
        response.headers.update(get_rate_limit_headers(result))
        return result

    return dependency
