"""Rate limiting data models.

This module contains dataclasses for rate limit state, configuration
and results. Durations are milliseconds; retry_after is seconds.
"""

from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from storefront.app.exceptions import InvalidRateLimitConfigError


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    success: bool
    limit: int
    remaining: int
    reset: int
    retry_after: Optional[int] = None


@dataclass
class TokenBucket:
    """Token bucket state for token bucket algorithm."""
    tokens: float = field(default_factory=float)
    last_refill: float = 0.0


@dataclass(frozen=True)
class RateLimitConfig:
    """Parameters for the combined token bucket + sliding window limiter.

    Attributes:
        max_tokens: Bucket capacity (burst size)
        refill_rate: Tokens added per elapsed refill interval
        refill_interval_ms: Length of one refill interval
        max_requests: Requests admitted per sliding window
        window_ms: Sliding window length
        description: Human readable purpose of the policy
    """
    max_tokens: int = 10
    refill_rate: float = 1
    refill_interval_ms: int = 1000
    max_requests: int = 100
    window_ms: int = 60000
    description: str = ""

    def __post_init__(self) -> None:
        if self.refill_interval_ms <= 0:
            raise InvalidRateLimitConfigError("refill_interval_ms must be positive")
        if self.window_ms <= 0:
            raise InvalidRateLimitConfigError("window_ms must be positive")

    @classmethod
    def from_settings(cls, settings) -> "RateLimitConfig":
        """Build the default configuration from application settings."""
        return cls(
            max_tokens=settings.rate_limit_max_tokens,
            refill_rate=settings.rate_limit_refill_rate,
            refill_interval_ms=settings.rate_limit_refill_interval_ms,
            max_requests=settings.rate_limit_max_requests,
            window_ms=settings.rate_limit_window_ms,
            description="Default limits",
        )


class RateLimitPolicy(NamedTuple):
    """A named configuration selected for a request path."""
    name: str
    config: RateLimitConfig
