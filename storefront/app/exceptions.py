"""Custom exceptions for the storefront application."""

from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from storefront.app.middleware.rate_limit.models import RateLimitResult


class StorefrontException(Exception):
    """Base class for storefront exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Storefront error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(StorefrontException):
    """Raised when a client has used up its rate limit.

    Carries the limiter result so handlers can emit the standard
    rate limit headers. Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, result: "RateLimitResult", policy: str | None = None):
        self.result = result
        self.policy = policy
        super().__init__("Rate limit exceeded. Please try again later.")

    @property
    def headers(self) -> Dict[str, str]:
        from storefront.app.middleware.rate_limit.policies import get_rate_limit_headers
        return get_rate_limit_headers(self.result)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "rate_limit_exceeded",
            "message": self.message,
            "limit": self.result.limit,
            "remaining": self.result.remaining,
            "retryAfter": self.result.retry_after,
        }


class InvalidRateLimitConfigError(ValueError):
    """Raised when a rate limit configuration is unusable.

    Durations must be positive; capacities of zero or less are allowed
    and simply deny every request.
    """
