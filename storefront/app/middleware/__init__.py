"""Middleware package for the storefront."""

from storefront.app.middleware.rate_limit import RateLimitMiddleware, require_rate_limit

__all__ = [
    "RateLimitMiddleware",
    "require_rate_limit",
]
