"""Per-endpoint rate limit policies.

Different endpoint classes get different limits according to how costly
or sensitive they are. Rules are evaluated in order; the first match wins.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Pattern, Tuple

from storefront.app.middleware.rate_limit.models import (
    RateLimitConfig,
    RateLimitPolicy,
    RateLimitResult,
)

RATE_LIMIT_PRESETS: Dict[str, RateLimitConfig] = {
    # Public read endpoints (stores, products): 100 requests per minute
    "public_read": RateLimitConfig(
        max_tokens=20, refill_rate=2, refill_interval_ms=1000,
        max_requests=100, window_ms=60000,
        description="Public read endpoints",
    ),
    # Login, registration: 10 requests per 5 minutes
    "auth": RateLimitConfig(
        max_tokens=5, refill_rate=1, refill_interval_ms=2000,
        max_requests=10, window_ms=300000,
        description="Authentication endpoints",
    ),
    # Creating products, updating stores: 50 requests per minute
    "write": RateLimitConfig(
        max_tokens=10, refill_rate=1, refill_interval_ms=1000,
        max_requests=50, window_ms=60000,
        description="Write operations",
    ),
    # Checkout and payments: 20 requests per hour
    "payment": RateLimitConfig(
        max_tokens=3, refill_rate=1, refill_interval_ms=5000,
        max_requests=20, window_ms=3600000,
        description="Payment endpoints",
    ),
    # Searches can be expensive: 60 requests per minute
    "search": RateLimitConfig(
        max_tokens=15, refill_rate=2, refill_interval_ms=1000,
        max_requests=60, window_ms=60000,
        description="Search endpoints",
    ),
    # Requests carrying an API key: 1000 requests per minute
    "api_key": RateLimitConfig(
        max_tokens=50, refill_rate=5, refill_interval_ms=1000,
        max_requests=1000, window_ms=60000,
        description="Requests with API key",
    ),
    # Admin panel: 200 requests per minute
    "admin": RateLimitConfig(
        max_tokens=30, refill_rate=3, refill_interval_ms=1000,
        max_requests=200, window_ms=60000,
        description="Administration endpoints",
    ),
    # Payment processor callbacks: 100 requests per minute. No path rule;
    # webhook routes opt in with require_rate_limit("webhook")
    "webhook": RateLimitConfig(
        max_tokens=10, refill_rate=2, refill_interval_ms=1000,
        max_requests=100, window_ms=60000,
        description="External webhooks",
    ),
}

ENDPOINT_RULES: List[Tuple[str, Pattern[str], str]] = [
    ("auth", re.compile(r"^/(login|register|auth/callback|confirm-email)"), "auth"),
    ("payment", re.compile(r"^/api/checkout|/store/[^/]+/checkout"), "payment"),
    ("admin", re.compile(r"^/admin"), "admin"),
    ("dashboard-write", re.compile(r"^/dashboard/(products/new|products/edit|orders)"), "write"),
    ("search", re.compile(r"/search|/api/search"), "search"),
    ("store-public", re.compile(r"^/store/[^/]+"), "public_read"),
    ("api-generic", re.compile(r"^/api/"), "write"),
]

EXEMPT_PATHS: List[Pattern[str]] = [
    re.compile(r"^/_next/"),
    re.compile(r"^/favicon\.ico$"),
    re.compile(r"^/.*\.(jpg|jpeg|png|gif|svg|webp|ico)$"),
    re.compile(r"^/\.well-known/"),
    re.compile(r"^/health$"),
    re.compile(r"^/api/health$"),
]

DEFAULT_POLICY_NAME = "default"


def is_exempt(path: str) -> bool:
    return any(pattern.search(path) for pattern in EXEMPT_PATHS)


def get_rate_limit_policy(path: str) -> Optional[RateLimitPolicy]:
    """Resolve the policy for a request path.

    Args:
        path: URL path, e.g. "/store/abc/checkout"

    Returns:
        Matching policy, the public read default, or None for exempt paths
    """
    if is_exempt(path):
        return None

    for name, pattern, preset in ENDPOINT_RULES:
        if pattern.search(path):
            return RateLimitPolicy(name, RATE_LIMIT_PRESETS[preset])

    return RateLimitPolicy(DEFAULT_POLICY_NAME, RATE_LIMIT_PRESETS["public_read"])


def get_rate_limit_headers(
    result: RateLimitResult,
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """Standard rate limit response headers for result.

    X-RateLimit-Reset is the ISO-8601 instant at which capacity returns.
    """
    now = now or datetime.now(timezone.utc)
    reset_at = now + timedelta(milliseconds=result.reset)
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": reset_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    }
    if result.retry_after:
        headers["Retry-After"] = str(result.retry_after)
    return headers
