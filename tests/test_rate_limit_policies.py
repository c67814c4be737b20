"""Tests for endpoint policies and response headers."""

from datetime import datetime, timezone

import pytest

from storefront.app.middleware.rate_limit import (
    RATE_LIMIT_PRESETS,
    RateLimitResult,
    get_rate_limit_headers,
    get_rate_limit_policy,
)
from storefront.app.middleware.rate_limit.policies import is_exempt


class TestPresets:
    """Tests for the preset table."""

    def test_all_presets_present(self):
        assert set(RATE_LIMIT_PRESETS) == {
            "public_read", "auth", "write", "payment",
            "search", "api_key", "admin", "webhook",
        }

    @pytest.mark.parametrize("name,max_requests,window_ms", [
        ("public_read", 100, 60000),
        ("auth", 10, 300000),
        ("write", 50, 60000),
        ("payment", 20, 3600000),
        ("search", 60, 60000),
        ("api_key", 1000, 60000),
        ("admin", 200, 60000),
    ])
    def test_window_limits(self, name, max_requests, window_ms):
        config = RATE_LIMIT_PRESETS[name]
        assert config.max_requests == max_requests
        assert config.window_ms == window_ms

    def test_auth_is_strictest_burst(self):
        assert RATE_LIMIT_PRESETS["auth"].max_tokens == 5
        assert RATE_LIMIT_PRESETS["payment"].max_tokens == 3


class TestGetRateLimitPolicy:
    """Tests for path based policy selection."""

    @pytest.mark.parametrize("path,name,preset", [
        ("/login", "auth", "auth"),
        ("/register", "auth", "auth"),
        ("/auth/callback", "auth", "auth"),
        ("/confirm-email", "auth", "auth"),
        ("/api/checkout", "payment", "payment"),
        ("/store/acme/checkout", "payment", "payment"),
        ("/admin/users", "admin", "admin"),
        ("/dashboard/products/new", "dashboard-write", "write"),
        ("/dashboard/orders/42", "dashboard-write", "write"),
        ("/store/acme/search", "search", "search"),
        ("/api/search", "search", "search"),
        ("/store/acme/products/1", "store-public", "public_read"),
        ("/api/webhooks/stripe", "api-generic", "write"),
        ("/api/products", "api-generic", "write"),
        ("/", "default", "public_read"),
        ("/dashboard", "default", "public_read"),
    ])
    def test_first_matching_rule_wins(self, path, name, preset):
        policy = get_rate_limit_policy(path)
        assert policy.name == name
        assert policy.config == RATE_LIMIT_PRESETS[preset]

    @pytest.mark.parametrize("path", [
        "/_next/static/chunk.js",
        "/favicon.ico",
        "/images/logo.png",
        "/photo.webp",
        "/.well-known/security.txt",
        "/health",
        "/api/health",
    ])
    def test_exempt_paths(self, path):
        assert is_exempt(path) is True
        assert get_rate_limit_policy(path) is None

    def test_health_prefix_not_exempt(self):
        assert get_rate_limit_policy("/healthz") is not None


class TestGetRateLimitHeaders:
    """Tests for response headers."""

    def test_success_headers(self):
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        result = RateLimitResult(success=True, limit=100, remaining=99, reset=1500)

        headers = get_rate_limit_headers(result, now=now)

        assert headers == {
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Remaining": "99",
            "X-RateLimit-Reset": "2024-01-01T12:00:01.500Z",
        }

    def test_denied_headers_include_retry_after(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = RateLimitResult(success=False, limit=10, remaining=0, reset=60000, retry_after=60)

        headers = get_rate_limit_headers(result, now=now)

        assert headers["Retry-After"] == "60"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Reset"] == "2024-01-01T00:01:00.000Z"

    def test_defaults_to_current_time(self):
        result = RateLimitResult(success=True, limit=1, remaining=0, reset=0)
        headers = get_rate_limit_headers(result)
        assert headers["X-RateLimit-Reset"].endswith("Z")
