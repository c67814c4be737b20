"""Tests for application settings."""

import pytest
from pydantic import ValidationError

from storefront.app.core.config import Settings


def test_defaults():
    s = Settings(_env_file=None)

    assert s.rate_limit_enabled is True
    assert s.rate_limit_max_tokens == 10
    assert s.rate_limit_refill_rate == 1.0
    assert s.rate_limit_refill_interval_ms == 1000
    assert s.rate_limit_max_requests == 100
    assert s.rate_limit_window_ms == 60000
    assert s.rate_limit_cleanup_interval_seconds == 3600.0
    assert s.rate_limit_cleanup_max_age_ms == 3600000
    assert s.rate_limit_fail_closed is True
    assert s.redis_enabled is False


def test_env_override(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_MAX_TOKENS", "25")
    monkeypatch.setenv("RATE_LIMIT_FAIL_CLOSED", "false")
    monkeypatch.setenv("LOG_FORMAT", "JSON")

    s = Settings(_env_file=None)

    assert s.rate_limit_max_tokens == 25
    assert s.rate_limit_fail_closed is False
    assert s.log_format == "json"


@pytest.mark.parametrize("field,value", [
    ("log_format", "xml"),
    ("rate_limit_window_ms", 0),
    ("rate_limit_refill_interval_ms", -5),
    ("rate_limit_max_tokens", -1),
    ("rate_limit_max_requests", -1),
    ("rate_limit_cleanup_interval_seconds", 0.5),
    ("rate_limit_store_shards", 0),
])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_zero_capacity_allowed():
    s = Settings(_env_file=None, rate_limit_max_tokens=0)
    assert s.rate_limit_max_tokens == 0
