"""Shared fixtures for the rate limiter tests."""

import pytest

from storefront.app.middleware.rate_limit import reset_default_limiter, reset_rate_limiter


class FakeClock:
    """Manually advanced time source returning epoch milliseconds."""

    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global limiter state before each test."""
    reset_default_limiter()
    reset_rate_limiter()
    yield
    reset_default_limiter()
    reset_rate_limiter()
