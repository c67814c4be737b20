"""Tests for the combined token bucket + sliding window limiter."""

import threading

import pytest

from storefront.app.exceptions import InvalidRateLimitConfigError
from storefront.app.middleware.rate_limit import (
    CombinedLimiter,
    InMemoryStore,
    RateLimitConfig,
    cleanup_old_buckets,
    get_default_limiter,
    rate_limit_combined,
    rate_limit_sliding_window,
    rate_limit_token_bucket,
    reset_default_limiter,
)


@pytest.fixture
def limiter(clock):
    return CombinedLimiter(clock=clock)


class TestCombinedLimiter:
    """Tests for applying both algorithms."""

    def test_success_merges_both_results(self, limiter):
        config = RateLimitConfig(max_tokens=2, refill_rate=1, refill_interval_ms=1000,
                                 max_requests=10, window_ms=60000)

        result = limiter.try_acquire("merge", config)

        assert result.success is True
        assert result.limit == 10
        assert result.remaining == 1
        assert result.reset == 60000
        assert result.retry_after is None

    def test_token_bucket_denial_is_returned(self, limiter):
        config = RateLimitConfig(max_tokens=1, refill_rate=1, refill_interval_ms=1000,
                                 max_requests=10, window_ms=60000)

        limiter.try_acquire("burst", config)
        result = limiter.try_acquire("burst", config)

        assert result.success is False
        assert result.limit == 1
        assert result.reset == 1000
        assert result.retry_after == 1

    def test_window_denial_is_returned(self, limiter):
        config = RateLimitConfig(max_tokens=5, refill_rate=1, refill_interval_ms=1000,
                                 max_requests=3, window_ms=60000)

        results = [limiter.try_acquire("window", config) for _ in range(4)]

        assert [r.success for r in results] == [True, True, True, False]
        assert results[3].limit == 3
        assert results[3].retry_after == 60

    def test_window_denial_refunds_token(self, limiter):
        config = RateLimitConfig(max_tokens=3, refill_rate=1, refill_interval_ms=1000,
                                 max_requests=2, window_ms=60000)

        for _ in range(3):
            limiter.try_acquire("refund", config)

        assert limiter.token_bucket.peek("refund").tokens == 1
        assert limiter.sliding_window.count("refund") == 2

    def test_never_admits_more_than_either_limit(self, limiter, clock):
        config = RateLimitConfig(max_tokens=4, refill_rate=1, refill_interval_ms=1000,
                                 max_requests=6, window_ms=10000)

        admitted = 0
        for _ in range(100):
            if limiter.try_acquire("strict", config).success:
                admitted += 1
            clock.advance(50)

        # 5 seconds elapsed: the window caps admissions at 6
        assert admitted == 6

    def test_identifiers_are_independent(self, limiter):
        config = RateLimitConfig(max_tokens=1, max_requests=1)

        assert limiter.try_acquire("a", config).success is True
        assert limiter.try_acquire("a", config).success is False
        assert limiter.try_acquire("b", config).success is True

    def test_default_config(self, limiter):
        result = limiter.try_acquire("defaults")
        assert result.success is True
        assert result.limit == 100
        assert result.remaining == 9

    def test_concurrent_requests_never_overshoot(self, clock):
        limiter = CombinedLimiter(clock=clock, shards=4)
        config = RateLimitConfig(max_tokens=10, refill_rate=1, refill_interval_ms=60000,
                                 max_requests=100, window_ms=60000)
        successes = []

        def worker():
            for _ in range(5):
                successes.append(limiter.try_acquire("shared", config).success)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert successes.count(True) == 10
        assert len(successes) == 40

    def test_single_store_backs_both_algorithms(self, clock):
        store = InMemoryStore()
        limiter = CombinedLimiter(token_store=store, window_store=store, clock=clock)

        limiter.try_acquire("shared-store")

        assert "tb_shared-store" in store
        assert "sw_shared-store" in store


class TestMaintenance:
    """Tests for cleanup, clear and state inspection."""

    def test_cleanup_reports_removed_entries(self, limiter, clock):
        limiter.try_acquire("idle")
        clock.advance(3_600_001)

        assert limiter.cleanup() == {"token_buckets": 1, "sliding_windows": 1}
        assert limiter.get_state("idle")["tokens"] is None

    def test_cleanup_keeps_recent_entries(self, limiter, clock):
        limiter.try_acquire("recent")
        clock.advance(1000)

        assert limiter.cleanup(3_600_000) == {"token_buckets": 0, "sliding_windows": 0}

    def test_clear_identifier(self, limiter):
        config = RateLimitConfig(max_tokens=1)
        limiter.try_acquire("clear-me", config)
        limiter.try_acquire("keep-me", config)

        limiter.clear("clear-me")

        assert limiter.try_acquire("clear-me", config).success is True
        assert limiter.try_acquire("keep-me", config).success is False

    def test_clear_everything(self, limiter):
        limiter.try_acquire("one")
        limiter.try_acquire("two")

        limiter.clear()

        assert len(limiter.token_bucket.store) == 0
        assert len(limiter.sliding_window.store) == 0

    def test_get_state(self, limiter, clock):
        limiter.try_acquire("state")
        state = limiter.get_state("state")

        assert state == {
            "identifier": "state",
            "tokens": 9,
            "last_refill": clock.now,
            "window_requests": 1,
        }


class TestModuleFunctions:
    """Tests for the process-wide convenience functions."""

    def test_default_limiter_is_shared(self):
        assert get_default_limiter() is get_default_limiter()

    def test_functions_use_injected_limiter(self, clock):
        reset_default_limiter(CombinedLimiter(clock=clock))

        assert rate_limit_token_bucket("fn", 1, 1, 1000).success is True
        assert rate_limit_token_bucket("fn", 1, 1, 1000).success is False
        assert rate_limit_sliding_window("fn", 1, 1000).success is True
        assert rate_limit_sliding_window("fn", 1, 1000).success is False

        clock.advance(7_200_000)
        assert cleanup_old_buckets() == {"token_buckets": 1, "sliding_windows": 1}

    def test_rate_limit_combined(self, clock):
        reset_default_limiter(CombinedLimiter(clock=clock))
        config = RateLimitConfig(max_tokens=2, max_requests=10)

        assert rate_limit_combined("combined", config).success is True
        assert rate_limit_combined("combined", config).success is True
        assert rate_limit_combined("combined", config).success is False


class TestRateLimitConfig:
    """Tests for configuration validation."""

    @pytest.mark.parametrize("kwargs", [
        {"refill_interval_ms": 0},
        {"refill_interval_ms": -1000},
        {"window_ms": 0},
    ])
    def test_rejects_non_positive_durations(self, kwargs):
        with pytest.raises(InvalidRateLimitConfigError):
            RateLimitConfig(**kwargs)

    def test_invalid_config_is_value_error(self):
        with pytest.raises(ValueError):
            RateLimitConfig(window_ms=-1)

    def test_config_is_immutable(self):
        config = RateLimitConfig()
        with pytest.raises(AttributeError):
            config.max_tokens = 99
