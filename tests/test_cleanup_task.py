"""Tests for the periodic rate limit cleanup task."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from storefront.app.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimitCleanupTask,
    RateLimitConfig,
)


class TestRateLimitCleanupTask:
    """Tests for RateLimitCleanupTask."""

    @pytest.mark.asyncio
    async def test_run_once_passes_max_age(self):
        backend = AsyncMock()
        task = RateLimitCleanupTask(backend, interval_seconds=60, max_age_ms=500)

        await task.run_once()

        backend.cleanup.assert_awaited_once_with(500)
        assert task.runs == 1

    @pytest.mark.asyncio
    async def test_runs_periodically_until_stopped(self):
        backend = AsyncMock()
        task = RateLimitCleanupTask(backend, interval_seconds=0.01, max_age_ms=1000)

        await task.start()
        assert task.running is True
        await asyncio.sleep(0.1)
        await task.stop()

        assert task.running is False
        assert backend.cleanup.await_count >= 1
        calls = backend.cleanup.await_count
        await asyncio.sleep(0.05)
        assert backend.cleanup.await_count == calls

    @pytest.mark.asyncio
    async def test_stop_interrupts_long_interval(self):
        backend = AsyncMock()
        task = RateLimitCleanupTask(backend, interval_seconds=3600)

        await task.start()
        await asyncio.wait_for(task.stop(), timeout=1.0)

        backend.cleanup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self):
        task = RateLimitCleanupTask(AsyncMock(), interval_seconds=3600)

        await task.start()
        first = task._task
        await task.start()

        assert task._task is first
        await task.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        task = RateLimitCleanupTask(AsyncMock(), interval_seconds=3600)
        await task.stop()
        assert task.running is False

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_loop(self):
        backend = AsyncMock()
        backend.cleanup.side_effect = RuntimeError("store unavailable")
        task = RateLimitCleanupTask(backend, interval_seconds=0.01)

        await task.start()
        await asyncio.sleep(0.1)

        assert task._task.done() is False
        assert backend.cleanup.await_count >= 2
        await task.stop()

    @pytest.mark.asyncio
    async def test_evicts_idle_state_from_memory_backend(self, clock):
        backend = InMemoryRateLimiter(clock=clock)
        config = RateLimitConfig(max_tokens=1)
        await backend.try_acquire("idle-client", config)
        assert (await backend.try_acquire("idle-client", config)).success is False

        clock.advance(3_600_001)
        await RateLimitCleanupTask(backend, max_age_ms=3_600_000).run_once()

        stats = await backend.get_stats("idle-client")
        assert stats["tokens"] is None
        assert stats["window_requests"] == 0
