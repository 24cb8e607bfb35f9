"""Tests for the circuit breaker around provider rate limits."""

import asyncio

import pytest

from app.workers.circuit_breaker import BreakerState, CircuitBreaker
from app.workers.queue import InMemoryAlertQueue


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_at_threshold_and_pauses_queue(self):
        queue = InMemoryAlertQueue("breaker-test")
        breaker = CircuitBreaker(threshold=5, cooldown_seconds=3600, queue=queue)

        for _ in range(4):
            await breaker.record_failure()
        assert breaker.state is BreakerState.FLOWING
        assert not await queue.is_paused()

        await breaker.record_failure()
        assert breaker.is_open()
        assert await queue.is_paused()
        breaker.close()

    @pytest.mark.asyncio
    async def test_success_resets_the_streak(self):
        breaker = CircuitBreaker(threshold=5, cooldown_seconds=3600)

        for _ in range(4):
            await breaker.record_failure()
        await breaker.record_success()
        for _ in range(4):
            await breaker.record_failure()

        assert breaker.consecutive_failures == 4
        assert breaker.state is BreakerState.FLOWING

    @pytest.mark.asyncio
    async def test_resumes_after_cooldown(self):
        queue = InMemoryAlertQueue("breaker-test")
        breaker = CircuitBreaker(threshold=2, cooldown_seconds=0.05, queue=queue)

        await breaker.record_failure()
        await breaker.record_failure()
        assert await queue.is_paused()

        await asyncio.sleep(0.2)

        assert breaker.state is BreakerState.FLOWING
        assert breaker.consecutive_failures == 0
        assert not await queue.is_paused()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_resume(self):
        queue = InMemoryAlertQueue("breaker-test")
        breaker = CircuitBreaker(threshold=1, cooldown_seconds=0.05, queue=queue)

        await breaker.record_failure()
        breaker.close()
        await asyncio.sleep(0.1)

        assert breaker.is_open()
        assert await queue.is_paused()

    @pytest.mark.asyncio
    async def test_works_without_queue(self):
        breaker = CircuitBreaker(threshold=1, cooldown_seconds=3600)

        assert await breaker.record_failure() is BreakerState.PAUSED
        await breaker.resume()
        assert not breaker.is_open()
