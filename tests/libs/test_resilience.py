"""Tests for the circuit breaker and fallback helpers."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from libs.common.resilience import CircuitBreaker, CircuitOpenError, with_fallback


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCircuitBreaker:
    """Test breaker state transitions."""

    def test_opens_after_consecutive_failures(self):
        breaker = CircuitBreaker("test", failure_threshold=3, clock=FakeClock())

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == "closed"

        breaker.record_failure()
        assert breaker.state == "open"
        assert breaker.allow_request() is False

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("test", failure_threshold=2, clock=FakeClock())

        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.failure_count == 1
        assert breaker.state == "closed"

    def test_half_open_after_reset_window(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30.0, clock=clock)
        breaker.record_failure()

        clock.now = 29.9
        assert breaker.state == "open"
        clock.now = 30.0
        assert breaker.state == "half_open"
        assert breaker.allow_request() is True

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=3, reset_timeout=10.0, clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.now = 10.0

        breaker.record_failure()

        assert breaker.state == "open"

    def test_rejects_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker("test", failure_threshold=0)

    @pytest.mark.asyncio
    async def test_call_skips_operation_when_open(self):
        breaker = CircuitBreaker("test", failure_threshold=1, clock=FakeClock())
        breaker.record_failure()
        operation = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(operation)

        operation.assert_not_awaited()
        assert exc_info.value.name == "test"

    @pytest.mark.asyncio
    async def test_call_records_outcomes(self):
        breaker = CircuitBreaker("test", failure_threshold=2, clock=FakeClock())

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))
        assert breaker.failure_count == 1

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_admits_one_trial_call(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=10.0, clock=clock)
        breaker.record_failure()
        clock.now = 10.0
        release = asyncio.Event()
        admitted = []

        async def operation():
            admitted.append(1)
            await release.wait()
            return ["fresh"]

        calls = [
            asyncio.create_task(with_fallback(operation, [], operation_name="op", breaker=breaker))
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*calls)

        assert len(admitted) == 1
        assert results.count(["fresh"]) == 1
        assert results.count([]) == 4
        assert breaker.state == "closed"

    @pytest.mark.asyncio
    async def test_failed_trial_reopens_and_cancelled_trial_frees_slot(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=10.0, clock=clock)
        breaker.record_failure()
        clock.now = 10.0

        with pytest.raises(asyncio.CancelledError):
            await breaker.call(AsyncMock(side_effect=asyncio.CancelledError()))
        assert breaker.allow_request() is True

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("still down")))
        assert breaker.state == "open"


class TestWithFallback:
    """Test fallback substitution."""

    @pytest.mark.asyncio
    async def test_returns_result_on_success(self):
        result = await with_fallback(AsyncMock(return_value=[1, 2]), [], operation_name="op")
        assert result == [1, 2]

    @pytest.mark.asyncio
    async def test_returns_fallback_on_failure(self):
        breaker = CircuitBreaker("op", failure_threshold=5, clock=FakeClock())

        result = await with_fallback(
            AsyncMock(side_effect=ConnectionError("down")), [], operation_name="op", breaker=breaker
        )

        assert result == []
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_returns_fallback_without_calling(self):
        breaker = CircuitBreaker("op", failure_threshold=1, clock=FakeClock())
        breaker.record_failure()
        operation = AsyncMock(return_value=["fresh"])

        result = await with_fallback(operation, ["cached"], operation_name="op", breaker=breaker)

        assert result == ["cached"]
        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        with pytest.raises(asyncio.CancelledError):
            await with_fallback(AsyncMock(side_effect=asyncio.CancelledError()), [], operation_name="op")
