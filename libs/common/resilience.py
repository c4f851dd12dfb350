"""Circuit breaker and fallback helpers shared by backends and model clients.

``with_fallback`` is the single place where a failing dependency is turned
into a safe default value. Callers state the fallback explicitly instead of
wrapping their own try/except blocks around every backend call.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a dependency whose circuit is open."""

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"Circuit '{name}' is open")


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    closed: calls go through, failures are counted.
    open: calls are rejected with CircuitOpenError until ``reset_timeout`` elapses.
    half_open: one trial call; success closes the circuit, failure re-opens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return "closed"
        if self._clock() - self._opened_at >= self.reset_timeout:
            return "half_open"
        return "open"

    @property
    def failure_count(self) -> int:
        return self._failures

    def allow_request(self) -> bool:
        state = self.state
        if state == "open":
            return False
        return not (state == "half_open" and self._trial_in_flight)

    def record_success(self) -> None:
        self._trial_in_flight = False
        if self._opened_at is not None:
            logger.info("Circuit closed", circuit=self.name)
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._trial_in_flight = False
        self._failures += 1
        if self.state == "half_open" or self._failures >= self.failure_threshold:
            self._opened_at = self._clock()
            logger.warning("Circuit opened", circuit=self.name, failures=self._failures)

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker."""
        if not self.allow_request():
            raise CircuitOpenError(self.name)
        trial = self.state == "half_open"
        if trial:
            self._trial_in_flight = True
        try:
            result = await operation()
        except asyncio.CancelledError:
            if trial:
                self._trial_in_flight = False
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


async def with_fallback(
    operation: Callable[[], Awaitable[T]],
    fallback: T,
    *,
    operation_name: str,
    breaker: Optional[CircuitBreaker] = None,
) -> T:
    """Await ``operation`` and return ``fallback`` if it fails.

    Cancellation is not a failure and always propagates.
    """
    try:
        if breaker is not None:
            return await breaker.call(operation)
        return await operation()
    except CircuitOpenError:
        logger.warning("Circuit open, using fallback", operation=operation_name)
        return fallback
    except Exception as e:
        logger.warning(
            "Operation failed, using fallback",
            operation=operation_name,
            error=str(e),
            error_type=type(e).__name__,
        )
        return fallback
