"""Retry, timeout and circuit breaking for calls to external providers.

Shared by the embedding providers and the LLM layer. Every attempt runs
under ``asyncio.wait_for`` so no network call can hang a batch worker.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from memory_timeline.errors import ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """Simple circuit breaker for external API calls.

    States: CLOSED (normal) → OPEN (fail-fast) → HALF_OPEN (probe).
    Opens after `failure_threshold` consecutive failures.
    Auto-resets to HALF_OPEN after `reset_timeout` seconds.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60.0) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._state = self.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0

    @property
    def state(self) -> str:
        if self._state == self.OPEN:
            if time.monotonic() - self._last_failure_time >= self.reset_timeout:
                self._state = self.HALF_OPEN
        return self._state

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = self.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.failure_threshold:
            self._state = self.OPEN
            logger.warning("Circuit breaker OPEN after %d consecutive failures", self._failure_count)

    def allow_request(self) -> bool:
        return self.state != self.OPEN


class CircuitBreakerOpenError(ProviderError):
    """Raised when the circuit breaker is open and rejecting requests."""


def _is_retryable(exc: BaseException, retry_on: tuple[type[BaseException], ...]) -> bool:
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, retry_on)


async def retry_with_backoff(
    coro_factory: Callable[[], Awaitable[T]],
    *,
    timeout: float | None = None,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (),
    circuit_breaker: CircuitBreaker | None = None,
    label: str = "provider",
) -> T:
    """Retry an async call with exponential backoff.

    Args:
        coro_factory: Callable that returns a new coroutine each time.
        timeout: Per-attempt timeout in seconds (None = unbounded).
        max_retries: Maximum number of retries (0 = no retry).
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay cap.
        retry_on: Extra exception types treated as transient. ProviderError
            subclasses decide for themselves via ``retryable``.
        circuit_breaker: Optional circuit breaker instance.
        label: Name used in log lines and error messages.

    Returns:
        The result of the successful call.

    Raises:
        ProviderTimeout: The last attempt timed out.
        CircuitBreakerOpenError: The breaker rejected the call.
        Whatever the last attempt raised, for non-retryable errors or once
        retries are exhausted.
    """
    if circuit_breaker and not circuit_breaker.allow_request():
        raise CircuitBreakerOpenError(
            f"Circuit breaker is open. {label} calls temporarily disabled.", provider=label
        )

    for attempt in range(max_retries + 1):
        try:
            if timeout is not None:
                result = await asyncio.wait_for(coro_factory(), timeout=timeout)
            else:
                result = await coro_factory()
            if circuit_breaker:
                circuit_breaker.record_success()
            return result
        except asyncio.TimeoutError:
            error: BaseException = ProviderTimeout(
                f"{label} call timed out after {timeout}s", provider=label
            )
        except Exception as e:
            error = e

        if circuit_breaker:
            circuit_breaker.record_failure()
        if not _is_retryable(error, retry_on) or attempt >= max_retries:
            raise error
        delay = min(base_delay * (2 ** attempt), max_delay)
        logger.warning(
            "%s call attempt %d/%d failed (%s), retrying in %.1fs",
            label, attempt + 1, max_retries + 1, type(error).__name__, delay,
        )
        await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
