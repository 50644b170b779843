"""Tests for the retry/backoff helper and circuit breaker."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest

from memory_timeline.errors import ProviderError, ProviderTimeout
from memory_timeline.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    retry_with_backoff,
)


class Flaky:
    def __init__(self, failures, value="ok"):
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


# === CircuitBreaker ===


def test_breaker_opens_after_threshold():
    cb = CircuitBreaker(failure_threshold=3, reset_timeout=60.0)
    for _ in range(2):
        cb.record_failure()
    assert cb.state == CircuitBreaker.CLOSED
    cb.record_failure()
    assert cb.state == CircuitBreaker.OPEN
    assert cb.allow_request() is False
    print("  PASS: breaker_opens_after_threshold")


def test_breaker_half_opens_then_closes_on_success():
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=0.0)
    cb.record_failure()
    assert cb.state == CircuitBreaker.HALF_OPEN
    assert cb.allow_request() is True
    cb.record_success()
    assert cb.state == CircuitBreaker.CLOSED
    print("  PASS: breaker_half_opens_then_closes_on_success")


# === retry_with_backoff ===


@pytest.mark.asyncio
async def test_retryable_errors_are_retried():
    call = Flaky([ProviderError("503", retryable=True), ProviderError("503", retryable=True)])
    assert await retry_with_backoff(call, max_retries=3, base_delay=0.0) == "ok"
    assert call.calls == 3
    print("  PASS: retryable_errors_are_retried")


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried():
    call = Flaky([ProviderError("401 unauthorized", retryable=False)])
    with pytest.raises(ProviderError, match="401"):
        await retry_with_backoff(call, max_retries=3, base_delay=0.0)
    assert call.calls == 1
    print("  PASS: permanent_errors_are_not_retried")


@pytest.mark.asyncio
async def test_retry_on_extra_exception_types():
    call = Flaky([ConnectionResetError("reset")])
    assert await retry_with_backoff(call, max_retries=1, base_delay=0.0, retry_on=(ConnectionError,)) == "ok"
    call = Flaky([ConnectionResetError("reset")])
    with pytest.raises(ConnectionResetError):
        await retry_with_backoff(call, max_retries=1, base_delay=0.0)
    print("  PASS: retry_on_extra_exception_types")


@pytest.mark.asyncio
async def test_exhausted_retries_raise_last_error():
    call = Flaky([ProviderError(f"fail {i}", retryable=True) for i in range(5)])
    with pytest.raises(ProviderError, match="fail 2"):
        await retry_with_backoff(call, max_retries=2, base_delay=0.0)
    assert call.calls == 3
    print("  PASS: exhausted_retries_raise_last_error")


@pytest.mark.asyncio
async def test_timeout_becomes_provider_timeout():
    async def hang():
        await asyncio.sleep(1.0)

    with pytest.raises(ProviderTimeout) as exc_info:
        await retry_with_backoff(hang, timeout=0.01, max_retries=1, base_delay=0.0, label="voyage")
    assert exc_info.value.provider == "voyage"
    assert exc_info.value.retryable is True
    print("  PASS: timeout_becomes_provider_timeout")


@pytest.mark.asyncio
async def test_open_breaker_fails_fast():
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=60.0)
    call = Flaky([ProviderError("down", retryable=True)] * 2)
    with pytest.raises(ProviderError):
        await retry_with_backoff(call, max_retries=1, base_delay=0.0, circuit_breaker=cb)
    assert cb.state == CircuitBreaker.OPEN

    healthy = Flaky([])
    with pytest.raises(CircuitBreakerOpenError):
        await retry_with_backoff(healthy, circuit_breaker=cb, label="anthropic")
    assert healthy.calls == 0
    print("  PASS: open_breaker_fails_fast")
