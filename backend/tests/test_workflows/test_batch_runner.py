"""Tests for BatchRunner: bounded concurrency, per-item errors, timeouts, cancellation."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest

from memory_timeline.workflows.batch_runner import BatchRunner, CancellationToken


class Tracker:
    def __init__(self):
        self.active = 0
        self.peak = 0
        self.started = []

    async def work(self, item, delay=0.01):
        self.started.append(item)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(delay)
        finally:
            self.active -= 1
        return item * 2


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_limit():
    tracker = Tracker()
    result = await BatchRunner(concurrency=3).run(range(10), worker=tracker.work)
    assert tracker.peak <= 3
    assert tracker.peak > 1
    assert result.succeeded == 10
    assert result.results["4"] == 8
    assert result.cancelled is False
    print("  PASS: concurrency_never_exceeds_limit")


@pytest.mark.asyncio
async def test_failures_are_recorded_and_batch_continues():
    async def worker(item):
        if item == "bad":
            raise ValueError("broken input")
        return item

    result = await BatchRunner(concurrency=2).run(["a", "bad", "c"], worker=worker)
    assert result.total == 3
    assert sorted(result.results) == ["a", "c"]
    assert result.failed == 1
    assert result.errors[0].item_id == "bad"
    assert result.errors[0].error_type == "ValueError"
    assert result.errors[0].message == "broken input"
    print("  PASS: failures_are_recorded_and_batch_continues")


@pytest.mark.asyncio
async def test_item_timeout_is_an_error():
    async def worker(item):
        await asyncio.sleep(1.0 if item == "slow" else 0)
        return item

    result = await BatchRunner(concurrency=2, item_timeout=0.05).run(["slow", "fast"], worker=worker)
    assert list(result.results) == ["fast"]
    assert result.errors[0].item_id == "slow"
    assert result.errors[0].error_type == "TimeoutError"
    print("  PASS: item_timeout_is_an_error")


@pytest.mark.asyncio
async def test_progress_after_every_item():
    seen = []

    async def async_progress(snapshot):
        seen.append((snapshot.completed, snapshot.failed, snapshot.total))

    async def worker(item):
        if item == 2:
            raise RuntimeError("nope")
        return item

    await BatchRunner(concurrency=1).run([1, 2, 3], worker=worker, progress=async_progress)
    assert seen == [(1, 0, 3), (1, 1, 3), (2, 1, 3)]
    print("  PASS: progress_after_every_item")


@pytest.mark.asyncio
async def test_broken_progress_callback_is_ignored():
    def progress(snapshot):
        raise RuntimeError("ui went away")

    result = await BatchRunner().run(["x"], worker=lambda item: asyncio.sleep(0, result=item), progress=progress)
    assert result.succeeded == 1
    print("  PASS: broken_progress_callback_is_ignored")


@pytest.mark.asyncio
async def test_cancel_mid_batch_stops_new_and_in_flight_items():
    token = CancellationToken()
    finished = []

    async def worker(item):
        if item == 1:
            token.cancel()
            return item
        await asyncio.sleep(1.0)
        finished.append(item)
        return item

    result = await BatchRunner(concurrency=2).run(range(1, 7), worker=worker, cancel=token)
    assert result.cancelled is True
    assert list(result.results) == ["1"]
    assert finished == []
    assert sorted(result.skipped) == ["2", "3", "4", "5", "6"]
    assert result.errors == []
    print("  PASS: cancel_mid_batch_stops_new_and_in_flight_items")


@pytest.mark.asyncio
async def test_pre_cancelled_token_runs_nothing():
    token = CancellationToken()
    token.cancel()
    tracker = Tracker()
    result = await BatchRunner().run(["a", "b"], worker=tracker.work, cancel=token)
    assert tracker.started == []
    assert result.skipped == ["a", "b"]
    assert result.cancelled is True
    print("  PASS: pre_cancelled_token_runs_nothing")


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        BatchRunner(concurrency=0)
    print("  PASS: concurrency_must_be_positive")
