"""BatchRunner: bounded-concurrency execution of per-item provider work.

Used by bulk embedding regeneration and full-timeline analysis. Hosted
providers rate-limit, so at most ``concurrency`` items run at once
(Semaphore-bounded, never unbounded fan-out).

Per item:
- runs under ``asyncio.wait_for(item_timeout)``
- failures are logged and recorded, the batch continues
- a progress callback fires after every finished item

Cancellation: ``CancellationToken.cancel()`` stops new items from starting
and cancels the ones in flight. Work already committed by finished items
is left as is.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from memory_timeline.models.analysis import BatchItemError, BatchProgress

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[BatchProgress], Any]


class CancellationToken:
    """Cooperative cancel signal shared between a caller and a running batch."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class _Cancelled(Exception):
    """Internal: item stopped because the batch was cancelled."""


@dataclass
class BatchResult(Generic[R]):
    total: int = 0
    results: dict[str, R] = field(default_factory=dict)
    errors: list[BatchItemError] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


class BatchRunner:
    """Run an async worker over many items with a fixed-size pool.

    Usage:
        runner = BatchRunner(concurrency=3, item_timeout=120)
        result = await runner.run(event_ids, worker=analyze_one, key=str,
                                  progress=print, cancel=token)
    """

    def __init__(self, concurrency: int = 3, item_timeout: float | None = 120.0) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.item_timeout = item_timeout

    async def run(
        self,
        items: Iterable[T],
        worker: Callable[[T], Awaitable[R]],
        *,
        key: Callable[[T], str] = str,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> BatchResult[R]:
        """Process ``items`` and collect per-item results and errors.

        Args:
            items: Items to process; ordering is preserved for start order.
            worker: Async callable doing the work for one item.
            key: Maps an item to the id used in results/errors.
            progress: Called (sync or async) after every finished item.
            cancel: Optional cancellation token.

        Returns:
            BatchResult with results keyed by item id, errors and skipped ids.
        """
        item_list = list(items)
        result: BatchResult[R] = BatchResult(total=len(item_list))
        snapshot = BatchProgress(total=len(item_list))
        semaphore = asyncio.Semaphore(self.concurrency)
        token = cancel or CancellationToken()

        async def _guarded(item: T) -> None:
            item_id = key(item)
            async with semaphore:
                if token.cancelled:
                    result.skipped.append(item_id)
                    return
                try:
                    value = await self._run_one(worker, item, token)
                except _Cancelled:
                    result.skipped.append(item_id)
                    return
                except Exception as e:
                    logger.warning("Batch item %s failed: %s: %s", item_id, type(e).__name__, e)
                    result.errors.append(BatchItemError(
                        item_id=item_id,
                        error_type=type(e).__name__,
                        message=str(e) or type(e).__name__,
                    ))
                    snapshot.failed += 1
                else:
                    result.results[item_id] = value
                    snapshot.completed += 1
                snapshot.current_item = item_id
                await self._report(progress, snapshot)

        await asyncio.gather(*(_guarded(item) for item in item_list))
        result.cancelled = token.cancelled
        if result.cancelled:
            logger.info(
                "Batch cancelled: %d done, %d failed, %d skipped",
                result.succeeded, result.failed, len(result.skipped),
            )
        return result

    async def _run_one(self, worker: Callable[[T], Awaitable[R]], item: T, token: CancellationToken) -> R:
        if self.item_timeout is not None:
            work = asyncio.ensure_future(asyncio.wait_for(worker(item), timeout=self.item_timeout))
        else:
            work = asyncio.ensure_future(worker(item))
        stopper = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if work in done:
            try:
                return work.result()
            except asyncio.TimeoutError:
                raise TimeoutError(f"item timed out after {self.item_timeout}s") from None
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:  # finished with an error while we were cancelling
            logger.debug("Cancelled batch item raised %s", e)
        raise _Cancelled()

    @staticmethod
    async def _report(progress: ProgressCallback | None, snapshot: BatchProgress) -> None:
        if progress is None:
            return
        try:
            outcome = progress(snapshot.model_copy())
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as e:
            logger.warning("Progress callback failed (ignored): %s", e)
