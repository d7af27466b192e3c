"""
Batch Processor — Bounded, Rate-Limited Batching
==================================================

Splits a list of work items into contiguous batches and runs a processor
over each batch, with at most ``max_concurrent_requests`` batches in
flight and one rate-limiter admission per batch.

Design:
  - Batches are contiguous slices of at most ``batch_size`` items
  - Admission happens in batch order, after a concurrency slot is acquired
  - Results are stored by batch index and reassembled in input order
  - All-or-nothing: the first failure cancels in-flight batches and the
    whole call raises BatchError

Usage:
    results = await batch_process(files, config, analyze_batch)
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from moonshine.core.config import AiLinterConfig
from moonshine.core.exceptions import BatchError, RateLimitExceeded
from moonshine.infra.runtime.rate_limiter import RateLimiter, admit_with_retry
from moonshine.infra.telemetry import get_logger, get_metrics, get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")
R = TypeVar("R")

# A processor maps one batch to its results; sync or async.
BatchFn = Callable[[list[Any]], Sequence[Any] | Awaitable[Sequence[Any]]]

def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into contiguous lists of at most ``size`` elements."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]

class BatchProcessor:
    """
    Runs batches under a concurrency bound and a shared rate limiter.

    Usage:
        processor = BatchProcessor(config, limiter)
        results = await processor.run(items, handler)
    """

    def __init__(self, config: AiLinterConfig, rate_limiter: RateLimiter) -> None:
        self._config = config
        self._limiter = rate_limiter

        # Stats
        self._total_runs = 0
        self._total_batches = 0
        self._total_items = 0
        self._max_in_flight = 0
        self._in_flight = 0

    async def run(self, items: Sequence[T], processor: BatchFn) -> list[R]:
        if not items:
            return []

        batches = chunk(items, self._config.batch_size)
        results: list[list[R] | None] = [None] * len(batches)
        semaphore = asyncio.Semaphore(self._config.max_concurrent_requests)
        tasks: dict[asyncio.Task, int] = {}
        failure: BatchError | None = None
        t0 = time.perf_counter()

        self._total_runs += 1
        with tracer.span(
            "batch.run",
            attributes={"batch.count": len(batches), "batch.items": len(items)},
        ):
            try:
                for index, batch in enumerate(batches):
                    await semaphore.acquire()
                    failure = self._first_failure(tasks)
                    if failure is not None:
                        semaphore.release()
                        break
                    try:
                        await admit_with_retry(
                            self._limiter,
                            attempts=self._config.retry_attempts,
                            delay_s=self._config.retry_delay_s,
                        )
                    except RateLimitExceeded as exc:
                        semaphore.release()
                        failure = BatchError(index, exc)
                        break
                    task = asyncio.create_task(
                        self._run_batch(index, batch, processor, semaphore),
                        name=f"batch-{index}",
                    )
                    tasks[task] = index

                if failure is None and tasks:
                    await asyncio.wait(list(tasks), return_when=asyncio.FIRST_EXCEPTION)
                    failure = self._first_failure(tasks)
            finally:
                if failure is not None or any(not t.done() for t in tasks):
                    await self._cancel(tasks)

            if failure is not None:
                get_metrics().batches.labels(status="failed").inc()
                logger.error(
                    "batch_failed",
                    batch_index=failure.batch_index,
                    error=str(failure.cause),
                    batches=len(batches),
                )
                raise failure from failure.cause

            for task, index in tasks.items():
                results[index] = task.result()

        flat: list[R] = []
        for part in results:
            flat.extend(part or [])

        self._total_batches += len(batches)
        self._total_items += len(items)
        get_metrics().batches.labels(status="completed").inc(len(batches))
        logger.info(
            "batch_run_complete",
            batches=len(batches),
            items=len(items),
            results=len(flat),
            latency_ms=round((time.perf_counter() - t0) * 1000, 2),
        )
        return flat

    async def _run_batch(
        self,
        index: int,
        batch: list[T],
        processor: BatchFn,
        semaphore: asyncio.Semaphore,
    ) -> list[R]:
        self._in_flight += 1
        self._max_in_flight = max(self._max_in_flight, self._in_flight)
        get_metrics().batches_in_flight.inc()
        try:
            if inspect.iscoroutinefunction(processor):
                out = await processor(batch)
            else:
                out = await asyncio.to_thread(processor, batch)
                if inspect.isawaitable(out):
                    out = await out
            # Non-sequence output fails the batch like any processor error
            results = list(out)
            logger.debug("batch_complete", batch_index=index, size=len(batch))
            return results
        finally:
            self._in_flight -= 1
            get_metrics().batches_in_flight.dec()
            semaphore.release()

    @staticmethod
    def _first_failure(tasks: dict[asyncio.Task, int]) -> BatchError | None:
        """Lowest-index failed batch among finished tasks, if any."""
        failed = [
            (index, task.exception())
            for task, index in tasks.items()
            if task.done() and not task.cancelled() and task.exception() is not None
        ]
        if not failed:
            return None
        index, exc = min(failed, key=lambda pair: pair[0])
        return BatchError(index, exc)

    @staticmethod
    async def _cancel(tasks: dict[asyncio.Task, int]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_runs": self._total_runs,
            "total_batches": self._total_batches,
            "total_items": self._total_items,
            "max_in_flight": self._max_in_flight,
            "batch_size": self._config.batch_size,
            "max_concurrent_requests": self._config.max_concurrent_requests,
        }

async def batch_process(
    items: Sequence[T],
    config: AiLinterConfig,
    processor: BatchFn,
    *,
    rate_limiter: RateLimiter | None = None,
) -> list[R]:
    """
    Process ``items`` in batches; results come back in input order.

    A limiter built from ``config`` is used when none is passed, which only
    limits this call; share one RateLimiter to limit across calls.
    """
    limiter = rate_limiter or RateLimiter(config.rate_limit_per_minute)
    return await BatchProcessor(config, limiter).run(items, processor)
