"""
Rate Limiter — Fixed Window Admission
=======================================

Admits at most ``rate_limit_per_minute`` AI requests per 60-second
window. The window starts at the first admission and resets once it has
fully elapsed; admission never blocks, it either succeeds or raises
``RateLimitExceeded`` with the time left in the window.

Design:
  - One critical section per admission (threading.Lock, no awaits inside)
  - Injectable monotonic clock for deterministic tests
  - Owned by whoever constructs it; pass the same instance to every caller
    that shares the limit

Usage:
    limiter = RateLimiter(20)
    limiter.admit()                                   # raises when exhausted
    await admit_with_retry(limiter, attempts=3, delay_s=1.0)
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from typing import Any

from moonshine.core.exceptions import RateLimitExceeded
from moonshine.infra.telemetry import get_logger, get_metrics

logger = get_logger(__name__)

WINDOW_SECONDS = 60.0

class RateLimiter:
    """Process-wide fixed-window counter guarding AI provider calls."""

    def __init__(
        self,
        rate_limit_per_minute: int,
        *,
        window_s: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate_limit_per_minute <= 0:
            raise ValueError("rate_limit_per_minute must be a positive integer")
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        self._limit = rate_limit_per_minute
        self._window = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._count = 0
        self._window_start = clock()

        self._total_admitted = 0
        self._total_rejected = 0

    @property
    def limit(self) -> int:
        return self._limit

    def admit(self) -> None:
        """Count one request against the current window or raise RateLimitExceeded."""
        with self._lock:
            now = self._clock()
            if now - self._window_start >= self._window:
                self._count = 0
                self._window_start = now
            if self._count >= self._limit:
                retry_after = self._window - (now - self._window_start)
                self._total_rejected += 1
                admitted = False
            else:
                self._count += 1
                self._total_admitted += 1
                admitted = True

        get_metrics().record_admission(admitted)
        if not admitted:
            logger.warning("rate_limit_exceeded", limit=self._limit, retry_after_s=round(retry_after, 3))
            raise RateLimitExceeded(self._limit, retry_after)

    @property
    def remaining(self) -> int:
        """Admissions left in the current window."""
        with self._lock:
            if self._clock() - self._window_start >= self._window:
                return self._limit
            return max(0, self._limit - self._count)

    def reset(self) -> None:
        with self._lock:
            self._count = 0
            self._window_start = self._clock()

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "limit": self._limit,
                "window_s": self._window,
                "in_window": self._count,
                "total_admitted": self._total_admitted,
                "total_rejected": self._total_rejected,
            }

async def admit_with_retry(limiter: RateLimiter, *, attempts: int, delay_s: float) -> None:
    """
    Admit through ``limiter``, retrying ``attempts`` more times on rejection.

    Sleeps ``delay_s`` between tries; re-raises the last RateLimitExceeded.
    """
    for attempt in range(attempts + 1):
        try:
            limiter.admit()
            return
        except RateLimitExceeded:
            if attempt >= attempts:
                raise
            logger.debug("admission_retry", attempt=attempt + 1, delay_s=delay_s)
            await asyncio.sleep(delay_s)
