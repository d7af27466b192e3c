"""Unit tests for fixed-window admission control."""

import asyncio

import pytest

from moonshine.core.exceptions import RateLimitExceeded
from moonshine.infra.runtime.rate_limiter import RateLimiter, admit_with_retry


class TestRateLimiter:

    def test_admits_up_to_limit_then_rejects(self, clock):
        limiter = RateLimiter(3, clock=clock)
        for _ in range(3):
            limiter.admit()
        with pytest.raises(RateLimitExceeded, match="too many requests per minute"):
            limiter.admit()

    def test_window_resets_after_sixty_seconds(self, clock):
        limiter = RateLimiter(2, clock=clock)
        limiter.admit()
        limiter.admit()
        clock.advance(59.9)
        with pytest.raises(RateLimitExceeded):
            limiter.admit()
        clock.advance(0.1)
        limiter.admit()
        assert limiter.remaining == 1

    def test_retry_after_reports_time_left_in_window(self, clock):
        limiter = RateLimiter(1, clock=clock)
        limiter.admit()
        clock.advance(15)
        with pytest.raises(RateLimitExceeded) as info:
            limiter.admit()
        assert info.value.retry_after_s == pytest.approx(45)
        assert info.value.recoverable is True
        assert info.value.to_dict()["error"] == "RATE_LIMIT_EXCEEDED"

    def test_rejection_does_not_consume_capacity(self, clock):
        limiter = RateLimiter(1, clock=clock)
        limiter.admit()
        for _ in range(5):
            with pytest.raises(RateLimitExceeded):
                limiter.admit()
        stats = limiter.get_stats()
        assert stats["total_admitted"] == 1
        assert stats["total_rejected"] == 5
        assert stats["in_window"] == 1

    def test_reset_clears_window(self, clock):
        limiter = RateLimiter(1, clock=clock)
        limiter.admit()
        limiter.reset()
        limiter.admit()

    def test_remaining_is_full_after_window_expires(self, clock):
        limiter = RateLimiter(4, clock=clock)
        limiter.admit()
        assert limiter.remaining == 3
        clock.advance(61)
        assert limiter.remaining == 4

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_rejected(self, limit):
        with pytest.raises(ValueError):
            RateLimiter(limit)


class TestAdmitWithRetry:

    @pytest.mark.asyncio
    async def test_succeeds_once_window_rolls_over(self):
        limiter = RateLimiter(1, window_s=0.05)
        limiter.admit()
        await admit_with_retry(limiter, attempts=5, delay_s=0.03)
        assert limiter.get_stats()["total_admitted"] == 2

    @pytest.mark.asyncio
    async def test_raises_after_attempts_exhausted(self, clock):
        limiter = RateLimiter(1, clock=clock)
        limiter.admit()
        with pytest.raises(RateLimitExceeded):
            await admit_with_retry(limiter, attempts=2, delay_s=0)
        # One initial try plus two retries
        assert limiter.get_stats()["total_rejected"] == 3

    @pytest.mark.asyncio
    async def test_concurrent_admissions_never_exceed_limit(self, clock):
        limiter = RateLimiter(5, clock=clock)

        async def try_admit():
            try:
                limiter.admit()
                return True
            except RateLimitExceeded:
                return False

        outcomes = await asyncio.gather(*(try_admit() for _ in range(20)))
        assert sum(outcomes) == 5
