"""
Tests for tools/rate_limiter.py — token bucket and the shared 429 back-off.

Uses short pauses (0.05-0.1s) for fast tests.
"""

import asyncio
import time

from tools.rate_limiter import RateLimiter


class TestBucket:

    def test_burst_then_wait(self):
        limiter = RateLimiter(max_tokens=2, refill_rate=20.0, name="t")

        async def run():
            start = time.monotonic()
            for _ in range(3):
                await limiter.acquire()
            return time.monotonic() - start

        assert asyncio.run(run()) >= 0.04

    def test_tokens_never_exceed_max(self):
        limiter = RateLimiter(max_tokens=3, refill_rate=1000.0)
        time.sleep(0.01)
        assert limiter.available == 3


class TestPenalize:

    def test_drains_and_pauses(self):
        limiter = RateLimiter(max_tokens=5, refill_rate=1000.0)
        remaining = limiter.penalize(0.1)
        assert 0 < remaining <= 0.1
        assert limiter.available == 0
        assert limiter.penalties == 1

    def test_acquire_waits_out_the_pause(self):
        limiter = RateLimiter(max_tokens=5, refill_rate=1000.0)

        async def run():
            limiter.penalize(0.1)
            start = time.monotonic()
            await limiter.acquire()
            return time.monotonic() - start

        assert asyncio.run(run()) >= 0.09

    def test_no_refill_during_pause(self):
        limiter = RateLimiter(max_tokens=5, refill_rate=1000.0)
        limiter.penalize(0.2)
        time.sleep(0.05)
        assert limiter.available == 0

    def test_longer_pause_is_kept(self):
        limiter = RateLimiter()
        limiter.penalize(1.0)
        assert limiter.penalize(0.01) > 0.5
        assert limiter.penalties == 2

    def test_negative_pause_only_drains(self):
        limiter = RateLimiter(max_tokens=5, refill_rate=10.0)
        assert limiter.penalize(-3) == 0
        assert limiter.pause_remaining == 0

    def test_every_waiter_backs_off(self):
        limiter = RateLimiter(max_tokens=10, refill_rate=1000.0)

        async def run():
            limiter.penalize(0.1)
            start = time.monotonic()
            await asyncio.gather(*(limiter.acquire() for _ in range(3)))
            return time.monotonic() - start

        assert asyncio.run(run()) >= 0.09
