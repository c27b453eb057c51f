"""
RateLimiter — token buckets in front of the pin store relay and Discord.

Reconciliation and bulk style pushes fire many pin updates at once. The
bucket paces them, and when the relay still answers 429 the whole bucket
is paused for the relay's Retry-After, so every caller backs off together
instead of each retrying on its own schedule.
"""

import time
import asyncio
import logging

logger = logging.getLogger('RateLimiter')


class RateLimiter:
    """Token bucket with a shared back-off.

    Callers ``await limiter.acquire()`` before each API call. It sleeps while
    the bucket is empty, and first sleeps out any pause set by ``penalize()``.

    Args:
        max_tokens: Maximum burst size.
        refill_rate: Tokens added per second.
        name: Label for logging.
    """

    def __init__(self, max_tokens: int = 20, refill_rate: float = 10.0, name: str = "default"):
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate
        self.name = name
        self.tokens = float(max_tokens)
        self.last_refill = time.monotonic()
        self.paused_until = 0.0
        self.penalties = 0
        self._lock = asyncio.Lock()

    def _refill(self):
        """Add tokens for the time elapsed since the last refill, not counting a pause."""
        now = time.monotonic()
        start = max(self.last_refill, min(self.paused_until, now))
        self.tokens = min(self.max_tokens, self.tokens + (now - start) * self.refill_rate)
        self.last_refill = now

    @property
    def pause_remaining(self) -> float:
        return max(0.0, self.paused_until - time.monotonic())

    def penalize(self, seconds: float) -> float:
        """The API asked us to slow down: drain the bucket and pause it.

        A longer pause already in force is kept. Returns the pause remaining.
        """
        self._refill()
        self.tokens = 0.0
        self.paused_until = max(self.paused_until, time.monotonic() + max(0.0, seconds))
        self.penalties += 1
        remaining = self.pause_remaining
        logger.warning(f"[{self.name}] Throttled by the server, pausing {remaining:.1f}s")
        return remaining

    async def acquire(self):
        """Wait out any pause and for a token, then consume one."""
        async with self._lock:
            pause = self.pause_remaining
            if pause > 0:
                await asyncio.sleep(pause)

            self._refill()
            if self.tokens < 1.0:
                wait_time = (1.0 - self.tokens) / self.refill_rate
                logger.debug(f"[{self.name}] Bucket empty, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._refill()

            self.tokens -= 1.0

    @property
    def available(self) -> float:
        """Current number of available tokens (without consuming)."""
        self._refill()
        return self.tokens


# Relay: bursts of 20 pin calls, 10/s sustained
pin_store_limiter = RateLimiter(max_tokens=20, refill_rate=10.0, name="pin_store")
# Discord: notification sends and edits
discord_limiter = RateLimiter(max_tokens=5, refill_rate=1.0, name="discord")
