"""
RateLimiter — Token bucket for outbound calls.

Keeps a large batch fan-out from tripping the LLM provider's quota, and
keeps announcements under Twitch's chat limit (20 messages / 30s for a
non-moderator bot account).
"""

import time
import asyncio
import logging

logger = logging.getLogger("RateLimiter")


class RateLimiter:
    """Token bucket shared by every caller of one upstream.

    Up to `capacity` calls may burst; afterwards calls are admitted at
    `capacity / per_seconds` per second. `await limiter.acquire()` before
    each call.
    """

    def __init__(self, capacity: int, per_seconds: float, name: str = "default"):
        self.capacity = capacity
        self.per_seconds = per_seconds
        self.name = name
        self._tokens = float(capacity)
        self._stamp = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def refill_rate(self) -> float:
        return self.capacity / self.per_seconds

    def _top_up(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.capacity, self._tokens + (now - self._stamp) * self.refill_rate)
        self._stamp = now

    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        async with self._lock:
            self._top_up()
            while self._tokens < 1.0:
                wait_time = (1.0 - self._tokens) / self.refill_rate
                logger.warning(f"[{self.name}] Throttled, waiting {wait_time:.1f}s")
                await asyncio.sleep(wait_time)
                self._top_up()
            self._tokens -= 1.0

    @property
    def available(self) -> float:
        self._top_up()
        return self._tokens


llm_limiter = RateLimiter(capacity=15, per_seconds=60, name="llm")
chat_limiter = RateLimiter(capacity=20, per_seconds=30, name="twitch_chat")
