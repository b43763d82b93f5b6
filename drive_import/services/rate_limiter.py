"""Shared minimum-interval rate limiter for outbound calls."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Enforces a minimum interval between calls across all workers.

    A caller that arrives too soon after the previous call (by any worker)
    sleeps for the remaining interval. Calls are delayed, never rejected.
    """

    def __init__(
        self,
        requests_per_minute: int = 120,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self._min_interval = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> float:
        """Wait for the next slot. Returns the time slept."""
        async with self._lock:
            waited = 0.0
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self._min_interval:
                    waited = self._min_interval - elapsed
                    logger.debug("Rate limiting: sleeping for %.2fs", waited)
                    await self._sleep(waited)
            self._last_call = self._clock()
            return waited

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *args):
        return None
