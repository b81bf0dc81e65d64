"""
Process-wide limit on concurrent gateway inquiries.

One instance is created at application startup and shared by every polling
loop.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

from wallet_topup.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class RateLimiter:
    """
    Bounded counting semaphore.

    Releasing more slots than were acquired is ignored.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("Rate limiter capacity must be positive")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_use = 0

        logger.info("rate_limiter_initialized", capacity=capacity)

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return self.capacity - self._in_use

    async def acquire(self) -> None:
        """Wait for a free slot. Cancelling the waiter leaves the count unchanged."""
        await self._semaphore.acquire()
        self._in_use += 1
        metrics.set_rate_limiter_in_use(self._in_use)

    def release(self) -> None:
        if self._in_use == 0:
            logger.warning("rate_limiter_release_dropped", capacity=self.capacity)
            return
        self._in_use -= 1
        self._semaphore.release()
        metrics.set_rate_limiter_in_use(self._in_use)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()
