"""
Pacing strategies that space out batches of oracle calls.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class BatchPacer(ABC):
    """Decides how long to wait before dispatching the next batch."""

    def __init__(self, sleep: Sleeper = asyncio.sleep):
        self._sleep = sleep

    @abstractmethod
    def delay_before(self, batch_size: int, first: bool) -> float:
        """Seconds to wait before dispatching a batch of batch_size calls."""

    async def wait(self, batch_size: int, first: bool = False) -> float:
        delay = self.delay_before(batch_size, first)
        if delay > 0:
            logger.debug(f"[PACING] Waiting {delay:.3f}s before next batch")
            await self._sleep(delay)
        return delay


class FixedDelayPacer(BatchPacer):
    """Constant pause between batches, whatever their size."""

    def __init__(self, delay: float = 1.0, sleep: Sleeper = asyncio.sleep):
        super().__init__(sleep)
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.delay = delay

    def delay_before(self, batch_size: int, first: bool) -> float:
        return 0.0 if first else self.delay


class TokenBucketPacer(BatchPacer):
    """
    Token bucket refilled at `rate` calls per second, holding at most
    `capacity` tokens. A batch takes one token per call, whatever its size.

    The balance may go negative: a batch that finds too few tokens books them
    against future refill and waits until the deficit is paid back. One pacer
    is shared by every session, so a later caller queues behind the tokens
    already reserved by earlier ones.
    """

    def __init__(
        self,
        rate: float,
        capacity: float,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(sleep)
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._tokens = capacity
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = max(now, self._updated)

    def delay_before(self, batch_size: int, first: bool) -> float:
        self._refill()
        self._tokens -= batch_size
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.rate


def build_pacer(settings) -> BatchPacer:
    """Create the pacer selected by settings.SIMILARITY_PACING."""
    mode = (settings.SIMILARITY_PACING or "fixed").lower()
    if mode == "fixed":
        return FixedDelayPacer(delay=settings.SIMILARITY_BATCH_DELAY_MS / 1000.0)
    if mode == "token_bucket":
        return TokenBucketPacer(
            rate=settings.SIMILARITY_RATE_PER_SECOND,
            capacity=max(float(settings.SIMILARITY_BATCH_SIZE), 1.0)
        )
    raise ValueError(f"Unknown SIMILARITY_PACING '{settings.SIMILARITY_PACING}'. Options: fixed, token_bucket")
