"""Throttled sequential and bounded-parallel batch execution."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class RateLimiter:
    """
    Enforce a minimum interval between calls.

    Shared by every coroutine talking to the same API; the lock makes
    concurrent callers queue for their slot instead of bursting together.
    """

    def __init__(self, rate: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the limiter.

        Args:
            rate: Max calls per second (None or 0 disables throttling)
            clock: Monotonic clock, injectable for tests
        """
        self.rate = rate or 0.0
        self._clock = clock
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return 1.0 / self.rate if self.rate > 0 else 0.0

    async def wait(self) -> None:
        """Wait until the next call is allowed."""
        if self.rate <= 0:
            return
        async with self._lock:
            now = self._clock()
            if self._last_call is not None:
                wait_time = self.interval - (now - self._last_call)
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
                    now = self._clock()
            self._last_call = now


@dataclass
class ItemOutcome(Generic[T]):
    """Result or captured error for one batch item."""
    index: int
    item: Any
    result: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_batch(
    items: Sequence[Any],
    worker: Callable[[Any], Awaitable[R]],
    concurrency: int = 1,
    inter_item_delay: float = 0.0,
) -> List[ItemOutcome[R]]:
    """
    Run ``worker`` over ``items`` and collect one outcome per item.

    With ``concurrency`` 1 items run strictly in order with a fixed pause
    between them. Above 1 at most ``concurrency`` items are in flight and
    every item runs to completion; a failure is captured on its own
    outcome and never cancels its siblings. Outcomes keep input order.

    Args:
        items: Items to process
        worker: Coroutine function applied to each item
        concurrency: Max items in flight
        inter_item_delay: Seconds to pause after each item

    Returns:
        List of ItemOutcome in input order
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    async def _run_one(index: int, item: Any) -> ItemOutcome[R]:
        try:
            result = await worker(item)
            outcome = ItemOutcome(index=index, item=item, result=result)
        except Exception as e:
            logger.debug(f"Batch item {index} failed: {e}")
            outcome = ItemOutcome(index=index, item=item, error=e)
        if inter_item_delay > 0:
            await asyncio.sleep(inter_item_delay)
        return outcome

    if concurrency == 1:
        outcomes = []
        for index, item in enumerate(items):
            outcomes.append(await _run_one(index, item))
        return outcomes

    semaphore = asyncio.Semaphore(concurrency)

    async def _bounded(index: int, item: Any) -> ItemOutcome[R]:
        async with semaphore:
            return await _run_one(index, item)

    return list(await asyncio.gather(*(_bounded(i, item) for i, item in enumerate(items))))


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    """Split a sequence into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]
