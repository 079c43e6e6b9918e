"""Bounded-parallelism scheduling for coroutine functions."""

import asyncio
import math
from collections import deque
from typing import Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """
    Run coroutine functions with at most ``concurrency`` in flight.

    Calls beyond the limit wait in FIFO order. When a running call settles,
    success or failure, its slot passes straight to the oldest waiter. Each
    call keeps its own outcome: one failing call never affects the others.

    Usage:
        limit = ConcurrencyLimiter(5)
        result = await limit(lambda: client.fetch(item_id))
    """

    def __init__(self, concurrency: float) -> None:
        valid_int = isinstance(concurrency, int) and not isinstance(concurrency, bool)
        if not (valid_int or concurrency == math.inf) or concurrency < 1:
            raise ValueError("Expected concurrency to be an integer from 1 and up, or math.inf")

        self.concurrency = concurrency
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def active_count(self) -> int:
        """Calls currently executing."""
        return self._active

    @property
    def pending_count(self) -> int:
        """Calls queued for a slot."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def __call__(self, fn: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        try:
            return await fn()
        finally:
            self._release()

    run = __call__

    async def _acquire(self) -> None:
        if self._active < self.concurrency and not self._waiters:
            self._active += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation; pass it on
                self._release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Hand the slot over; the active count stays the same
                waiter.set_result(None)
                return
        self._active -= 1


async def gather_limited(
    factories: Iterable[Callable[[], Awaitable[T]]],
    concurrency: float,
    return_exceptions: bool = False,
) -> list:
    """Run every factory through a fresh limiter and return results in input order."""
    limit = ConcurrencyLimiter(concurrency)
    return await asyncio.gather(
        *(limit(factory) for factory in factories),
        return_exceptions=return_exceptions,
    )
