"""FIFO counting semaphore for bounding concurrent agent runs.

Unlike asyncio.Semaphore, a release hands the permit directly to the oldest
waiter instead of returning it to the pool, so a newly arriving caller can
never overtake a caller that is already queued.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import TypeVar

T = TypeVar("T")


class Semaphore:
    """Counting semaphore with FIFO hand-off.

    Attributes:
        available: Permits that can be taken right now without waiting.
        waiting: Number of callers suspended in acquire().
    """

    def __init__(self, permits: int) -> None:
        # A cap of zero would deadlock every caller.
        self._permits = max(1, permits)
        self._capacity = self._permits
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def available(self) -> int:
        return self._permits

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        """Take a permit, suspending until one is handed over."""
        if self._permits > 0 and not self._waiters:
            self._permits -= 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.cancelled():
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            else:
                # The permit was handed over before the cancellation landed.
                self.release()
            raise

    def release(self) -> None:
        """Wake the oldest waiter, or return the permit to the pool."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._permits += 1

    def try_acquire(self) -> bool:
        """Take a permit only if one is free right now."""
        if self._permits > 0 and not self._waiters:
            self._permits -= 1
            return True
        return False

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` while holding a permit; the permit is always released."""
        await self.acquire()
        try:
            return await fn()
        finally:
            self.release()

    async def __aenter__(self) -> Semaphore:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


__all__ = ["Semaphore"]
