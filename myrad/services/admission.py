from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


class AdmissionError(Exception):
    pass


class AdmissionRejectedError(AdmissionError):
    pass


@dataclass(frozen=True, slots=True)
class AdmissionStats:
    in_flight: int
    queued: int
    max_concurrent: int
    max_queue: int | None


class AdmissionGate:
    """Bounds how many submissions run against the store at once.

    Waiters are admitted strictly in arrival order: a released slot is handed
    directly to the oldest waiter instead of being returned to the pool, so a
    newcomer can never overtake the queue. With ``max_queue`` set, arrivals
    beyond that many waiters are rejected immediately.
    """

    def __init__(self, max_concurrent: int, *, max_queue: int | None = None) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if max_queue is not None and max_queue < 0:
            raise ValueError("max_queue must not be negative")
        self._max_concurrent = max_concurrent
        self._max_queue = max_queue
        self._in_flight = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    async def acquire(self) -> None:
        if self._in_flight < self._max_concurrent and not self._waiters:
            self._in_flight += 1
            return
        if self._max_queue is not None and len(self._waiters) >= self._max_queue:
            logger.warning(
                "admission_rejected",
                in_flight=self._in_flight,
                queued=len(self._waiters),
                max_queue=self._max_queue,
            )
            raise AdmissionRejectedError("submission queue is full")

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before the cancellation landed.
                self.release()
            else:
                with suppress(ValueError):
                    self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        if self._in_flight <= 0:
            raise RuntimeError("release() called without a matching acquire()")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._in_flight -= 1

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def stats(self) -> AdmissionStats:
        return AdmissionStats(
            in_flight=self._in_flight,
            queued=sum(1 for waiter in self._waiters if not waiter.done()),
            max_concurrent=self._max_concurrent,
            max_queue=self._max_queue,
        )
