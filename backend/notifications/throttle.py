import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class SendThrottle:
    """
    Minimum gap between successful sends on one channel.

    run() holds a lock across check, wait, send and update, so concurrent
    handlers are fully serialized. The last-send time only moves after a
    send returns; a failed send leaves it unchanged.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_send: float | None = None

    @property
    def last_send(self) -> float | None:
        return self._last_send

    def wait_time(self, now: float) -> float:
        if self._last_send is None:
            return 0.0
        return max(0.0, self._last_send + self.min_interval - now)

    async def run(self, send: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            delay = self.wait_time(self._clock())
            if delay > 0:
                await self._sleep(delay)

            result = await send()
            self._last_send = self._clock()
            return result
