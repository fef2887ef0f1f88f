import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


class RollingWindowLimiter:
    """
    At most `limit` acquisitions in any rolling `window` seconds.
    Callers over the limit wait for the oldest slot to age out; nothing is dropped.
    """

    def __init__(
        self,
        limit: int = 60,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.limit = max(1, limit)
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._stamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._stamps and self._stamps[0] <= cutoff:
            self._stamps.popleft()

    def remaining(self) -> int:
        self._prune(self._clock())
        return self.limit - len(self._stamps)

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._stamps) < self.limit:
                    self._stamps.append(now)
                    return
                wait = self._stamps[0] + self.window - now
                logger.info("Rate limit reached (%d/%ss), waiting %.2fs", self.limit, self.window, wait)
                await self._sleep(max(wait, 0.01))
