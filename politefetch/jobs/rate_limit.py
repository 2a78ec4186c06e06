from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

DEFAULT_BASE_DELAY_MS = 1500.0
DEFAULT_JITTER_MS = 500.0


class RateLimiter:
    """Fixed per-call politeness delay with random jitter.

    Every call waits ``base_delay_ms`` plus up to ``jitter_ms``, independent of
    when the previous request went out. Concurrent callers each wait on their
    own, so there is no global spacing guarantee across workers.
    """

    def __init__(
        self,
        base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
        jitter_ms: float = DEFAULT_JITTER_MS,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.base_delay_ms = max(0.0, base_delay_ms)
        self.jitter_ms = max(0.0, jitter_ms)
        self._sleep = sleep

    def next_delay_seconds(self) -> float:
        jitter = random.uniform(0.0, self.jitter_ms) if self.jitter_ms else 0.0
        return (self.base_delay_ms + jitter) / 1000.0

    async def wait(self) -> float:
        delay = self.next_delay_seconds()
        if delay > 0:
            await self._sleep(delay)
        return delay
