from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from politefetch.core.errors import FetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000.0
DEFAULT_JITTER_MS = 1000.0


def is_retryable_error(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


def backoff_delay_seconds(attempt: int, *, base_delay_ms: float, jitter_ms: float) -> float:
    jitter = random.uniform(0.0, jitter_ms) if jitter_ms > 0 else 0.0
    return (base_delay_ms * (2**attempt) + jitter) / 1000.0


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    *,
    jitter_ms: float = DEFAULT_JITTER_MS,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, a non-retryable error occurs, or
    ``max_retries`` retries are used up.

    The delay before retry ``n`` (0-based) is ``base_delay_ms * 2**n`` plus up
    to ``jitter_ms`` of random jitter. The final error is re-raised unchanged.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= max(0, max_retries):
                raise
            delay = backoff_delay_seconds(attempt, base_delay_ms=base_delay_ms, jitter_ms=jitter_ms)
            logger.info("retry attempt %s after %.3fs for: %s", attempt + 1, delay, exc)
            await sleep(delay)
            attempt += 1
