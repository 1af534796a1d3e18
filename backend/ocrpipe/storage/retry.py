"""Bounded exponential-backoff retry for storage network calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS   = 3
DEFAULT_BASE_DELAY = 0.25   # seconds; doubles after every failed attempt


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name:       str,
    attempts:   int   = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> T:
    """
    Await operation() up to `attempts` times.

    Waits base_delay, 2*base_delay, ... between attempts. The final attempt
    is not wrapped: its exception propagates unchanged.
    """
    delay = base_delay
    for attempt in range(1, attempts):
        try:
            return await operation()
        except Exception as exc:
            logger.warning(
                "Retrying | op=%s attempt=%d/%d delay_ms=%.0f error=%s",
                name, attempt, attempts, delay * 1000, exc,
            )
            await asyncio.sleep(delay)
            delay *= 2

    return await operation()
