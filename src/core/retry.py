"""Shared retry helper for flaky surface operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DelayPolicy = Callable[[int], float]


def fixed_delay(seconds: float) -> DelayPolicy:
    """Wait the same amount of time before every retry."""

    return lambda attempt: seconds


def exponential_backoff(base: float, factor: float = 2.0, cap: Optional[float] = None) -> DelayPolicy:
    """Wait ``base * factor ** (attempt - 1)`` seconds, optionally capped."""

    def _policy(attempt: int) -> float:
        delay = base * (factor ** max(attempt - 1, 0))
        if cap is not None:
            delay = min(delay, cap)
        return delay

    return _policy


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    delay_policy: DelayPolicy = fixed_delay(0.0),
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it returns a truthy value.

    A falsy result or an exception counts as a failed attempt. After the last
    attempt the final result is returned, or the final exception re-raised.
    ``delay_policy`` receives the number of the attempt that just failed.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    result: Optional[T] = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
        except asyncio.CancelledError:
            raise
        except Exception:
            if attempt == max_attempts:
                raise
            LOGGER.debug("%s raised on attempt %s/%s", label, attempt, max_attempts, exc_info=True)
        else:
            if result:
                return result
            LOGGER.debug("%s returned %r on attempt %s/%s", label, result, attempt, max_attempts)
            if attempt == max_attempts:
                break
        await sleep(delay_policy(attempt))
    return result  # type: ignore[return-value]
