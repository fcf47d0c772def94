"""Consecutive-failure tracking and subscription recovery (core domain)."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

from core.config import HealthConfig
from core.retry import exponential_backoff, retry

LOGGER = logging.getLogger(__name__)


@dataclass
class FailureCounter:
    threshold: int
    max_recovery_attempts: int
    consecutive: int = 0
    recovery_attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.recovery_attempts >= self.max_recovery_attempts


class HealthMonitor:
    """Escalates repeated message-processing failures into a recovery.

    Recovery recreates the message subscription, clears the dedup cache and
    resets the failure count. Only consecutive failed recoveries count
    toward the attempt cap; once it is reached the monitor only logs until
    ``reset`` is called.
    """

    def __init__(
        self,
        config: HealthConfig,
        resubscribe: Callable[[], Awaitable[object]],
        clear_dedup: Callable[[], None],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._resubscribe = resubscribe
        self._clear_dedup = clear_dedup
        self._sleep = sleep
        self._recovering = False
        self.counter = FailureCounter(
            threshold=config.failure_threshold,
            max_recovery_attempts=config.max_recovery_attempts,
        )
        self.recoveries = 0

    def record_success(self) -> None:
        self.counter.consecutive = 0

    async def record_failure(self, reason: str = "") -> bool:
        """Count a failure; return True if it triggered a successful recovery."""

        self.counter.consecutive += 1
        LOGGER.debug(
            "Processing failure %s/%s: %s",
            self.counter.consecutive,
            self.counter.threshold,
            reason or "unspecified",
        )
        if self.counter.consecutive < self.counter.threshold:
            return False
        return await self.recover()

    async def recover(self) -> bool:
        if self._recovering:
            return False
        if self.counter.exhausted:
            LOGGER.error(
                "Recovery limit (%s) reached; %s consecutive failures, manual restart required",
                self.counter.max_recovery_attempts,
                self.counter.consecutive,
            )
            return False

        self.counter.recovery_attempts += 1
        attempt = self.counter.recovery_attempts
        LOGGER.warning("Starting recovery %s/%s", attempt, self.counter.max_recovery_attempts)
        self._recovering = True
        try:
            recovered = await retry(
                self._resubscribe,
                self._config.resubscribe_attempts,
                exponential_backoff(self._config.resubscribe_delay),
                label="resubscribe messages",
                sleep=self._sleep,
            )
        except Exception:
            LOGGER.exception("Recovery %s failed while resubscribing", attempt)
            recovered = False
        finally:
            self._recovering = False

        if not recovered:
            LOGGER.warning(
                "Recovery %s/%s did not restore the subscription",
                attempt,
                self.counter.max_recovery_attempts,
            )
            return False

        self._clear_dedup()
        self.counter.consecutive = 0
        self.counter.recovery_attempts = 0
        self.recoveries += 1
        LOGGER.info("Recovery succeeded; dedup cache cleared")
        return True

    def reset(self) -> None:
        self.counter.consecutive = 0
        self.counter.recovery_attempts = 0
