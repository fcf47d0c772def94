"""Send gates: working hours and daily rate caps (core domain)."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Callable, Mapping, Optional

from core.config import RateLimitConfig, WorkingHoursConfig

LOGGER = logging.getLogger(__name__)


def within_working_hours(config: WorkingHoursConfig, now: datetime) -> bool:
    """Return True if ``now`` is inside the inclusive [start, end] window.

    Compared at minute resolution. A window whose end is before its start
    wraps past midnight.
    """

    if not config.enabled:
        return True
    minutes = now.hour * 60 + now.minute
    start = config.start.hour * 60 + config.start.minute
    end = config.end.hour * 60 + config.end.minute
    if start <= end:
        return start <= minutes <= end
    return minutes >= start or minutes <= end


@dataclass(frozen=True)
class Reservation:
    conversation_id: str
    day: date


class SendLimiter:
    """Global and per-conversation daily send counters.

    A slot is reserved before a send is queued and released if the send
    fails, so in-flight sends already count against the caps. Counters reset
    when ``today()`` moves to a new date.
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today
        self._day = today()
        self._total = 0
        self._per_conversation: Counter = Counter()

    def seed(self, day: date, counts: Mapping[str, int]) -> None:
        """Load counts persisted earlier today; ignored for other days."""

        self._roll()
        if day != self._day:
            return
        self._per_conversation = Counter({key: int(value) for key, value in counts.items()})
        self._total = sum(self._per_conversation.values())

    @property
    def total(self) -> int:
        self._roll()
        return self._total

    def count_for(self, conversation_id: str) -> int:
        self._roll()
        return self._per_conversation[conversation_id]

    def _roll(self) -> None:
        today = self._today()
        if today != self._day:
            LOGGER.info("New day %s; resetting send counters (%s sent on %s)", today, self._total, self._day)
            self._day = today
            self._total = 0
            self._per_conversation.clear()

    def blocked_reason(self, conversation_id: str, limits: RateLimitConfig) -> Optional[str]:
        self._roll()
        if self._total >= limits.max_per_day:
            return f"daily cap {limits.max_per_day} reached"
        if self._per_conversation[conversation_id] >= limits.max_per_conversation:
            return f"per-conversation cap {limits.max_per_conversation} reached for {conversation_id}"
        return None

    def acquire(self, conversation_id: str, limits: RateLimitConfig) -> Optional[Reservation]:
        """Reserve one send slot, or return None if a cap is reached."""

        reason = self.blocked_reason(conversation_id, limits)
        if reason:
            LOGGER.info("Send to %s blocked: %s", conversation_id, reason)
            return None
        self._total += 1
        self._per_conversation[conversation_id] += 1
        return Reservation(conversation_id=conversation_id, day=self._day)

    def release(self, reservation: Reservation) -> None:
        """Give a reserved slot back after a failed send."""

        self._roll()
        if reservation.day != self._day:
            return
        if self._per_conversation[reservation.conversation_id] > 0:
            self._per_conversation[reservation.conversation_id] -= 1
            self._total = max(self._total - 1, 0)
