from __future__ import annotations

from datetime import date, datetime, time

from core.config import RateLimitConfig, WorkingHoursConfig
from core.gating import SendLimiter, within_working_hours


class FakeToday:
    def __init__(self, day: date) -> None:
        self.day = day

    def __call__(self) -> date:
        return self.day


def test_working_hours_are_inclusive() -> None:
    hours = WorkingHoursConfig(enabled=True, start=time(9, 0), end=time(18, 0))
    assert within_working_hours(hours, datetime(2024, 1, 1, 9, 0))
    assert within_working_hours(hours, datetime(2024, 1, 1, 18, 0, 59))
    assert not within_working_hours(hours, datetime(2024, 1, 1, 18, 1))
    assert not within_working_hours(hours, datetime(2024, 1, 1, 8, 59))


def test_working_hours_wrap_past_midnight() -> None:
    hours = WorkingHoursConfig(enabled=True, start=time(22, 0), end=time(2, 0))
    assert within_working_hours(hours, datetime(2024, 1, 1, 23, 30))
    assert within_working_hours(hours, datetime(2024, 1, 1, 1, 0))
    assert not within_working_hours(hours, datetime(2024, 1, 1, 12, 0))


def test_disabled_working_hours_always_allow() -> None:
    assert within_working_hours(WorkingHoursConfig(enabled=False), datetime(2024, 1, 1, 3, 0))


def test_daily_and_per_conversation_caps() -> None:
    limiter = SendLimiter(FakeToday(date(2024, 1, 1)))
    limits = RateLimitConfig(max_per_day=3, max_per_conversation=2)

    assert limiter.acquire("a", limits) is not None
    assert limiter.acquire("a", limits) is not None
    assert limiter.acquire("a", limits) is None
    assert limiter.acquire("b", limits) is not None
    assert limiter.acquire("c", limits) is None
    assert limiter.total == 3
    assert limiter.count_for("a") == 2


def test_release_returns_the_slot() -> None:
    limiter = SendLimiter(FakeToday(date(2024, 1, 1)))
    limits = RateLimitConfig(max_per_day=1, max_per_conversation=1)

    reservation = limiter.acquire("a", limits)
    assert limiter.acquire("a", limits) is None
    limiter.release(reservation)
    assert limiter.total == 0
    assert limiter.acquire("a", limits) is not None


def test_counters_reset_on_a_new_day() -> None:
    today = FakeToday(date(2024, 1, 1))
    limiter = SendLimiter(today)
    limits = RateLimitConfig(max_per_day=1, max_per_conversation=1)
    reservation = limiter.acquire("a", limits)

    today.day = date(2024, 1, 2)
    assert limiter.total == 0
    assert limiter.acquire("a", limits) is not None
    limiter.release(reservation)
    assert limiter.total == 1


def test_seed_loads_todays_counts_only() -> None:
    limiter = SendLimiter(FakeToday(date(2024, 1, 1)))
    limiter.seed(date(2023, 12, 31), {"a": 5})
    assert limiter.total == 0

    limiter.seed(date(2024, 1, 1), {"a": 2, "b": 1})
    assert limiter.total == 3
    assert limiter.blocked_reason("a", RateLimitConfig(max_per_day=10, max_per_conversation=2))
