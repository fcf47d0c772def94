from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from core.config import ExecutorConfig, PipelineConfig, PollingConfig, TrackerConfig
from core.follow_up import follow_up_status, has_contact_info
from core.models import FollowUpRecord, FollowUpStatus, HistoryEntry
from core.processor import AutoReplyPipeline
from surface_fakes import FakeConfigSource, FakeHistory, FakeSurface, contact

START = datetime(2024, 1, 3, 12, 0)

CONFIG = PipelineConfig(
    tracker=TrackerConfig(settle_delay=0.0, retry_delay=0.0),
    executor=ExecutorConfig(
        element_timeout=0.1,
        verify_timeout=0.1,
        poll_interval=0.001,
        send_attempts=1,
        input_settle_delay=0.0,
    ),
    polling=PollingConfig(enabled=False),
)

FOLLOW_UP = {
    "enabled": True,
    "send_gap": 0,
    "no_response": {"interval_hours": 24, "templates": ["Hi {name}, still interested?", "Last call, {name}!"]},
    "no_contact": {"interval_hours": 48, "templates": ["Happy to send details by email."]},
}


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def today(self):
        return self.now.date()


def _line(role: str, content: str, hours_ago: float) -> HistoryEntry:
    return HistoryEntry(role=role, content=content, timestamp=START - timedelta(hours=hours_ago))


def _answered(history: FakeHistory, conversation_id: str, hours_ago: float = 30) -> None:
    history.append(conversation_id, _line("user", "how much is it?", hours_ago + 1), 50)
    history.append(conversation_id, _line("assistant", "From $10.", hours_ago), 50)


def _pipeline(surface: FakeSurface, history: FakeHistory, clock: Clock, **follow_up) -> AutoReplyPipeline:
    source = FakeConfigSource(
        follow_up={**FOLLOW_UP, **follow_up},
        tools=[{"id": "card", "type": "LEAD_CARD", "title": "Lead card", "content": "Leave your number here."}],
    )
    return AutoReplyPipeline(
        observation=surface,
        actions=surface,
        config_source=source,
        history=history,
        config=CONFIG,
        now=clock,
        today=clock.today,
    )


def test_status_follows_the_history() -> None:
    assert follow_up_status([]) is None
    assert follow_up_status([_line("user", "hi", 2)]) is None
    assert follow_up_status([_line("user", "hi", 2), _line("assistant", "hello", 1)]) is FollowUpStatus.NO_RESPONSE
    assert follow_up_status(
        [_line("system", "Interested", 3), _line("assistant", "hello", 2)]
    ) is FollowUpStatus.NO_RESPONSE
    assert follow_up_status(
        [
            _line("user", "hi", 4),
            _line("assistant", "hello", 3),
            _line("user", "maybe later", 2),
            _line("assistant", "sure", 1),
        ]
    ) is FollowUpStatus.NO_CONTACT
    assert follow_up_status(
        [_line("user", "mail me: ann@example.com", 2), _line("assistant", "thanks", 1)]
    ) is FollowUpStatus.CONVERTED


def test_contact_info_detection() -> None:
    assert has_contact_info("call +1 (555) 123-4567")
    assert has_contact_info("I'm @ann_smith on here")
    assert has_contact_info("ann.smith@example.com")
    assert not has_contact_info("From $10, 25% off")
    assert not has_contact_info("")


def test_quiet_conversation_walks_through_templates() -> None:
    surface = FakeSurface([contact("123", name="Ann")])
    history = FakeHistory()
    _answered(history, "123")
    clock = Clock(START)
    pipeline = _pipeline(surface, history, clock)

    async def scenario() -> list[int]:
        sent = [await pipeline.follow_ups.check()]
        clock.now += timedelta(hours=1)
        sent.append(await pipeline.follow_ups.check())
        clock.now += timedelta(hours=24)
        sent.append(await pipeline.follow_ups.check())
        clock.now += timedelta(hours=48)
        sent.append(await pipeline.follow_ups.check())
        return sent

    assert asyncio.run(scenario()) == [1, 0, 1, 0]
    assert surface.sent_texts == ["Hi Ann, still interested?", "Last call, Ann!"]
    assert history.follow_ups["123"].status == "no_response"
    assert history.follow_ups["123"].count == 2
    assert history.read("123", 10)[-1].content == "Last call, Ann!"
    assert history.stats["follow_ups_sent"] == 2


def test_only_due_quiet_conversations_are_followed_up() -> None:
    contacts = [
        contact("1"),
        contact("2", unread=1),
        contact("3", lead_tag=True),
        contact("4"),
        contact("5"),
        contact("6"),
        contact("7"),
    ]
    surface = FakeSurface(contacts)
    history = FakeHistory()
    _answered(history, "1", hours_ago=2)
    for conversation_id in ("2", "3", "4", "6"):
        _answered(history, conversation_id)
    history.append("5", _line("user", "+44 20 7946 0958", 40), 50)
    history.append("5", _line("assistant", "Thanks!", 39), 50)
    history.append("7", _line("user", "hello?", 1), 50)
    pipeline = _pipeline(surface, history, Clock(START), blacklist=["User-4"])

    assert asyncio.run(pipeline.follow_ups.check()) == 1
    assert [conversation for conversation, _, _ in surface.submitted] == ["6"]


def test_status_change_restarts_the_template_sequence() -> None:
    surface = FakeSurface([contact("123")])
    history = FakeHistory()
    _answered(history, "123", hours_ago=60)
    history.append("123", _line("user", "not now", 55), 50)
    history.append("123", _line("assistant", "No problem.", 54), 50)
    history.follow_ups["123"] = FollowUpRecord(
        status="no_response", count=2, last_sent_at=(START - timedelta(hours=58)).timestamp()
    )
    pipeline = _pipeline(surface, history, Clock(START))

    assert asyncio.run(pipeline.follow_ups.check()) == 1
    assert surface.sent_texts == ["Happy to send details by email."]
    assert history.follow_ups["123"] == FollowUpRecord(status="no_contact", count=1, last_sent_at=START.timestamp())


def test_daily_cap_stops_the_pass_after_no_response_first() -> None:
    surface = FakeSurface([contact("1"), contact("2")])
    history = FakeHistory()
    _answered(history, "1", hours_ago=60)
    history.append("1", _line("user", "hmm", 55), 50)
    history.append("1", _line("assistant", "Any questions?", 54), 50)
    _answered(history, "2")
    pipeline = _pipeline(surface, history, Clock(START), daily_limit=1)

    assert asyncio.run(pipeline.follow_ups.check()) == 1
    assert [conversation for conversation, _, _ in surface.submitted] == ["2"]
    assert pipeline.follow_ups.limiter.total == 1
    assert pipeline.snapshot()["follow_ups_sent_today"] == 1


def test_lead_tool_goes_out_before_the_template() -> None:
    surface = FakeSurface([contact("123", name="Ann")])
    history = FakeHistory()
    _answered(history, "123")
    pipeline = _pipeline(surface, history, Clock(START), lead_tool={"frequency": 2, "type": "LEAD_CARD"})

    assert asyncio.run(pipeline.follow_ups.check()) == 1
    assert surface.sent_texts == ["Leave your number here.", "Hi Ann, still interested?"]
    assert history.lead_sent["123"] == START.timestamp()
    assert history.stats["lead_tools_sent"] == 1


def test_disabled_or_outside_hours_sends_nothing() -> None:
    surface = FakeSurface([contact("123")])
    history = FakeHistory()
    _answered(history, "123")
    disabled = _pipeline(surface, history, Clock(START), enabled=False)
    after_hours = _pipeline(
        surface, history, Clock(START), working_hours={"enabled": True, "start": "13:00", "end": "20:00"}
    )

    assert asyncio.run(disabled.follow_ups.check()) == 0
    assert asyncio.run(after_hours.follow_ups.check()) == 0
    assert surface.submitted == []


def test_failed_follow_up_gives_its_slot_back() -> None:
    surface = FakeSurface([contact("123")])
    surface.submit_error = RuntimeError("send button gone")
    history = FakeHistory()
    _answered(history, "123")
    pipeline = _pipeline(surface, history, Clock(START))

    assert asyncio.run(pipeline.follow_ups.check()) == 0
    assert pipeline.follow_ups.limiter.total == 0
    assert history.follow_ups == {}
    assert history.read("123", 10)[-1].content == "From $10."


def test_checks_do_not_overlap() -> None:
    surface = FakeSurface([contact("123")])
    history = FakeHistory()
    _answered(history, "123")
    pipeline = _pipeline(surface, history, Clock(START))

    async def scenario() -> list[int]:
        return await asyncio.gather(pipeline.follow_ups.check(), pipeline.follow_ups.check())

    assert asyncio.run(scenario()) == [1, 0]
    assert len(surface.submitted) == 1

