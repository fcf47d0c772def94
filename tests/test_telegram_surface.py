from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from telethon.tl.types import PeerUser

from adapters.telegram_surface import InputRef, TelegramSurface
from core.config import ExecutorConfig, PipelineConfig, PollingConfig, TrackerConfig
from core.models import ElementRole, ListKind
from core.processor import AutoReplyPipeline
from surface_fakes import FakeConfigSource, FakeHistory


def _entity(user_id: int, **kwargs) -> SimpleNamespace:
    values = {"id": user_id, "username": None, "first_name": f"User {user_id}", "last_name": None, "title": None}
    values.update(kwargs)
    return SimpleNamespace(**values)


def _dialog(entity, is_user: bool = True, unread: int = 0) -> SimpleNamespace:
    return SimpleNamespace(
        is_user=is_user,
        entity=entity,
        message=SimpleNamespace(raw_text="hi", out=False),
        unread_count=unread,
    )


class FakeClient:
    def __init__(self, dialogs=(), messages=()) -> None:
        self.dialogs = list(dialogs)
        self.messages = list(messages)
        self.connected = True
        self.handlers = []
        self.sent = []
        self.acknowledged = []

    def add_event_handler(self, callback, event) -> None:
        self.handlers.append(callback)

    def is_connected(self) -> bool:
        return self.connected

    async def iter_dialogs(self, limit=None):
        for dialog in self.dialogs[:limit]:
            yield dialog

    async def get_messages(self, entity, limit=None):
        return list(self.messages)

    async def get_entity(self, ref):
        return _entity(ref)

    async def send_read_acknowledge(self, entity) -> None:
        self.acknowledged.append(entity.id)

    async def send_message(self, entity, text) -> None:
        self.sent.append((getattr(entity, "id", entity), text))


def test_contact_list_skips_groups_bots_and_self() -> None:
    client = FakeClient(
        [
            _dialog(_entity(1), unread=2),
            _dialog(_entity(2, title="Group"), is_user=False),
            _dialog(_entity(3, bot=True)),
            _dialog(_entity(4, is_self=True)),
        ]
    )
    surface = TelegramSurface(client)
    items = asyncio.run(surface.get_elements(ElementRole.CONTACT_ITEM))

    assert [item.ids for item in items] == [("1",)]
    assert items[0].unread == 2


def test_activate_then_send_through_input_buffer() -> None:
    client = FakeClient([_dialog(_entity(1))])
    surface = TelegramSurface(client)

    async def scenario() -> None:
        await surface.get_elements(ElementRole.CONTACT_ITEM)
        assert await surface.get_elements(ElementRole.INPUT) == []
        await surface.activate(1)
        assert await surface.query_active_conversation_id() == "1"

        [ref] = await surface.get_elements(ElementRole.INPUT)
        assert ref == InputRef(1)
        assert await surface.is_submit_disabled(ref)
        await surface.set_input_value(ref, "hello")
        assert not await surface.is_submit_disabled(ref)
        await surface.submit(ref)
        assert await surface.get_input_value(ref) == ""

    asyncio.run(scenario())
    assert client.acknowledged == [1]
    assert client.sent == [(1, "hello")]


def test_disconnected_client_disables_submit() -> None:
    client = FakeClient()
    client.connected = False
    surface = TelegramSurface(client)

    async def scenario() -> bool:
        await surface.set_input_value(InputRef(1), "hello")
        return await surface.is_submit_disabled(InputRef(1))

    assert asyncio.run(scenario())


def test_message_list_is_oldest_first() -> None:
    sent_at = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    messages = [
        SimpleNamespace(id=index, peer_id=PeerUser(user_id=1), chat_id=1, out=False, date=sent_at,
                        raw_text=f"m{index}", media=None, fwd_from=None, sender=None)
        for index in (3, 2)
    ]
    surface = TelegramSurface(FakeClient(messages=messages), mark_read=False, now=lambda: sent_at)

    async def scenario():
        await surface.activate(1)
        return await surface.get_elements(ElementRole.MESSAGE_ITEM)

    items = asyncio.run(scenario())
    assert [item.text for item in items] == ["m2", "m3"]


def _message(message_id: int, sent_at: datetime, out: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id=message_id, peer_id=PeerUser(user_id=1), chat_id=1, out=out, date=sent_at,
                           raw_text=f"m{message_id}", media=None, fwd_from=None, sender=None)


def test_message_list_holds_only_messages_after_our_last_reply() -> None:
    now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
    messages = [
        _message(5, now - timedelta(seconds=30)),
        _message(4, now - timedelta(minutes=5)),
        _message(3, now - timedelta(days=1), out=True),
        _message(2, now - timedelta(days=1, minutes=1)),
    ]
    surface = TelegramSurface(FakeClient(messages=messages), mark_read=False, now=lambda: now)

    async def scenario():
        await surface.activate(1)
        return await surface.get_elements(ElementRole.MESSAGE_ITEM)

    items = asyncio.run(scenario())
    assert [item.text for item in items] == ["m4", "m5"]


def test_message_list_skips_unanswered_messages_past_max_age() -> None:
    now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
    messages = [_message(2, now - timedelta(minutes=1)), _message(1, now - timedelta(days=3))]
    surface = TelegramSurface(
        FakeClient(messages=messages), mark_read=False, max_message_age=3600, now=lambda: now
    )

    async def scenario():
        await surface.activate(1)
        return await surface.get_elements(ElementRole.MESSAGE_ITEM)

    items = asyncio.run(scenario())
    assert [item.text for item in items] == ["m2"]


def test_new_messages_in_one_tick_flush_once_per_list() -> None:
    client = FakeClient([_dialog(_entity(1))])
    surface = TelegramSurface(client, mark_read=False)
    snapshots: dict[ListKind, list] = {ListKind.CONVERSATIONS: [], ListKind.MESSAGES: []}

    async def scenario() -> None:
        await surface.activate(1)
        surface.subscribe_list(ListKind.CONVERSATIONS, snapshots[ListKind.CONVERSATIONS].append)
        surface.subscribe_list(ListKind.MESSAGES, snapshots[ListKind.MESSAGES].append)
        handler = client.handlers[0]
        await handler(SimpleNamespace(is_private=True, chat_id=1))
        await handler(SimpleNamespace(is_private=True, chat_id=1))
        await handler(SimpleNamespace(is_private=False, chat_id=-100))
        await asyncio.sleep(0)
        await surface._flush_task

    asyncio.run(scenario())
    assert len(client.handlers) == 1
    assert len(snapshots[ListKind.CONVERSATIONS]) == 1
    assert len(snapshots[ListKind.MESSAGES]) == 1


def test_closed_subscription_stops_callbacks() -> None:
    client = FakeClient([_dialog(_entity(1))])
    surface = TelegramSurface(client)
    received = []

    async def scenario() -> None:
        subscription = surface.subscribe_list(ListKind.CONVERSATIONS, received.append)
        subscription.close()
        await client.handlers[0](SimpleNamespace(is_private=True, chat_id=1))
        await asyncio.sleep(0)
        await surface._flush_task

    asyncio.run(scenario())
    assert received == []


def test_switch_answers_only_the_message_after_our_last_reply() -> None:
    now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
    client = FakeClient(
        [_dialog(_entity(1), unread=1)],
        messages=[
            _message(3, now - timedelta(seconds=5)),
            _message(2, now - timedelta(days=2), out=True),
            _message(1, now - timedelta(days=2, minutes=1)),
        ],
    )
    client.messages[0].raw_text = "and the price now?"
    client.messages[2].raw_text = "what is the price?"
    surface = TelegramSurface(client, mark_read=False, now=lambda: now)
    pipeline = AutoReplyPipeline(
        observation=surface,
        actions=surface,
        config_source=FakeConfigSource(
            rules=[{"name": "Price", "keywords": ["price"], "response": "From $10."}],
            reply={"auto_reply_delay": [0, 0]},
        ),
        history=FakeHistory(),
        config=PipelineConfig(
            tracker=TrackerConfig(settle_delay=0.0, retry_delay=0.0),
            executor=ExecutorConfig(verify_timeout=0.1, poll_interval=0.001, input_settle_delay=0.0),
            polling=PollingConfig(enabled=False),
        ),
    )

    async def scenario() -> None:
        await pipeline.start()
        await pipeline.wait_idle()
        await pipeline.stop()

    asyncio.run(scenario())
    assert pipeline.tracker.active_id == "1"
    assert client.sent == [(1, "From $10.")]
