from __future__ import annotations

import asyncio
from datetime import datetime

from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_notifier import TelegramSavedMessagesNotifier
from core.models import OperatorNotice

NOTICE = OperatorNotice(
    level="warning",
    title="Conversation switch failed",
    conversation_id="123",
    detail="conversation could not be activated",
    created_at=datetime(2024, 1, 1, 12, 0),
)


class FakeClient:
    def __init__(self) -> None:
        self.sent = []

    async def send_message(self, entity, message, parse_mode=None) -> None:
        self.sent.append((entity, message, parse_mode))


class RecordingBotNotifier(TelegramBotNotifier):
    def __init__(self) -> None:
        super().__init__(bot_token="token", chat_id="42", aliases={"123": "Main client"})
        self.payloads = []

    def _post(self, payload: dict) -> None:
        self.payloads.append(payload)


def test_saved_messages_notifier_sends_markdown_to_self() -> None:
    client = FakeClient()
    asyncio.run(TelegramSavedMessagesNotifier(client, {}).notify(NOTICE))

    [(entity, message, parse_mode)] = client.sent
    assert entity == "me"
    assert parse_mode == "Markdown"
    assert "**Conversation switch failed**" in message


def test_bot_notifier_posts_html_payload() -> None:
    notifier = RecordingBotNotifier()
    asyncio.run(notifier.notify(NOTICE))

    [payload] = notifier.payloads
    assert payload["chat_id"] == "42"
    assert payload["parse_mode"] == "HTML"
    assert "Main client (123)" in payload["text"]
    assert notifier._endpoint() == "https://api.telegram.org/bottoken/sendMessage"
