from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import pytest

from adapters.openai_service import (
    OpenAICompatibleService,
    describe_tools,
    extract_content,
    history_messages,
    parse_intent,
)
from core.errors import DecisionServiceFailure
from core.models import HistoryEntry

TOOL_IDS = ["form", "site"]


class RecordingService(OpenAICompatibleService):
    def __init__(self, content: str) -> None:
        super().__init__(api_key="test-key", max_attempts=1)
        self.content = content
        self.payloads: list[dict[str, Any]] = []

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.payloads.append(payload)
        return {"choices": [{"message": {"content": self.content}}]}


def test_parse_intent_reads_camel_case_fields() -> None:
    decision = parse_intent(
        '```json\n{"shouldSend": true, "toolId": "site", "reason": "asked for info", '
        '"confidence": 0.85, "generatedText": "Take a look:"}\n```',
        TOOL_IDS,
    )
    assert decision.should_send is True
    assert decision.tool_id == "site"
    assert decision.reason == "asked for info"
    assert decision.confidence == pytest.approx(0.85)
    assert decision.generated_text == "Take a look:"


def test_parse_intent_drops_unknown_tool_and_defaults_confidence() -> None:
    decision = parse_intent('{"shouldSend": true, "toolId": "nope"}', TOOL_IDS)
    assert decision.tool_id is None
    assert decision.confidence == 1.0

    assert parse_intent('{"shouldSend": false, "confidenceScore": 0.2}', TOOL_IDS).confidence == pytest.approx(0.2)


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"shouldSend": "yes"}', ""])
def test_parse_intent_rejects_malformed_replies(raw: str) -> None:
    with pytest.raises(DecisionServiceFailure):
        parse_intent(raw, TOOL_IDS)


def test_history_messages_map_roles() -> None:
    history = [
        HistoryEntry(role="system", content="From ad", timestamp=datetime(2024, 1, 1)),
        HistoryEntry(role="user", content="hi", timestamp=datetime(2024, 1, 1)),
        HistoryEntry(role="assistant", content="hello", timestamp=datetime(2024, 1, 1)),
    ]
    assert history_messages(history, 2) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]
    assert history_messages(history, 0) == []


def test_describe_tools_lists_ids() -> None:
    text = describe_tools([{"id": "form", "title": "Form"}])
    assert 'ID: "form"' in text
    assert "No description" in text
    assert describe_tools([]).endswith("No tools available.")


def test_extract_content_requires_message() -> None:
    assert extract_content({"choices": [{"message": {"content": " ok "}}]}) == "ok"
    with pytest.raises(DecisionServiceFailure):
        extract_content({"choices": []})


def test_generate_reply_does_not_repeat_last_user_message() -> None:
    service = RecordingService("Sure, here it is.")
    history = [HistoryEntry(role="user", content="price?", timestamp=datetime(2024, 1, 1))]

    reply = asyncio.run(service.generate_reply("price?", history))

    assert reply == "Sure, here it is."
    messages = service.payloads[0]["messages"]
    assert messages[0]["role"] == "system"
    assert messages[1:] == [{"role": "user", "content": "price?"}]


def test_get_intent_uses_json_mode() -> None:
    service = RecordingService('{"shouldSend": true, "toolId": "form", "confidence": 0.9}')
    context = {
        "contact_id": "123",
        "current_message": {"content": "how do I sign up?"},
        "conversation_history": [],
        "available_tools": [{"id": "form", "title": "Form", "description": "Sign-up form"}],
    }
    decision = asyncio.run(service.get_intent(context))

    assert decision.tool_id == "form"
    payload = service.payloads[0]
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["max_tokens"] == 150
    assert 'ID: "form"' in payload["messages"][0]["content"]


def test_service_requires_api_key() -> None:
    with pytest.raises(RuntimeError):
        OpenAICompatibleService(api_key="")
