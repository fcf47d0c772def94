"""OpenAI-compatible decision service adapter.

Implements the core ReplyGeneratorPort and IntentServicePort against any
``/chat/completions`` endpoint that speaks the OpenAI wire format.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import urllib.error
import urllib.request
from typing import Any, Iterable, Optional, Sequence

from core.errors import DecisionServiceFailure
from core.models import HistoryEntry, IntentDecision
from core.retry import exponential_backoff, retry

LOGGER = logging.getLogger(__name__)

DEFAULT_REPLY_PROMPT = (
    "You are a friendly assistant answering direct messages. Keep replies short "
    "and polite, ideally within two or three sentences."
)
DEFAULT_INTENT_PROMPT = (
    "You help decide whether sending a lead tool (a sign-up card, a business card "
    "or a landing page) is appropriate for this conversation. Avoid bothering "
    "people who are not interested."
)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _chat_role(role: str) -> str:
    return "user" if role in {"user", "system"} else "assistant"


def history_messages(history: Sequence[HistoryEntry], limit: int) -> list[dict[str, str]]:
    """Map stored history onto chat messages; spotlight lines count as user turns."""

    recent = list(history)[-limit:] if limit > 0 else []
    return [{"role": _chat_role(entry.role), "content": entry.content} for entry in recent if entry.content]


def describe_tools(tools: Iterable[dict[str, Any]]) -> str:
    lines = ["Available tools:"]
    for tool in tools:
        lines.append(
            f'- ID: "{tool["id"]}", Title: "{tool.get("title", "")}", '
            f'Description: "{tool.get("description") or "No description"}"'
        )
    if len(lines) == 1:
        lines.append("No tools available.")
    return "\n".join(lines)


def parse_intent(raw_text: str, valid_tool_ids: Iterable[str]) -> IntentDecision:
    """Parse the model's JSON decision.

    Unknown tool ids are dropped (the router then falls back to its default
    tool). A reply that is not JSON or lacks a boolean ``shouldSend`` is a
    ``DecisionServiceFailure``.
    """

    text = _FENCE.sub("", (raw_text or "").strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecisionServiceFailure(f"intent response is not JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise DecisionServiceFailure("intent response is not a JSON object")

    should_send = data.get("shouldSend", data.get("should_send"))
    if not isinstance(should_send, bool):
        raise DecisionServiceFailure("intent response has no boolean shouldSend")

    tool_id = data.get("toolId", data.get("tool_id"))
    if tool_id is not None and str(tool_id) not in set(valid_tool_ids):
        LOGGER.warning("Intent service returned unknown tool id %r", tool_id)
        tool_id = None

    confidence = data.get("confidence", data.get("confidenceScore", 1.0))
    try:
        confidence = float(confidence)
    except (TypeError, ValueError):
        confidence = 1.0

    return IntentDecision(
        should_send=should_send,
        tool_id=str(tool_id) if tool_id is not None else None,
        reason=str(data.get("reason") or ""),
        confidence=confidence,
        generated_text=str(data.get("generatedText") or data.get("generated_text") or ""),
    )


def extract_content(response: dict[str, Any]) -> str:
    try:
        return str(response["choices"][0]["message"]["content"]).strip()
    except (KeyError, IndexError, TypeError) as exc:
        raise DecisionServiceFailure("completion response has no message content") from exc


class OpenAICompatibleService:
    """Reply generation and intent decisions over the chat-completions API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        reply_prompt: str = DEFAULT_REPLY_PROMPT,
        intent_prompt: str = DEFAULT_INTENT_PROMPT,
        temperature: float = 0.7,
        max_tokens: int = 500,
        timeout: float = 30.0,
        max_attempts: int = 2,
        reply_history_limit: int = 10,
        intent_history_limit: int = 20,
    ) -> None:
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is required for AI replies")
        self._api_key = api_key
        self._base_url = base_url
        self._model = model
        self._reply_prompt = reply_prompt
        self._intent_prompt = intent_prompt
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._reply_history_limit = reply_history_limit
        self._intent_history_limit = intent_history_limit

    def _endpoint(self) -> str:
        base = self._base_url.rstrip("/")
        if base.endswith("/chat/completions"):
            return base
        return f"{base}/chat/completions"

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        request.add_header("Authorization", f"Bearer {self._api_key}")
        # Blocking call; callers run it in a worker thread.
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise DecisionServiceFailure(f"API error {e.code}: {body[:300]}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise DecisionServiceFailure(f"API request failed: {e}") from e

    async def _complete(
        self, messages: list[dict[str, str]], json_mode: bool = False, max_tokens: Optional[int] = None
    ) -> str:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": max_tokens or self._max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        async def _call() -> dict[str, Any]:
            return await asyncio.to_thread(self._post, payload)

        response = await retry(_call, self._max_attempts, exponential_backoff(1.0), label="chat completion")
        return extract_content(response)

    async def generate_reply(self, content: str, history: Sequence[HistoryEntry]) -> str:
        messages = [{"role": "system", "content": self._reply_prompt}]
        messages.extend(history_messages(history, self._reply_history_limit))
        # The stored history already ends with this message; avoid sending it twice.
        if messages[-1] != {"role": "user", "content": content}:
            messages.append({"role": "user", "content": content})
        reply = await self._complete(messages)
        LOGGER.debug("Generated reply of %s chars", len(reply))
        return reply

    async def get_intent(self, context: dict[str, Any]) -> IntentDecision:
        current = (context.get("current_message") or {}).get("content") or ""
        if not current:
            raise DecisionServiceFailure("intent context has no current message")
        tools = list(context.get("available_tools") or [])
        system_prompt = (
            f"{self._intent_prompt}\n\n{describe_tools(tools)}\n\n"
            "Based on the conversation history and the latest user message, decide if sending one of "
            "the available tools is appropriate. Respond ONLY with a JSON object with the fields "
            "shouldSend (boolean), toolId (string, one of the IDs above), reason (string), "
            "confidence (number 0-1) and optionally generatedText (string)."
        )
        messages = [{"role": "system", "content": system_prompt}]
        history = context.get("conversation_history") or []
        for entry in history[-self._intent_history_limit:]:
            messages.append({"role": _chat_role(entry.get("role", "user")), "content": entry.get("content", "")})
        if messages[-1] != {"role": "user", "content": current}:
            messages.append({"role": "user", "content": current})

        raw = await self._complete(messages, json_mode=True, max_tokens=150)
        decision = parse_intent(raw, [tool["id"] for tool in tools])
        LOGGER.info(
            "Intent for %s: send=%s tool=%s confidence=%.2f",
            context.get("contact_id"),
            decision.should_send,
            decision.tool_id,
            decision.confidence,
        )
        return decision
