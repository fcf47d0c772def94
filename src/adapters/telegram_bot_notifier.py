"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so operator notices can be routed via a bot chat
instead of the watched account itself.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request

from adapters.notification_formatting import format_notice
from core.models import OperatorNotice


class TelegramBotNotifier:
    """Notifier adapter that sends operator notices via the Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str, aliases: dict[str, str]) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._aliases = aliases

    def _endpoint(self) -> str:
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _post(self, payload: dict) -> None:
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=10):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Bot API error {e.code}: {body}") from e

    async def notify(self, notice: OperatorNotice) -> None:
        payload = {
            "chat_id": self._chat_id,
            "text": format_notice(notice, self._aliases, mode="html"),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        # The watcher shares one event loop with the Telegram client.
        await asyncio.to_thread(self._post, payload)
