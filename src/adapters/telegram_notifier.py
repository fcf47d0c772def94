"""Telegram notification adapter for Saved Messages.

Formats a human-readable Markdown notice and sends it to Saved Messages.
"""

from __future__ import annotations

from adapters.notification_formatting import format_notice
from core.models import OperatorNotice


class TelegramSavedMessagesNotifier:
    """Notifier adapter that sends operator notices to the user's Saved Messages."""

    def __init__(self, client, aliases: dict[str, str]) -> None:
        self._client = client
        self._aliases = aliases

    async def notify(self, notice: OperatorNotice) -> None:
        message = format_notice(notice, self._aliases, mode="markdown")
        await self._client.send_message("me", message, parse_mode="Markdown")
