"""Telegram client factory for dmpilot.

The watcher sends replies from a user account, so reconnects must be quiet
and flood waits short enough to keep the reply queue moving.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from telethon import TelegramClient

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION = "dmpilot"


def build_client(options: Optional[Mapping[str, Any]] = None) -> TelegramClient:
    """Create a Telethon client from .env credentials and optional tuning.

    ``options`` is the ``telegram`` section of config.json; only the
    connection keys below are read from it.
    """

    load_dotenv()
    options = options or {}

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    if not api_id or not api_hash:
        raise RuntimeError("API_ID and API_HASH must be set in .env")

    session = os.getenv("SESSION_NAME") or DEFAULT_SESSION
    LOGGER.info("Telegram session %s", session)
    return TelegramClient(
        session,
        int(api_id),
        api_hash,
        connection_retries=int(options.get("connection_retries", 5)),
        auto_reconnect=bool(options.get("auto_reconnect", True)),
        flood_sleep_threshold=int(options.get("flood_sleep_threshold", 60)),
    )
