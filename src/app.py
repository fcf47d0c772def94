"""Application entry point for the dmpilot auto-reply watcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from telethon import events

import settings
from adapters.json_config import JsonConfigSource
from adapters.openai_service import DEFAULT_INTENT_PROMPT, DEFAULT_REPLY_PROMPT, OpenAICompatibleService
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_notifier import TelegramSavedMessagesNotifier
from adapters.telegram_surface import TelegramSurface
from client import build_client
from core.processor import AutoReplyPipeline
from core.rules_engine import build_rules
from get_session import authorize, login

NAME = "DMPILOT"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/dmpilot.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_notifier(client):
    """Select the operator notice adapter; None disables notices."""

    if not settings.NOTIFICATIONS_ENABLED:
        return None
    if settings.NOTIFICATION_METHOD == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when notification_method=bot")
        if not settings.BOT_CHAT_ID:
            raise RuntimeError("notifications.bot_chat_id is required for bot notifications")
        return TelegramBotNotifier(
            bot_token=bot_token,
            chat_id=str(settings.BOT_CHAT_ID),
            aliases=settings.CONVERSATION_ALIASES,
        )
    if settings.NOTIFICATION_METHOD == "saved_messages":
        return TelegramSavedMessagesNotifier(client, settings.CONVERSATION_ALIASES)
    raise RuntimeError("notification_method must be 'saved_messages' or 'bot'")


def _build_ai_service() -> Optional[OpenAICompatibleService]:
    if not settings.AI_ENABLED:
        return None
    load_dotenv()
    return OpenAICompatibleService(
        api_key=os.getenv("OPENAI_API_KEY", ""),
        base_url=settings.AI_BASE_URL,
        model=settings.AI_MODEL,
        reply_prompt=settings.AI_REPLY_PROMPT or DEFAULT_REPLY_PROMPT,
        intent_prompt=settings.AI_INTENT_PROMPT or DEFAULT_INTENT_PROMPT,
        temperature=settings.AI_TEMPERATURE,
        max_tokens=settings.AI_MAX_TOKENS,
        timeout=settings.AI_TIMEOUT,
    )


def _register_operator_commands(client, pipeline: AutoReplyPipeline) -> None:
    """Saved Messages commands: /status, /stop, /start, /restart."""

    logger = logging.getLogger(__name__)

    @client.on(events.NewMessage(chats="me", outgoing=True, pattern=r"^/(status|stop|start|restart)$"))
    async def handler(event) -> None:
        command = event.pattern_match.group(1)
        try:
            if command == "stop":
                await pipeline.stop()
            elif command == "start":
                await pipeline.start()
            elif command == "restart":
                await pipeline.restart()
            snapshot = pipeline.snapshot()
            lines = [f"{key}: {value}" for key, value in snapshot.items()]
            await event.reply("\n".join(lines))
        except Exception:
            logger.exception("Operator command /%s failed", command)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting dmpilot")

    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    removed = storage.cleanup_history(settings.HISTORY_RETENTION_DAYS)
    logger.info("History cleanup removed %s lines", removed)

    config_source = JsonConfigSource(settings.CONFIG_PATH, settings.CONFIG)
    logger.info("%s reply rules are loaded", len(build_rules(config_source.rules())))

    client = build_client(settings.TELEGRAM_OPTIONS)
    client.loop.run_until_complete(client.connect())
    client.loop.run_until_complete(authorize(client))

    notifier = _build_notifier(client)
    logger.info("Operator notices - %s", settings.NOTIFICATION_METHOD if notifier else "disabled")
    ai_service = _build_ai_service()
    logger.info("AI decisions - %s", settings.AI_MODEL if ai_service else "disabled")

    surface = TelegramSurface(
        client,
        dialog_limit=settings.DIALOG_LIMIT,
        message_limit=settings.MESSAGE_LIMIT,
        lead_tags=settings.LEAD_TAGS,
        mark_read=settings.MARK_READ,
        max_message_age=settings.MAX_MESSAGE_AGE,
    )
    pipeline = AutoReplyPipeline(
        observation=surface,
        actions=surface,
        config_source=config_source,
        history=storage,
        config=settings.PIPELINE_CONFIG,
        generator=ai_service,
        intent_service=ai_service,
        notifier=notifier,
    )
    _register_operator_commands(client, pipeline)

    client.loop.run_until_complete(pipeline.start())
    logger.info("Client connected. Watching private chats...")
    try:
        client.run_until_disconnected()
    finally:
        client.loop.run_until_complete(pipeline.stop())
        logger.info("Final stats: %s", pipeline.snapshot())


def _dashboard() -> None:
    _print_banner()
    from frontend.app import DashboardApp

    DashboardApp().run()


def _print_stats() -> None:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    stats = storage.get_statistics()

    table = Table(title="dmpilot statistics")
    table.add_column("metric")
    table.add_column("value", justify="right")
    for key in ("total_messages", "total_replies", "template_replies", "ai_replies", "lead_tools_sent"):
        table.add_row(key, str(stats.get(key, 0)))
    table.add_row("success_rate", f"{stats['success_rate']:.1%}")
    table.add_row("average_latency", f"{stats['average_latency']:.2f}s")
    for day, total in storage.daily_totals():
        table.add_row(f"sent {day}", str(total))
    for rule_name, hits in sorted(stats["rule_hits"].items(), key=lambda item: -item[1]):
        table.add_row(f"rule {rule_name}", str(hits))
    Console().print(table)


def _login() -> None:
    _print_banner()
    asyncio.run(login())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="dmpilot")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the auto-reply watcher")
    subparsers.add_parser("dashboard", help="Browse statistics and history in a TUI")
    subparsers.add_parser("stats", help="Print reply statistics")
    subparsers.add_parser("login", help="Authorize the Telegram session")

    args = parser.parse_args(argv)
    if args.command == "dashboard":
        _dashboard()
        return
    if args.command == "stats":
        _print_stats()
        return
    if args.command == "login":
        _login()
        return
    _run()


if __name__ == "__main__":
    main()
