"""Static configuration for dmpilot.

All user-editable settings (rules, lead tools, reply gates, timings) live in a
single JSON file for quick edits without touching Python. Rules and reply
settings are also re-read at runtime through ``adapters.json_config``; the
values below are fixed for one run.
"""

import json
import os

from core.config import pipeline_config_from_dict

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Where to store the SQLite database.
DB_PATH = os.path.join(os.path.dirname(__file__), "dmpilot.db")

CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Timings and capacities for the core pipeline (settle delays, timeouts,
# dedup capacity, recovery limits, backup polling).
PIPELINE_CONFIG = pipeline_config_from_dict(_CONFIG.get("pipeline", {}))

# Telegram surface settings.
# - DIALOG_LIMIT: how many recent dialogs form the conversation list
# - MESSAGE_LIMIT: how many recent messages of the active dialog are observed
# - MAX_MESSAGE_AGE: unanswered messages older than this (seconds) are ignored
# - LEAD_TAGS: user ids / @usernames already handled as leads
_telegram = _CONFIG.get("telegram", {})
TELEGRAM_OPTIONS = _telegram
DIALOG_LIMIT = int(_telegram.get("dialog_limit", 50))
MESSAGE_LIMIT = int(_telegram.get("message_limit", 20))
MAX_MESSAGE_AGE = float(_telegram.get("max_message_age", 86400))
LEAD_TAGS = list(_telegram.get("lead_tags", []))
MARK_READ = bool(_telegram.get("mark_read", True))

# Operator notices for failed switches and sends.
_notifications = _CONFIG.get("notifications", {})
NOTIFICATIONS_ENABLED = bool(_notifications.get("enabled", True))
# Notification method switches adapters without changing core logic.
NOTIFICATION_METHOD = _notifications.get("notification_method", "saved_messages")
# Bot chat id is only required when notification_method=bot.
BOT_CHAT_ID = _notifications.get("bot_chat_id")
# Friendly names for conversation ids in notices.
CONVERSATION_ALIASES = {str(key): value for key, value in _notifications.get("aliases", {}).items()}

# OpenAI-compatible endpoint used for AI replies and lead intent decisions.
# The API key itself comes from OPENAI_API_KEY in .env.
_ai = _CONFIG.get("ai", {})
AI_ENABLED = bool(_ai.get("enabled", False))
AI_BASE_URL = _ai.get("base_url", "https://api.openai.com/v1")
AI_MODEL = _ai.get("model", "gpt-4o-mini")
AI_REPLY_PROMPT = _ai.get("reply_prompt")
AI_INTENT_PROMPT = _ai.get("intent_prompt")
AI_TEMPERATURE = float(_ai.get("temperature", 0.7))
AI_MAX_TOKENS = int(_ai.get("max_tokens", 500))
AI_TIMEOUT = float(_ai.get("timeout", 30))

# History older than this is deleted on startup.
HISTORY_RETENTION_DAYS = int(_CONFIG.get("history", {}).get("retention_days", 30))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
