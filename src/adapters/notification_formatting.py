"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps operator
notices consistent regardless of delivery channel.
"""

from __future__ import annotations

import html

from core.models import OperatorNotice

_LEVEL_ICONS = {"info": "ℹ️", "warning": "⚠️", "error": "⛔"}


def format_conversation_label(notice: OperatorNotice, aliases: dict[str, str]) -> str:
    """Return a human-friendly conversation label, using configured aliases."""

    conversation_id = notice.conversation_id
    if not conversation_id:
        return "n/a"
    alias = aliases.get(conversation_id)
    if not alias:
        return conversation_id
    return f"{alias} ({conversation_id})"


def _format_markdown(notice: OperatorNotice, aliases: dict[str, str]) -> str:
    """Create the Markdown notice body used by Saved Messages."""

    def escape_md(value: str) -> str:
        for ch in r"*[`_":
            value = value.replace(ch, f"\\{ch}")
        return value

    timestamp = notice.created_at.strftime("%H:%M:%S %d-%m-%Y")
    icon = _LEVEL_ICONS.get(notice.level, "")
    divider = "──────────────"
    lines = [
        f"[{timestamp}] {icon}".rstrip(),
        f"**{escape_md(notice.title)}**",
        f"**Conversation:** {escape_md(format_conversation_label(notice, aliases))}",
        divider,
        "",
        escape_md(notice.detail),
        divider,
    ]
    return "\n".join(lines)


def _format_html(notice: OperatorNotice, aliases: dict[str, str]) -> str:
    """Create the HTML notice body used by the Bot API adapter."""

    timestamp = html.escape(notice.created_at.strftime("%H:%M:%S %d-%m-%Y"))
    icon = _LEVEL_ICONS.get(notice.level, "")
    parts = [
        f"[{timestamp}] {icon}".rstrip(),
        f"<b>{html.escape(notice.title)}</b>",
        f"<b>Conversation:</b> {html.escape(format_conversation_label(notice, aliases))}",
        "──────────────",
        "",
        html.escape(notice.detail),
        "──────────────",
    ]
    return "\n".join(parts)


def format_notice(notice: OperatorNotice, aliases: dict[str, str], mode: str) -> str:
    """Return the notice formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(notice, aliases)
    if mode == "html":
        return _format_html(notice, aliases)
    raise ValueError(f"Unsupported notification format: {mode}")
