"""Conversation identity normalization (core domain).

Chat surfaces expose the same conversation under slightly different raw ids
(prefixed, decorated, embedded in longer attribute values). Everything that
compares conversation ids goes through this module.
"""

from __future__ import annotations

import re
from typing import Optional

UNKNOWN_ID = "unknown"

# Order matters: only the first matching prefix is stripped per pass.
ID_PREFIXES = ("Total-", "Active-", "User-", "Contact-", "User_", "Contact_")

_DISALLOWED = re.compile(r"[^A-Za-z0-9_-]")
_DIGIT_RUN = re.compile(r"\d{8,}")


def _strip_once(value: str) -> str:
    for prefix in ID_PREFIXES:
        if value.startswith(prefix):
            value = value[len(prefix):]
            break
    return _DISALLOWED.sub("", value)


def normalize_conversation_id(raw: Optional[object]) -> str:
    """Return the canonical form of a raw conversation id.

    The prefix strip and character filter repeat until the value is stable,
    so normalizing an already normalized id is always a no-op.
    """

    if raw is None:
        return UNKNOWN_ID
    value = str(raw).strip()
    while True:
        stripped = _strip_once(value)
        if stripped == value:
            break
        value = stripped
    return value or UNKNOWN_ID


def is_known(conversation_id: Optional[str]) -> bool:
    return bool(conversation_id) and conversation_id != UNKNOWN_ID


def ids_match(a: Optional[object], b: Optional[object]) -> bool:
    """Fuzzy equality between two raw conversation ids.

    Matches on raw equality, normalized equality, containment of one
    normalized id in the other, or containment between long digit runs
    (8+ digits) found in both. Empty or unknown ids never match.
    """

    if a is None or b is None:
        return False
    raw_a = str(a).strip()
    raw_b = str(b).strip()
    if not raw_a or not raw_b:
        return False

    norm_a = normalize_conversation_id(raw_a)
    norm_b = normalize_conversation_id(raw_b)
    if not is_known(norm_a) or not is_known(norm_b):
        return False

    if raw_a == raw_b or norm_a == norm_b:
        return True
    if norm_a in norm_b or norm_b in norm_a:
        return True

    runs_a = _DIGIT_RUN.findall(raw_a)
    runs_b = _DIGIT_RUN.findall(raw_b)
    for run_a in runs_a:
        for run_b in runs_b:
            if run_a in run_b or run_b in run_a:
                return True
    return False
