"""Deduplication helpers (core domain)."""

from __future__ import annotations

from collections import OrderedDict
import re
import uuid
from typing import Optional

from core.models import MessageKind


def _collapse_whitespace(text: str, replacement: str = " ") -> str:
    return re.sub(r"\s+", replacement, text).strip(replacement)


def build_fingerprint(element_id: Optional[str], timestamp_text: Optional[str], kind: MessageKind) -> str:
    """Return a fingerprint from the most stable features of a message.

    Element id and timestamp text are used when present. When neither exists
    a random token keeps the message processable; such messages cannot be
    deduplicated. The kind is always the last component.
    """

    parts = []
    if element_id:
        parts.append(str(element_id).strip())
    if timestamp_text:
        collapsed = _collapse_whitespace(timestamp_text.strip(), "_")
        if collapsed:
            parts.append(collapsed)
    if not parts:
        parts.append(f"rand-{uuid.uuid4().hex[:12]}")
    parts.append(kind.value)
    return "_".join(parts)


class DedupCache:
    """Bounded set of recently seen fingerprints with FIFO eviction."""

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._entries: "OrderedDict[str, None]" = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def add(self, fingerprint: str) -> bool:
        """Insert a fingerprint; return False if it was already present.

        Re-seeing a fingerprint does not refresh its position, so eviction
        order is strictly insertion order.
        """

        if fingerprint in self._entries:
            return False
        self._entries[fingerprint] = None
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self) -> list[str]:
        return list(self._entries)
