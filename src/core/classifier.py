"""Message classification, staleness filtering and dedup (core domain).

Raw message items come straight from the surface; this module decides which
of them become ``Message`` values. Every drop is debug-logged only.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
import logging
import re
from typing import Callable, Optional

from core.config import ClassifierConfig
from core.contacts import ContactTracker
from core.dedup import DedupCache, build_fingerprint
from core.errors import DuplicateMessage, EmptyMessage, MessageDropped, ResolutionError, StaleMessage
from core.identity import is_known, normalize_conversation_id
from core.models import Message, MessageItem, MessageKind, SenderRole

LOGGER = logging.getLogger(__name__)

_TIME_OF_DAY = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?")


def parse_time_of_day(text: str, now: datetime) -> Optional[datetime]:
    """Return ``text``'s HH:MM[:SS] as a datetime on the same day as ``now``."""

    match = _TIME_OF_DAY.search(text or "")
    if not match:
        return None
    hours, minutes, seconds = int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        return None
    return now.replace(hour=hours, minute=minutes, second=seconds, microsecond=0)


class MessageClassifier:
    """Turn raw ``MessageItem``s into deduplicated ``Message``s."""

    def __init__(
        self,
        tracker: ContactTracker,
        dedup: DedupCache,
        config: ClassifierConfig,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._tracker = tracker
        self._dedup = dedup
        self._config = config
        self._now = now
        self.drops: Counter = Counter()

    def classify(self, item: MessageItem) -> Optional[Message]:
        """Return a classified message, or None if the item was dropped."""

        try:
            return self._classify(item)
        except MessageDropped as drop:
            self.drops[type(drop).__name__] += 1
            LOGGER.debug("Dropped message %s: %s", item.element_id or "?", drop)
            return None

    def clear(self) -> None:
        self._dedup.clear()

    def _classify(self, item: MessageItem) -> Message:
        if not item.incoming:
            raise MessageDropped("outgoing message")

        conversation_id = self._resolve_conversation(item)
        kind, content, title, source_info = self._classify_kind(item)
        fingerprint = build_fingerprint(item.element_id, item.timestamp_text, kind)

        now = self._now()
        if self._is_stale(item.timestamp_text, now):
            raise StaleMessage(f"timestamp {item.timestamp_text!r} older than {self._config.staleness_seconds}s")

        # Insert last so stale or unresolved items never occupy cache slots.
        if not self._dedup.add(fingerprint):
            raise DuplicateMessage(fingerprint)

        return Message(
            fingerprint=fingerprint,
            conversation_id=conversation_id,
            sender_role=SenderRole.SYSTEM if kind is MessageKind.SPOTLIGHT else SenderRole.USER,
            content=content,
            kind=kind,
            timestamp=now,
            title=title,
            source_info=source_info,
            sender=item.sender,
        )

    def _resolve_conversation(self, item: MessageItem) -> str:
        for candidate in (item.conversation_id, item.container_id, self._tracker.active_id):
            normalized = normalize_conversation_id(candidate)
            if is_known(normalized):
                return normalized
        raise ResolutionError("no conversation id on message, container or tracker")

    @staticmethod
    def _classify_kind(item: MessageItem) -> tuple[MessageKind, str, str, str]:
        type_attr = (item.type_attr or "").upper()
        text = (item.text or "").strip()

        if item.source_tip or type_attr == MessageKind.SPOTLIGHT.value:
            source_info = (item.source_tip or "").strip()
            if not text:
                raise EmptyMessage("spotlight without body")
            return MessageKind.SPOTLIGHT, text, "", source_info

        if item.has_card or type_attr == MessageKind.CARD.value:
            title = (item.card_title or "").strip()
            info = (item.card_info or "").strip()
            if not title and not info:
                raise EmptyMessage("card without title or info")
            return MessageKind.CARD, info or title, title, ""

        if not text:
            raise EmptyMessage("empty text message")
        return MessageKind.TEXT, text, "", ""

    def _is_stale(self, timestamp_text: str, now: datetime) -> bool:
        if self._tracker.just_switched:
            return False
        sent_at = parse_time_of_day(timestamp_text, now)
        if sent_at is None:
            return False
        window = timedelta(seconds=self._config.staleness_seconds)
        age = now - sent_at
        # A time far in the future belongs to the previous day.
        if age < -window:
            age += timedelta(days=1)
        return age > window
