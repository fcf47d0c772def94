"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any surface-specific types. Raw ``ContactItem`` / ``MessageItem``
values are what an observation adapter reports; ``Message`` is what the
classifier produces after resolution, classification and dedup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple


class MessageKind(str, Enum):
    TEXT = "TEXT"
    CARD = "CARD"
    SPOTLIGHT = "SPOTLIGHT"


class SenderRole(str, Enum):
    USER = "user"
    SYSTEM = "system"


class ElementRole(str, Enum):
    """Element roles an observation adapter can be asked for."""

    CONTACT_ITEM = "contact_item"
    MESSAGE_ITEM = "message_item"
    INPUT = "input"
    SEND_CONTROL = "send_control"


class ListKind(str, Enum):
    CONVERSATIONS = "conversations"
    MESSAGES = "messages"


class FollowUpStatus(str, Enum):
    """Where a conversation stands for re-engagement."""

    NO_RESPONSE = "no_response"
    NO_CONTACT = "no_contact"
    CONVERTED = "converted"


@dataclass(frozen=True)
class ContactItem:
    """One entry of the conversation list as reported by the surface.

    ``ref`` is an opaque handle the action layer understands. ``ids`` holds
    every raw identifier the surface exposes for the entry, in preference
    order; none of them is assumed to be canonical.
    """

    ref: Any
    ids: Tuple[str, ...]
    name: str = ""
    unread: int = 0
    unreplied: bool = False
    lead_tag: bool = False
    last_message: str = ""


@dataclass(frozen=True)
class MessageItem:
    """One entry of the message list as reported by the surface."""

    ref: Any
    element_id: Optional[str] = None
    conversation_id: Optional[str] = None
    container_id: Optional[str] = None
    incoming: bool = True
    timestamp_text: str = ""
    text: str = ""
    type_attr: Optional[str] = None
    has_card: bool = False
    card_title: str = ""
    card_info: str = ""
    source_tip: str = ""
    sender: str = ""


@dataclass
class Message:
    """A classified, deduplicated incoming message."""

    fingerprint: str
    conversation_id: str
    sender_role: SenderRole
    content: str
    kind: MessageKind
    timestamp: datetime
    title: str = ""
    source_info: str = ""
    sender: str = ""
    processed: bool = False

    @property
    def match_content(self) -> str:
        """Text the rule engine should look at for this message kind."""

        if self.kind is MessageKind.SPOTLIGHT:
            return self.source_info or self.content
        if self.kind is MessageKind.CARD:
            return self.title or self.content
        return self.content


@dataclass(frozen=True)
class HistoryEntry:
    """Persisted conversation history line."""

    role: str
    content: str
    timestamp: datetime
    kind: MessageKind = MessageKind.TEXT
    title: str = ""
    source_info: str = ""


@dataclass(frozen=True)
class LeadTool:
    """A promotional artifact that is sent through the input like a reply."""

    id: str
    type: str
    index: int
    title: str
    content: str
    description: str = ""


@dataclass(frozen=True)
class IntentDecision:
    should_send: bool
    tool_id: Optional[str] = None
    reason: str = ""
    confidence: float = 1.0
    generated_text: str = ""


@dataclass(frozen=True)
class OperatorNotice:
    """A notification-level event surfaced to the operator."""

    level: str
    title: str
    conversation_id: Optional[str]
    detail: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class FollowUpRecord:
    """Follow-ups sent to one conversation in its current status."""

    status: str
    count: int
    last_sent_at: float
