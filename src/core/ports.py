"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for the observed chat surface, the AI
decision service, storage and notification adapters so that the core can be
reused with different backends.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Optional, Protocol, Sequence

from core.models import (
    ElementRole,
    FollowUpRecord,
    HistoryEntry,
    IntentDecision,
    ListKind,
    OperatorNotice,
)


class Subscription(Protocol):
    def close(self) -> None:
        ...


class ObservationPort(Protocol):
    """Read-only view of the chat surface."""

    def subscribe_list(
        self, kind: ListKind, callback: Callable[[Sequence[Any]], None]
    ) -> Optional[Subscription]:
        """Register ``callback`` to receive full snapshots of ``kind``.

        Returns None when the surface has no change source; callers poll.
        """
        ...

    async def query_active_conversation_id(self) -> Optional[str]:
        ...

    async def get_elements(self, role: ElementRole) -> list[Any]:
        ...

    async def get_input_value(self, ref: Any) -> str:
        ...


class ActionPort(Protocol):
    """Mutating operations on the chat surface. All are retry-safe."""

    async def activate(self, ref: Any) -> None:
        ...

    async def set_input_value(self, ref: Any, text: str) -> None:
        ...

    async def submit(self, ref: Any) -> None:
        ...

    async def is_submit_disabled(self, ref: Any) -> bool:
        ...


class ReplyGeneratorPort(Protocol):
    async def generate_reply(self, content: str, history: Sequence[HistoryEntry]) -> str:
        ...


class IntentServicePort(Protocol):
    async def get_intent(self, context: dict[str, Any]) -> IntentDecision:
        ...


class HistoryStorePort(Protocol):
    """Conversation history, lead bookkeeping and counters."""

    def append(self, conversation_id: str, entry: HistoryEntry, limit: int) -> None:
        ...

    def read(self, conversation_id: str, limit: int) -> list[HistoryEntry]:
        ...

    def get_last_lead_sent(self, conversation_id: str) -> Optional[float]:
        ...

    def record_lead_sent(self, conversation_id: str, sent_at: float) -> None:
        ...

    def record_send(self, conversation_id: str, day: date) -> None:
        ...

    def sent_counts(self, day: date) -> dict[str, int]:
        ...

    def increment_stat(self, name: str, amount: int = 1) -> None:
        ...

    def record_result(self, success: bool, latency: float) -> None:
        ...

    def get_follow_up(self, conversation_id: str) -> Optional[FollowUpRecord]:
        ...

    def record_follow_up(self, conversation_id: str, status: str, sent_at: float, day: date) -> None:
        ...

    def follow_up_counts(self, day: date) -> dict[str, int]:
        ...


class ConfigSourcePort(Protocol):
    """Rules and router settings, re-read on demand."""

    def rules(self) -> list[dict[str, Any]]:
        ...

    def tool_rules(self) -> list[dict[str, Any]]:
        ...

    def lead_tools(self) -> list[dict[str, Any]]:
        ...

    def router_settings(self) -> dict[str, Any]:
        ...

    def follow_up_settings(self) -> dict[str, Any]:
        ...


class NotifierPort(Protocol):
    """Operator notification operations required by the core pipeline."""

    async def notify(self, notice: OperatorNotice) -> None:
        ...
