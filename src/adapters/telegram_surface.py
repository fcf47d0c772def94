"""Telethon-backed chat surface.

Implements the core ObservationPort and ActionPort on top of a user-account
TelegramClient:

- private dialogs are the conversation list;
- incoming messages of the active dialog newer than our last outgoing
  message (and not older than ``max_message_age``) are the message list;
- each dialog has a local input buffer that ``submit`` sends and clears.

New-message updates arriving in the same event-loop tick are coalesced into
one snapshot callback per list.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable, Iterable, Optional, Sequence

from telethon import TelegramClient, events

from adapters.telegram_mapper import build_contact_item, build_message_item
from core.models import ElementRole, ListKind

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputRef:
    """Input surface and send control of one dialog."""

    peer_id: int


class _Subscription:
    def __init__(self, surface: "TelegramSurface", kind: ListKind, callback: Callable) -> None:
        self._surface = surface
        self._kind = kind
        self._callback = callback

    def close(self) -> None:
        self._surface._listeners[self._kind].discard(self._callback)


class TelegramSurface:
    def __init__(
        self,
        client: TelegramClient,
        dialog_limit: int = 50,
        message_limit: int = 20,
        lead_tags: Iterable[str] = (),
        mark_read: bool = True,
        max_message_age: float = 86400.0,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._client = client
        self._dialog_limit = dialog_limit
        self._message_limit = message_limit
        self._lead_tags = list(lead_tags)
        self._mark_read = mark_read
        self._max_message_age = timedelta(seconds=max_message_age)
        self._now = now
        self._entities: dict[int, Any] = {}
        self._inputs: dict[int, str] = {}
        self._active_peer: Optional[int] = None
        self._listeners: dict[ListKind, set[Callable]] = {kind: set() for kind in ListKind}
        self._dirty: set[ListKind] = set()
        self._flush_scheduled = False
        self._handler_registered = False
        self._flush_task: Optional[asyncio.Task] = None

    # ObservationPort

    def subscribe_list(self, kind: ListKind, callback: Callable[[Sequence[Any]], None]) -> _Subscription:
        if not self._handler_registered:
            self._client.add_event_handler(self._on_new_message, events.NewMessage())
            self._handler_registered = True
        self._listeners[kind].add(callback)
        return _Subscription(self, kind, callback)

    async def query_active_conversation_id(self) -> Optional[str]:
        return str(self._active_peer) if self._active_peer is not None else None

    async def get_elements(self, role: ElementRole) -> list[Any]:
        if role is ElementRole.CONTACT_ITEM:
            return await self._contact_items()
        if role is ElementRole.MESSAGE_ITEM:
            return await self._message_items()
        if self._active_peer is None or not self._client.is_connected():
            return []
        return [InputRef(self._active_peer)]

    async def get_input_value(self, ref: InputRef) -> str:
        return self._inputs.get(ref.peer_id, "")

    # ActionPort

    async def activate(self, ref: int) -> None:
        entity = self._entities.get(ref)
        if entity is None:
            entity = await self._client.get_entity(ref)
            self._entities[ref] = entity
        self._active_peer = ref
        if self._mark_read:
            await self._client.send_read_acknowledge(entity)
        LOGGER.debug("Activated dialog %s", ref)

    async def set_input_value(self, ref: InputRef, text: str) -> None:
        self._inputs[ref.peer_id] = text

    async def submit(self, ref: InputRef) -> None:
        text = self._inputs.get(ref.peer_id, "")
        if not text.strip():
            return
        entity = self._entities.get(ref.peer_id) or ref.peer_id
        await self._client.send_message(entity, text)
        # Only a delivered message clears the buffer; a failure leaves it for verification.
        self._inputs[ref.peer_id] = ""

    async def is_submit_disabled(self, ref: InputRef) -> bool:
        return not self._client.is_connected() or not self._inputs.get(ref.peer_id, "").strip()

    # Internals

    async def _contact_items(self) -> list[Any]:
        items = []
        async for dialog in self._client.iter_dialogs(limit=self._dialog_limit):
            if not dialog.is_user:
                continue
            entity = dialog.entity
            if getattr(entity, "bot", False) or getattr(entity, "is_self", False):
                continue
            self._entities[entity.id] = entity
            items.append(build_contact_item(dialog, self._lead_tags))
        return items

    async def _message_items(self) -> list[Any]:
        if self._active_peer is None:
            return []
        entity = self._entities.get(self._active_peer) or self._active_peer
        messages = await self._client.get_messages(entity, limit=self._message_limit)
        cutoff = self._now() - self._max_message_age
        waiting = []
        # Newest first: everything before our last reply has been answered.
        for message in messages:
            if getattr(message, "out", False):
                break
            sent_at = getattr(message, "date", None)
            if sent_at is not None and sent_at < cutoff:
                break
            waiting.append(message)
        return [build_message_item(message) for message in reversed(waiting)]

    async def _on_new_message(self, event) -> None:
        if not event.is_private:
            return
        self._dirty.add(ListKind.CONVERSATIONS)
        if event.chat_id == self._active_peer:
            self._dirty.add(ListKind.MESSAGES)
        if self._flush_scheduled:
            return
        self._flush_scheduled = True
        asyncio.get_running_loop().call_soon(self._schedule_flush)

    def _schedule_flush(self) -> None:
        self._flush_task = asyncio.get_running_loop().create_task(self._flush())

    async def _flush(self) -> None:
        dirty, self._dirty = self._dirty, set()
        self._flush_scheduled = False
        roles = {ListKind.CONVERSATIONS: ElementRole.CONTACT_ITEM, ListKind.MESSAGES: ElementRole.MESSAGE_ITEM}
        for kind in (ListKind.CONVERSATIONS, ListKind.MESSAGES):
            if kind not in dirty or not self._listeners[kind]:
                continue
            try:
                snapshot = await self.get_elements(roles[kind])
            except Exception:
                LOGGER.exception("Failed to refresh %s snapshot", kind.value)
                continue
            for callback in list(self._listeners[kind]):
                callback(snapshot)
