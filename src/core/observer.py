"""Change observer adapter (core domain).

Turns the surface's snapshot callbacks into coalesced added/removed events for
one live collection. One underlying callback yields at most one event, no
matter how many items changed in it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Hashable, Optional, Sequence

from core.models import ContactItem, ElementRole, ListKind, MessageItem
from core.ports import ObservationPort, Subscription

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    kind: ListKind
    added: list = field(default_factory=list)
    removed: list = field(default_factory=list)


class _NullSubscription:
    """Returned when the surface has no change source; callers must poll."""

    def close(self) -> None:
        return None

    def __bool__(self) -> bool:
        return False


NULL_SUBSCRIPTION = _NullSubscription()


def default_item_key(item: Any) -> Hashable:
    # Contacts key on their visible state so an unread bump shows up as added.
    if isinstance(item, ContactItem):
        return (item.ids, item.unread, item.unreplied, item.last_message)
    if isinstance(item, MessageItem):
        if item.element_id:
            return ("id", item.element_id)
        return ("content", item.conversation_id, item.timestamp_text, item.text, item.incoming)
    return id(item)


_ROLES = {
    ListKind.CONVERSATIONS: ElementRole.CONTACT_ITEM,
    ListKind.MESSAGES: ElementRole.MESSAGE_ITEM,
}


class ChangeObserver:
    """Diff successive snapshots of one collection into ``ChangeEvent``s."""

    def __init__(
        self,
        observation: ObservationPort,
        kind: ListKind,
        listener: Callable[[ChangeEvent], None],
        key: Callable[[Any], Hashable] = default_item_key,
    ) -> None:
        self._observation = observation
        self._kind = kind
        self._listener = listener
        self._key = key
        self._known: dict[Hashable, Any] = {}
        self._subscription: Optional[Subscription] = None

    @property
    def kind(self) -> ListKind:
        return self._kind

    @property
    def connected(self) -> bool:
        return self._subscription is not None

    @property
    def is_polling_only(self) -> bool:
        return self._subscription is NULL_SUBSCRIPTION

    async def connect(self) -> Subscription:
        """Seed the known set from the current snapshot and subscribe.

        Items already present at connect time are not reported as added.
        """

        if self._subscription is not None:
            return self._subscription
        items = await self._observation.get_elements(_ROLES[self._kind])
        self._known = {self._key(item): item for item in items}
        subscription = self._observation.subscribe_list(self._kind, self._on_snapshot)
        if subscription is None:
            LOGGER.info("No change source for %s list; relying on polling", self._kind.value)
            subscription = NULL_SUBSCRIPTION
        self._subscription = subscription
        return subscription

    def disconnect(self) -> None:
        if self._subscription is None:
            return
        try:
            self._subscription.close()
        finally:
            self._subscription = None

    async def reconnect(self) -> Subscription:
        self.disconnect()
        return await self.connect()

    async def poll(self) -> Optional[ChangeEvent]:
        """Fetch a snapshot and emit the same diff a callback would."""

        items = await self._observation.get_elements(_ROLES[self._kind])
        return self._on_snapshot(items)

    def _on_snapshot(self, items: Sequence[Any]) -> Optional[ChangeEvent]:
        current = {self._key(item): item for item in items}
        added = [item for key, item in current.items() if key not in self._known]
        removed = [item for key, item in self._known.items() if key not in current]
        self._known = current
        if not added and not removed:
            return None
        event = ChangeEvent(kind=self._kind, added=added, removed=removed)
        try:
            self._listener(event)
        except Exception:
            LOGGER.exception("%s listener failed", self._kind.value)
        return event
