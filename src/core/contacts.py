"""Active-conversation tracking and switching (core domain).

The tracker is the only component allowed to change which conversation is
open on the surface. Switches are serialized: a caller awaits completion
before another switch can start.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
import time
from typing import Awaitable, Callable, Optional

from core.config import TrackerConfig
from core.identity import ids_match, is_known, normalize_conversation_id
from core.models import ContactItem, ElementRole
from core.ports import ActionPort, ObservationPort
from core.retry import fixed_delay, retry

LOGGER = logging.getLogger(__name__)


def contact_conversation_id(contact: ContactItem) -> Optional[str]:
    """First raw id of a contact that normalizes to a known conversation id."""

    for raw in contact.ids:
        normalized = normalize_conversation_id(raw)
        if is_known(normalized):
            return normalized
    return None


class TrackerState(str, Enum):
    IDLE = "idle"
    SWITCHING = "switching"
    ACTIVE = "active"


class ContactTracker:
    """Owns the currently active conversation and performs switches."""

    def __init__(
        self,
        observation: ObservationPort,
        actions: ActionPort,
        config: TrackerConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._observation = observation
        self._actions = actions
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._state = TrackerState.IDLE
        self._active_id: Optional[str] = None
        self._switched_at: Optional[float] = None
        self.activation_requests = 0

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def just_switched(self) -> bool:
        """True during the cool-down window after a confirmed switch."""

        if self._switched_at is None:
            return False
        return self._clock() - self._switched_at < self._config.just_switched_window

    def is_active(self, target: Optional[str]) -> bool:
        return self._state is TrackerState.ACTIVE and ids_match(self._active_id, target)

    def observe_active(self, raw_id: Optional[str]) -> None:
        """Adopt an active id reported by the surface outside of a switch."""

        if self._state is TrackerState.SWITCHING:
            return
        normalized = normalize_conversation_id(raw_id)
        if not is_known(normalized):
            return
        self._state = TrackerState.ACTIVE
        self._active_id = normalized

    def reset(self) -> None:
        self._state = TrackerState.IDLE
        self._active_id = None
        self._switched_at = None

    async def locate(self, target: str, fuzzy: bool = True) -> Optional[ContactItem]:
        """Find the contact item for ``target``.

        Exact normalized matches win over fuzzy ones so a short id never
        steals the slot of a longer id that contains it.
        """

        items = await self._observation.get_elements(ElementRole.CONTACT_ITEM)
        wanted = normalize_conversation_id(target)
        for item in items:
            if any(normalize_conversation_id(raw) == wanted for raw in item.ids):
                return item
        if not fuzzy:
            return None
        for item in items:
            if any(ids_match(raw, wanted) for raw in item.ids):
                return item
        return None

    async def switch(self, target: str, contact: Optional[ContactItem] = None) -> bool:
        """Make ``target`` the active conversation; return True on success."""

        target_id = normalize_conversation_id(target)
        if not is_known(target_id):
            LOGGER.warning("Refusing to switch to unresolved conversation %r", target)
            return False

        async with self._lock:
            if self.is_active(target_id):
                return True

            previous_state, previous_id = self._state, self._active_id
            self._state = TrackerState.SWITCHING
            attempts = 0

            async def _attempt() -> bool:
                nonlocal attempts
                attempts += 1
                if contact is not None and attempts == 1:
                    item = contact
                else:
                    item = await self.locate(target_id, fuzzy=False)
                if item is None:
                    LOGGER.debug("Contact %s not found in conversation list", target_id)
                    return False
                self.activation_requests += 1
                await self._actions.activate(item.ref)
                await self._sleep(self._config.settle_delay)
                reported = await self._observation.query_active_conversation_id()
                return ids_match(reported, target_id)

            try:
                confirmed = await retry(
                    _attempt,
                    self._config.max_attempts,
                    fixed_delay(self._config.retry_delay),
                    label=f"switch to {target_id}",
                    sleep=self._sleep,
                )
            except Exception:
                LOGGER.warning("Switch to %s raised", target_id, exc_info=True)
                confirmed = False

            if confirmed:
                self._state = TrackerState.ACTIVE
                self._active_id = target_id
                self._switched_at = self._clock()
                LOGGER.info("Switched to conversation %s", target_id)
                return True

            self._state = previous_state if previous_state is not TrackerState.SWITCHING else TrackerState.IDLE
            self._active_id = previous_id
            LOGGER.warning(
                "Switch to %s not confirmed after %s attempt(s); staying on %s",
                target_id,
                attempts,
                previous_id or "nothing",
            )
            return False
