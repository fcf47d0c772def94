"""Re-engagement follow-ups for conversations that went quiet (core domain).

A conversation qualifies when our reply is the last line of its history. Its
status decides which template set applies:

- no_response: the other side never wrote again after our first reply;
- no_contact: they kept talking but never left contact details;
- converted: contact details were shared, so no follow-up is sent.

Follow-ups go through the shared reply queue, so they never interleave with
live replies. They have their own working hours and daily caps, persisted
apart from the live reply counters.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
import logging
import re
from typing import Awaitable, Callable, Iterable, Iterator, Optional, Sequence

from core.config import FollowUpConfig, FollowUpStageConfig, follow_up_config_from_dict, router_config_from_dict
from core.contacts import contact_conversation_id
from core.errors import PipelineError, QueueClearedError
from core.identity import normalize_conversation_id
from core.gating import Reservation, SendLimiter, within_working_hours
from core.lead_tools import build_catalog
from core.models import ContactItem, ElementRole, FollowUpStatus, HistoryEntry
from core.ports import ConfigSourcePort, HistoryStorePort, ObservationPort
from core.reply_queue import ReplyQueue

LOGGER = logging.getLogger(__name__)

CONTACT_INFO_PATTERNS = (
    re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+"),
    re.compile(r"\+?\d[\d\s()-]{7,}\d"),
    re.compile(r"(?<![\w@])@[A-Za-z][\w]{4,}"),
)


def has_contact_info(text: str) -> bool:
    return any(pattern.search(text or "") for pattern in CONTACT_INFO_PATTERNS)


def follow_up_status(entries: Sequence[HistoryEntry]) -> Optional[FollowUpStatus]:
    """Status of a conversation from its history, oldest first.

    Returns None while the other side has the last word (or nothing was
    ever said), since the live pipeline owns those conversations.
    """

    if not entries or entries[-1].role != "assistant":
        return None
    answered = False
    replied_after = False
    for entry in entries:
        if entry.role == "assistant":
            answered = True
        elif entry.role == "user":
            if has_contact_info(entry.content):
                return FollowUpStatus.CONVERTED
            if answered:
                replied_after = True
    return FollowUpStatus.NO_CONTACT if replied_after else FollowUpStatus.NO_RESPONSE


def render_template(template: str, contact: ContactItem, conversation_id: str) -> str:
    return template.replace("{name}", contact.name or "").replace("{id}", conversation_id).strip()


@dataclass(frozen=True)
class FollowUpCandidate:
    conversation_id: str
    contact: ContactItem
    status: FollowUpStatus
    stage: FollowUpStageConfig
    count: int

    @property
    def template(self) -> str:
        return self.stage.templates[self.count]


class FollowUpScheduler:
    """Finds quiet conversations and queues the next follow-up for each."""

    def __init__(
        self,
        queue: ReplyQueue,
        observation: ObservationPort,
        config_source: ConfigSourcePort,
        history: HistoryStorePort,
        now: Callable[[], datetime] = datetime.now,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queue = queue
        self._observation = observation
        self._config_source = config_source
        self._history = history
        self._now = now
        self._sleep = sleep
        self.limiter = SendLimiter(today)
        self.limiter.seed(today(), history.follow_up_counts(today()))
        self._checking = False
        self.last_check: Optional[datetime] = None

    @property
    def checking(self) -> bool:
        return self._checking

    def settings(self) -> FollowUpConfig:
        return follow_up_config_from_dict(self._config_source.follow_up_settings())

    async def check(self, settings: Optional[FollowUpConfig] = None) -> int:
        """Run one pass over the conversation list; return follow-ups sent."""

        if self._checking:
            LOGGER.info("Follow-up check already running; skipping")
            return 0
        self._checking = True
        try:
            return await self._check(settings or self.settings())
        finally:
            self._checking = False
            self.last_check = self._now()

    async def _check(self, settings: FollowUpConfig) -> int:
        if not settings.enabled:
            return 0
        if not within_working_hours(settings.working_hours, self._now()):
            LOGGER.info("Outside follow-up hours; skipping check")
            return 0
        if self.limiter.total >= settings.daily_limit:
            LOGGER.info("Daily follow-up cap %s reached; skipping check", settings.daily_limit)
            return 0

        contacts = await self._observation.get_elements(ElementRole.CONTACT_ITEM)
        history_limit = router_config_from_dict(self._config_source.router_settings()).max_history_messages
        candidates = list(self.candidates(contacts, settings, history_limit))
        # No-response conversations go first.
        candidates.sort(key=lambda candidate: candidate.status is not FollowUpStatus.NO_RESPONSE)
        LOGGER.info("Follow-up check found %s candidate(s)", len(candidates))

        sent = 0
        for candidate in candidates:
            if self.limiter.total >= settings.daily_limit:
                LOGGER.info("Daily follow-up cap %s reached; stopping", settings.daily_limit)
                break
            if sent and settings.send_gap > 0:
                await self._sleep(settings.send_gap)
            try:
                delivered = await self._send(candidate, settings, history_limit)
            except QueueClearedError as exc:
                LOGGER.info("Follow-up pass ended: %s", exc)
                break
            if delivered:
                sent += 1
        return sent

    def candidates(
        self, contacts: Iterable[ContactItem], settings: FollowUpConfig, history_limit: int
    ) -> Iterator[FollowUpCandidate]:
        now = self._now().timestamp()
        blacklist = settings.blacklist | {normalize_conversation_id(item) for item in settings.blacklist}
        for contact in contacts:
            conversation_id = contact_conversation_id(contact)
            if conversation_id is None or contact.lead_tag or contact.unread or contact.unreplied:
                continue
            if conversation_id in blacklist or contact.name in blacklist:
                LOGGER.debug("Conversation %s is blacklisted for follow-ups", conversation_id)
                continue

            entries = self._history.read(conversation_id, history_limit)
            status = follow_up_status(entries)
            if status is None or status is FollowUpStatus.CONVERTED:
                continue
            stage = settings.no_response if status is FollowUpStatus.NO_RESPONSE else settings.no_contact
            if not stage.enabled or not stage.templates:
                continue

            record = self._history.get_follow_up(conversation_id)
            # A status change starts the template sequence over.
            count = record.count if record is not None and record.status == status.value else 0
            if count >= stage.max_follow_ups or count >= len(stage.templates):
                LOGGER.debug("Follow-ups for %s exhausted (%s sent)", conversation_id, count)
                continue

            last_activity = entries[-1].timestamp.timestamp()
            if record is not None:
                last_activity = max(last_activity, record.last_sent_at)
            if now - last_activity < stage.interval:
                continue
            yield FollowUpCandidate(conversation_id, contact, status, stage, count)

    async def _send(self, candidate: FollowUpCandidate, settings: FollowUpConfig, history_limit: int) -> bool:
        conversation_id = candidate.conversation_id
        reservation = self.limiter.acquire(conversation_id, settings.rate_limits)
        if reservation is None:
            return False

        text = render_template(candidate.template, candidate.contact, conversation_id)
        if not text:
            self.limiter.release(reservation)
            return False
        try:
            await self._send_lead_tool(candidate, settings)
            await self._queue.enqueue(
                conversation_id,
                text,
                kind="follow_up",
                label=f"{candidate.status.value} #{candidate.count + 1}",
            )
        except QueueClearedError:
            self.limiter.release(reservation)
            raise
        except PipelineError as exc:
            self.limiter.release(reservation)
            LOGGER.warning("Follow-up to %s not delivered: %s", conversation_id, exc)
            return False
        except asyncio.CancelledError:
            self.limiter.release(reservation)
            raise

        self._record(candidate, text, reservation, history_limit)
        return True

    async def _send_lead_tool(self, candidate: FollowUpCandidate, settings: FollowUpConfig) -> None:
        frequency = settings.lead_tool_frequency
        if frequency <= 0 or candidate.count % frequency:
            return
        tool = build_catalog(self._config_source.lead_tools()).find(
            settings.lead_tool_type, settings.lead_tool_index
        )
        if tool is None or not tool.content:
            LOGGER.debug("No lead tool of type %r to attach to follow-up", settings.lead_tool_type)
            return
        await self._queue.enqueue(candidate.conversation_id, tool.content, kind="tool", label=tool.title)
        self._history.record_lead_sent(candidate.conversation_id, self._now().timestamp())
        self._history.increment_stat("lead_tools_sent")

    def _record(self, candidate: FollowUpCandidate, text: str, reservation: Reservation, history_limit: int) -> None:
        sent_at = self._now()
        self._history.append(
            candidate.conversation_id,
            HistoryEntry(role="assistant", content=text, timestamp=sent_at),
            history_limit,
        )
        self._history.record_follow_up(
            candidate.conversation_id, candidate.status.value, sent_at.timestamp(), reservation.day
        )
        self._history.increment_stat("follow_ups_sent")
        LOGGER.info(
            "Sent %s follow-up #%s to %s",
            candidate.status.value,
            candidate.count + 1,
            candidate.conversation_id,
        )
