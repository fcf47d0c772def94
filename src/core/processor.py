"""Core auto-reply pipeline.

This module is surface-agnostic. It only relies on ports for observation,
actions, decisions, storage and notifications. One ``AutoReplyPipeline`` is
constructed per run and owns every piece of mutable state (dedup cache,
tracker, queue, failure counters); components receive it by reference.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from core.classifier import MessageClassifier
from core.config import PipelineConfig
from core.contacts import ContactTracker, contact_conversation_id
from core.dedup import DedupCache
from core.executor import ReplyExecutor
from core.follow_up import FollowUpScheduler
from core.gating import SendLimiter
from core.health import HealthMonitor
from core.models import ContactItem, ElementRole, HistoryEntry, ListKind, Message, MessageKind
from core.observer import ChangeEvent, ChangeObserver
from core.ports import (
    ActionPort,
    ConfigSourcePort,
    HistoryStorePort,
    IntentServicePort,
    NotifierPort,
    ObservationPort,
    ReplyGeneratorPort,
)
from core.reply_queue import ReplyQueue, ReplyTask
from core.router import ReplyDecisionRouter, RouteOutcome

LOGGER = logging.getLogger(__name__)


class AutoReplyPipeline:
    """Observer -> tracker -> classifier -> router -> queue, plus recovery."""

    def __init__(
        self,
        observation: ObservationPort,
        actions: ActionPort,
        config_source: ConfigSourcePort,
        history: HistoryStorePort,
        config: PipelineConfig,
        generator: Optional[ReplyGeneratorPort] = None,
        intent_service: Optional[IntentServicePort] = None,
        notifier: Optional[NotifierPort] = None,
        now: Callable[[], datetime] = datetime.now,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._observation = observation
        self._history = history
        self._config = config

        self.tracker = ContactTracker(observation, actions, config.tracker)
        self.dedup = DedupCache(config.classifier.dedup_capacity)
        self.classifier = MessageClassifier(self.tracker, self.dedup, config.classifier, now=now)
        self.limiter = SendLimiter(today)
        self.limiter.seed(today(), history.sent_counts(today()))
        self.executor = ReplyExecutor(self.tracker, observation, actions, config.executor, notifier)
        self.queue = ReplyQueue(self.executor.execute, config.queue, on_settled=self._on_task_settled)
        self.router = ReplyDecisionRouter(
            self.queue,
            self.limiter,
            config_source,
            history,
            generator=generator,
            intent_service=intent_service,
            now=now,
        )
        self.follow_ups = FollowUpScheduler(self.queue, observation, config_source, history, now=now, today=today)
        self.health = HealthMonitor(config.health, self._resubscribe_messages, self.classifier.clear)
        self.contact_observer = ChangeObserver(observation, ListKind.CONVERSATIONS, self._on_contacts_changed)
        self.message_observer = ChangeObserver(observation, ListKind.MESSAGES, self._on_messages_changed)

        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._pollers: list[asyncio.Task] = []
        self._follow_up_task: Optional[asyncio.Task] = None
        self._lead_tagged: set[str] = set()
        self._deferred: dict[str, ContactItem] = {}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.tracker.observe_active(await self._observation.query_active_conversation_id())
        await self.contact_observer.connect()
        await self.message_observer.connect()

        contacts = await self._observation.get_elements(ElementRole.CONTACT_ITEM)
        self._remember_lead_tags(contacts)
        self._spawn(self._handle_contacts(contacts))

        loop = asyncio.get_running_loop()
        polling = self._config.polling
        if polling.enabled:
            self._pollers = [
                loop.create_task(self._poll_loop(self._poll_contacts, polling.contacts_interval)),
                loop.create_task(self._poll_loop(self._poll_messages, polling.messages_interval)),
            ]
        self._follow_up_task = loop.create_task(self._follow_up_loop())
        LOGGER.info("Auto-reply pipeline started (active conversation: %s)", self.tracker.active_id or "none")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.contact_observer.disconnect()
        self.message_observer.disconnect()
        for poller in self._pollers:
            poller.cancel()
        await asyncio.gather(*self._pollers, return_exceptions=True)
        self._pollers = []
        # The reply being sent finishes first; its handler then settles normally.
        await self.queue.close()
        pending = list(self._tasks)
        if self._follow_up_task is not None:
            pending.append(self._follow_up_task)
            self._follow_up_task = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._deferred.clear()
        LOGGER.info("Auto-reply pipeline stopped")

    async def restart(self) -> None:
        await self.stop()
        self.health.reset()
        await self.start()

    async def wait_idle(self) -> None:
        """Wait until all message work spawned so far has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def snapshot(self) -> dict[str, Any]:
        stats = self.queue.stats
        return {
            "running": self._running,
            "tracker_state": self.tracker.state.value,
            "active_conversation": self.tracker.active_id,
            "queue_depth": len(self.queue),
            "queue_processing": self.queue.processing,
            "succeeded": stats.succeeded,
            "failed": stats.failed,
            "success_rate": round(stats.success_rate, 4),
            "average_latency": round(stats.average_latency, 3),
            "sent_today": self.limiter.total,
            "dedup_size": len(self.dedup),
            "consecutive_failures": self.health.counter.consecutive,
            "recovery_attempts": self.health.counter.recovery_attempts,
            "drops": dict(self.classifier.drops),
            "follow_ups_sent_today": self.follow_ups.limiter.total,
            "follow_up_checking": self.follow_ups.checking,
        }

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background task failed", exc_info=exc)

    # Conversation list

    def _remember_lead_tags(self, contacts: Iterable[ContactItem]) -> None:
        for contact in contacts:
            conversation_id = contact_conversation_id(contact)
            if conversation_id is None:
                continue
            if contact.lead_tag:
                self._lead_tagged.add(conversation_id)
            else:
                self._lead_tagged.discard(conversation_id)

    def _on_contacts_changed(self, event: ChangeEvent) -> None:
        if not self._running:
            return
        self._remember_lead_tags(event.added)
        waiting = [contact for contact in event.added if contact.unread or contact.unreplied]
        if waiting:
            self._spawn(self._handle_contacts(waiting))

    async def _handle_contacts(self, contacts: Iterable[ContactItem]) -> None:
        settings = self.router.settings()
        for contact in contacts:
            if not (contact.unread or contact.unreplied):
                continue
            conversation_id = contact_conversation_id(contact)
            if conversation_id is None:
                LOGGER.debug("Skipping contact %r without a usable id", contact.name)
                continue
            if settings.ignore_lead_tags and contact.lead_tag:
                LOGGER.debug("Skipping lead-tagged contact %s", conversation_id)
                continue
            if self.tracker.is_active(conversation_id):
                self._deferred.pop(conversation_id, None)
                continue
            # Never pull the surface away from a reply that is being sent.
            if self.queue.processing or len(self.queue):
                self._deferred[conversation_id] = contact
                LOGGER.debug("Deferring switch to %s until the reply queue drains", conversation_id)
                continue
            self._deferred.pop(conversation_id, None)
            if await self.tracker.switch(conversation_id, contact=contact):
                await self._poll_messages()

    async def _poll_contacts(self) -> None:
        await self.contact_observer.poll()
        await self._retry_deferred()

    async def _retry_deferred(self) -> None:
        if self._deferred:
            await self._handle_contacts(list(self._deferred.values()))

    # Message list

    def _on_messages_changed(self, event: ChangeEvent) -> None:
        if not self._running:
            return
        for item in event.added:
            message = self.classifier.classify(item)
            if message is not None:
                self._spawn(self._handle_message(message))

    async def _poll_messages(self) -> None:
        self.tracker.observe_active(await self._observation.query_active_conversation_id())
        await self.message_observer.poll()

    async def _handle_message(self, message: Message) -> Optional[RouteOutcome]:
        try:
            settings = self.router.settings()
            if settings.ignore_lead_tags and message.conversation_id in self._lead_tagged:
                LOGGER.debug("Ignoring message from lead-tagged conversation %s", message.conversation_id)
                return None
            self._record_incoming(message, settings.max_history_messages)
            outcome = await self.router.route(message, settings)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Failed to process message %s", message.fingerprint)
            await self.health.record_failure(f"{type(exc).__name__}: {exc}")
            return None

        if outcome.failures:
            await self.health.record_failure(f"{outcome.failures} send(s) failed for {message.conversation_id}")
        else:
            self.health.record_success()
        return outcome

    def _record_incoming(self, message: Message, limit: int) -> None:
        role = "system" if message.kind is MessageKind.SPOTLIGHT else "user"
        self._history.append(
            message.conversation_id,
            HistoryEntry(
                role=role,
                content=message.content,
                timestamp=message.timestamp,
                kind=message.kind,
                title=message.title,
                source_info=message.source_info,
            ),
            limit,
        )
        self._history.increment_stat("total_messages")

    # Recovery and bookkeeping

    async def _resubscribe_messages(self) -> bool:
        await self.message_observer.reconnect()
        return True

    def _on_task_settled(self, task: ReplyTask, success: bool, latency: float) -> None:
        self._history.record_result(success, latency)
        # Switches deferred behind the queue run once it drains.
        if self._running and self._deferred and not len(self.queue):
            self._spawn(self._retry_deferred())

    async def _poll_loop(self, poll: Callable[[], Awaitable[None]], interval: float) -> None:
        while self._running:
            await asyncio.sleep(interval)
            try:
                await poll()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.warning("Backup poll failed: %s", exc)
                if poll == self._poll_messages:
                    await self.health.record_failure(f"message poll: {exc}")

    async def _follow_up_loop(self) -> None:
        # Settings are re-read every round so enabling follow-ups needs no restart.
        settings = self.follow_ups.settings()
        while self._running:
            await asyncio.sleep(settings.check_interval)
            try:
                settings = self.follow_ups.settings()
                await self.follow_ups.check(settings)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Follow-up check failed")
