"""Reply decision routing (core domain).

For each classified message the router runs two independent branches:

- text: the winning rule's static response, or an AI-generated reply when the
  rule asks for one and has no static response;
- tool: keyword-to-tool rules first and, only when none matched, the AI
  intent service gated by confidence and a per-conversation resend interval.

Working hours and the daily caps are checked after a decision is made and
right before each outbound send. A send reserves a cap slot and gives it
back if the reply queue rejects the task.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import logging
import random
import time
from typing import Awaitable, Callable, Optional, Sequence

from core.config import RouterConfig, router_config_from_dict
from core.errors import PipelineError, QueueClearedError
from core.gating import SendLimiter, within_working_hours
from core.lead_tools import ToolCatalog, build_catalog, match_tool
from core.models import HistoryEntry, LeadTool, Message
from core.ports import ConfigSourcePort, HistoryStorePort, IntentServicePort, ReplyGeneratorPort
from core.reply_queue import ReplyQueue
from core.rules_engine import RuleMatch, build_rules, match_rules

LOGGER = logging.getLogger(__name__)


@dataclass
class RouteOutcome:
    """What the router decided and sent for one message."""

    rule: Optional[RuleMatch] = None
    text_reply: Optional[str] = None
    text_source: str = ""
    text_sent: bool = False
    tool: Optional[LeadTool] = None
    tool_source: str = ""
    tool_sent: bool = False
    skipped: list[str] = field(default_factory=list)
    failures: int = 0

    @property
    def sent_anything(self) -> bool:
        return self.text_sent or self.tool_sent


class ReplyDecisionRouter:
    def __init__(
        self,
        queue: ReplyQueue,
        limiter: SendLimiter,
        config_source: ConfigSourcePort,
        history: HistoryStorePort,
        generator: Optional[ReplyGeneratorPort] = None,
        intent_service: Optional[IntentServicePort] = None,
        now: Callable[[], datetime] = datetime.now,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self._queue = queue
        self._limiter = limiter
        self._config_source = config_source
        self._history = history
        self._generator = generator
        self._intent_service = intent_service
        self._now = now
        self._clock = clock
        self._sleep = sleep
        self._jitter = jitter
        self._recent_tools: dict[tuple[str, str], float] = {}

    def settings(self) -> RouterConfig:
        return router_config_from_dict(self._config_source.router_settings())

    async def route(self, message: Message, settings: Optional[RouterConfig] = None) -> RouteOutcome:
        settings = settings or self.settings()
        outcome = RouteOutcome()
        if not settings.enabled:
            outcome.skipped.append("auto-reply disabled")
            return outcome

        rules = build_rules(self._config_source.rules())
        outcome.rule = match_rules(message.match_content, message.kind, rules)
        history = self._history.read(message.conversation_id, settings.max_history_messages)

        if outcome.rule is not None:
            LOGGER.info(
                "Rule %s matched %s message from %s (%s)",
                outcome.rule.rule_name,
                message.kind.value,
                message.conversation_id,
                outcome.rule.reason,
            )
            self._history.increment_stat(f"rule_hits:{outcome.rule.rule_name}")
            await self._text_branch(message, outcome.rule, history, settings, outcome)

        await self._tool_branch(message, history, settings, outcome)
        message.processed = True
        return outcome

    async def _text_branch(
        self,
        message: Message,
        match: RuleMatch,
        history: Sequence[HistoryEntry],
        settings: RouterConfig,
        outcome: RouteOutcome,
    ) -> None:
        reply = match.rule.response.strip()
        source = "template"
        if not reply and match.rule.use_ai:
            reply = await self._generate(message, history)
            source = "ai"
        if not reply:
            return
        outcome.text_reply = reply
        outcome.text_source = source

        low, high = settings.reply_delay
        delay = self._jitter(low, high) if high > 0 else 0.0
        if delay > 0:
            await self._sleep(delay)

        outcome.text_sent = await self._send(
            message.conversation_id, reply, "text", match.rule_name, settings, outcome
        )
        if not outcome.text_sent:
            return
        self._history.append(
            message.conversation_id,
            HistoryEntry(role="assistant", content=reply, timestamp=self._now()),
            settings.max_history_messages,
        )
        self._history.increment_stat("total_replies")
        self._history.increment_stat("ai_replies" if source == "ai" else "template_replies")

    async def _generate(self, message: Message, history: Sequence[HistoryEntry]) -> str:
        if self._generator is None:
            LOGGER.warning("Rule asks for an AI reply but no reply generator is configured")
            return ""
        try:
            reply = await self._generator.generate_reply(message.match_content, history)
        except Exception as exc:
            LOGGER.warning("Reply generation failed for %s: %s", message.conversation_id, exc)
            return ""
        return (reply or "").strip()

    async def _tool_branch(
        self,
        message: Message,
        history: Sequence[HistoryEntry],
        settings: RouterConfig,
        outcome: RouteOutcome,
    ) -> None:
        use_ai = settings.ai_lead.enabled and self._intent_service is not None
        if not settings.lead_tools_enabled and not use_ai:
            return
        catalog = build_catalog(self._config_source.lead_tools())
        if not len(catalog):
            return

        if settings.lead_tools_enabled:
            tool_rules = build_rules(self._config_source.tool_rules())
            tool_match = match_tool(
                message.match_content, message.kind, tool_rules, catalog, settings.preferred_tool_type
            )
            if tool_match is not None:
                outcome.tool = tool_match.tool
                outcome.tool_source = "keyword"
                LOGGER.info(
                    "Lead tool %s selected for %s (%s)",
                    tool_match.tool.title,
                    message.conversation_id,
                    tool_match.reason,
                )
                await self._send_tool(message.conversation_id, tool_match.tool, settings, outcome)
                return

        if use_ai:
            await self._ai_tool(message, history, catalog, settings, outcome)

    async def _ai_tool(
        self,
        message: Message,
        history: Sequence[HistoryEntry],
        catalog: ToolCatalog,
        settings: RouterConfig,
        outcome: RouteOutcome,
    ) -> None:
        ai = settings.ai_lead
        conversation_id = message.conversation_id
        last_sent = self._history.get_last_lead_sent(conversation_id)
        min_interval = ai.max_frequency_minutes * 60
        if last_sent is not None and self._clock() - last_sent < min_interval:
            outcome.skipped.append("lead tool resend interval")
            LOGGER.debug(
                "Lead tool for %s sent %.0fs ago; skipping intent check",
                conversation_id,
                self._clock() - last_sent,
            )
            return

        context = {
            "contact_id": conversation_id,
            "current_message": {
                "content": message.content,
                "kind": message.kind.value,
                "title": message.title,
                "source_info": message.source_info,
            },
            "conversation_history": [{"role": entry.role, "content": entry.content} for entry in history],
            "available_tools": catalog.describe(),
        }
        try:
            decision = await self._intent_service.get_intent(context)
        except Exception as exc:
            LOGGER.warning("Intent decision failed for %s: %s", conversation_id, exc)
            return

        if not decision.should_send:
            LOGGER.debug("Intent service declined lead tool for %s: %s", conversation_id, decision.reason)
            return
        if decision.confidence < ai.confidence_threshold:
            outcome.skipped.append("low intent confidence")
            LOGGER.info(
                "Intent confidence %.2f below %.2f for %s",
                decision.confidence,
                ai.confidence_threshold,
                conversation_id,
            )
            return

        tool = catalog.get(decision.tool_id) or catalog.find(ai.default_tool_type, ai.default_tool_index)
        if tool is None:
            LOGGER.warning("Intent service picked unknown tool %r and no default tool is configured", decision.tool_id)
            return
        outcome.tool = tool
        outcome.tool_source = "ai"

        generated = decision.generated_text.strip()
        if ai.allow_generate_text and generated:
            await self._send(conversation_id, generated, "text", "ai lead text", settings, outcome)
        await self._send_tool(conversation_id, tool, settings, outcome)

    async def _send_tool(
        self,
        conversation_id: str,
        tool: LeadTool,
        settings: RouterConfig,
        outcome: RouteOutcome,
    ) -> None:
        key = (conversation_id, tool.id)
        now = self._clock()
        last = self._recent_tools.get(key)
        if last is not None and now - last < settings.duplicate_tool_window:
            outcome.skipped.append("duplicate lead tool")
            LOGGER.info("Lead tool %s already sent to %s %.1fs ago", tool.title, conversation_id, now - last)
            return
        if not tool.content:
            LOGGER.warning("Lead tool %s has no content to send", tool.title)
            return

        outcome.tool_sent = await self._send(conversation_id, tool.content, "tool", tool.title, settings, outcome)
        if not outcome.tool_sent:
            return
        sent_at = self._clock()
        self._recent_tools[key] = sent_at
        self._prune_recent_tools(sent_at, settings.duplicate_tool_window)
        self._history.record_lead_sent(conversation_id, sent_at)
        self._history.increment_stat("lead_tools_sent")

    def _prune_recent_tools(self, now: float, window: float) -> None:
        expired = [key for key, sent_at in self._recent_tools.items() if now - sent_at >= window]
        for key in expired:
            del self._recent_tools[key]

    async def _send(
        self,
        conversation_id: str,
        content: str,
        kind: str,
        label: str,
        settings: RouterConfig,
        outcome: RouteOutcome,
    ) -> bool:
        if not within_working_hours(settings.working_hours, self._now()):
            outcome.skipped.append("outside working hours")
            LOGGER.info("Outside working hours; not sending %s to %s", kind, conversation_id)
            return False
        reservation = self._limiter.acquire(conversation_id, settings.rate_limits)
        if reservation is None:
            outcome.skipped.append("rate limited")
            return False

        future = self._queue.enqueue(conversation_id, content, kind=kind, label=label)
        try:
            await future
        except QueueClearedError as exc:
            self._limiter.release(reservation)
            outcome.skipped.append("queue cleared")
            LOGGER.info("%s to %s dropped: %s", kind.capitalize(), conversation_id, exc)
            return False
        except PipelineError as exc:
            self._limiter.release(reservation)
            outcome.failures += 1
            LOGGER.info("%s to %s not delivered: %s", kind.capitalize(), conversation_id, exc)
            return False
        except asyncio.CancelledError:
            self._limiter.release(reservation)
            raise
        self._history.record_send(conversation_id, reservation.day)
        return True
