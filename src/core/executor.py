"""Reply execution against the chat surface (core domain).

Execution is split into phases (switch, acquire, fill, send). Any failure is
raised as ``ExternalActionFailure`` carrying the phase name so the queue can
reject the task with useful context.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from core.config import ExecutorConfig
from core.contacts import ContactTracker
from core.errors import ExternalActionFailure
from core.models import ElementRole, OperatorNotice
from core.ports import ActionPort, NotifierPort, ObservationPort
from core.reply_queue import ReplyTask
from core.retry import fixed_delay, retry

LOGGER = logging.getLogger(__name__)


class ReplyExecutor:
    """Drive one ``ReplyTask`` through the action layer."""

    def __init__(
        self,
        tracker: ContactTracker,
        observation: ObservationPort,
        actions: ActionPort,
        config: ExecutorConfig,
        notifier: Optional[NotifierPort] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tracker = tracker
        self._observation = observation
        self._actions = actions
        self._config = config
        self._notifier = notifier
        self._sleep = sleep
        self._clock = clock

    async def execute(self, task: ReplyTask) -> None:
        try:
            await self._ensure_conversation(task.conversation_id)
            input_ref = await self._acquire(ElementRole.INPUT, task)
            send_ref = await self._acquire(ElementRole.SEND_CONTROL, task)
            submit_ref = await self._fill(input_ref, send_ref, task)
            await self._send(input_ref, submit_ref, task)
        except ExternalActionFailure as failure:
            await self._notify_failure(task, failure)
            raise
        LOGGER.info("Sent %s reply to %s (task #%s)", task.kind, task.conversation_id, task.task_id)

    async def _ensure_conversation(self, target: str) -> None:
        if self._tracker.is_active(target):
            return
        try:
            if await self._tracker.switch(target):
                return
            # Broader scan: accept a fuzzy id match before giving up.
            contact = await self._tracker.locate(target, fuzzy=True)
            if contact is not None and await self._tracker.switch(target, contact=contact):
                return
        except Exception as exc:
            raise ExternalActionFailure("switch", target, f"{type(exc).__name__}: {exc}") from exc
        raise ExternalActionFailure("switch", target, "conversation could not be activated")

    async def _acquire(self, role: ElementRole, task: ReplyTask) -> Any:
        deadline = self._clock() + self._config.element_timeout
        while True:
            try:
                elements = await self._observation.get_elements(role)
            except Exception as exc:
                raise ExternalActionFailure("acquire", task.conversation_id, f"{role.value}: {exc}") from exc
            if elements:
                return elements[0]
            if self._clock() >= deadline:
                raise ExternalActionFailure(
                    "acquire",
                    task.conversation_id,
                    f"{role.value} unavailable after {self._config.element_timeout}s",
                )
            await self._sleep(self._config.poll_interval)

    async def _fill(self, input_ref: Any, send_ref: Any, task: ReplyTask) -> Any:
        """Set the input content and return the ref to submit through.

        A disabled send control gets one more content write; if it stays
        disabled the input surface itself becomes the submit target.
        """

        try:
            await self._actions.set_input_value(input_ref, task.content)
            await self._sleep(self._config.input_settle_delay)
            if not await self._actions.is_submit_disabled(send_ref):
                return send_ref
            LOGGER.debug("Send control disabled for %s; re-setting content", task.conversation_id)
            await self._actions.set_input_value(input_ref, task.content)
            await self._sleep(self._config.input_settle_delay)
            if not await self._actions.is_submit_disabled(send_ref):
                return send_ref
        except Exception as exc:
            raise ExternalActionFailure("fill", task.conversation_id, f"{type(exc).__name__}: {exc}") from exc
        LOGGER.info("Send control still disabled for %s; submitting via input", task.conversation_id)
        return input_ref

    async def _send(self, input_ref: Any, submit_ref: Any, task: ReplyTask) -> None:
        attempts = 0

        async def _attempt() -> bool:
            nonlocal attempts
            attempts += 1
            # A previous attempt may have gone through late.
            if attempts > 1 and await self._input_empty(input_ref):
                return True
            await self._actions.submit(submit_ref)
            return await self._wait_input_cleared(input_ref)

        try:
            sent = await retry(
                _attempt,
                self._config.send_attempts,
                fixed_delay(self._config.poll_interval),
                label=f"send to {task.conversation_id}",
                sleep=self._sleep,
            )
        except Exception as exc:
            raise ExternalActionFailure("send", task.conversation_id, f"{type(exc).__name__}: {exc}") from exc
        if not sent:
            raise ExternalActionFailure(
                "send",
                task.conversation_id,
                f"input not cleared within {self._config.verify_timeout}s after {attempts} attempt(s)",
            )

    async def _input_empty(self, input_ref: Any) -> bool:
        value = await self._observation.get_input_value(input_ref)
        return not (value or "").strip()

    async def _wait_input_cleared(self, input_ref: Any) -> bool:
        deadline = self._clock() + self._config.verify_timeout
        while True:
            if await self._input_empty(input_ref):
                return True
            if self._clock() >= deadline:
                return False
            await self._sleep(self._config.poll_interval)

    async def _notify_failure(self, task: ReplyTask, failure: ExternalActionFailure) -> None:
        if self._notifier is None:
            return
        title = "Conversation switch failed" if failure.phase == "switch" else "Reply not sent"
        notice = OperatorNotice(
            level="warning",
            title=title,
            conversation_id=task.conversation_id,
            detail=f"{failure.detail} ({task.kind}: {task.label or task.content[:80]})",
        )
        try:
            await self._notifier.notify(notice)
        except Exception:
            LOGGER.exception("Failed to deliver operator notice for task #%s", task.task_id)
