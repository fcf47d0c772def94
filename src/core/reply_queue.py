"""Serialized reply queue (core domain).

There is exactly one outgoing channel, so at most one ``ReplyTask`` executes
at any time. The ``processing`` flag is the only lock. Each task's future
settles exactly once: with True on success, with an exception otherwise.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, Deque, Optional

from core.config import QueueConfig
from core.errors import ExternalActionFailure, QueueClearedError, QueueInternalFailure

LOGGER = logging.getLogger(__name__)


@dataclass
class ReplyTask:
    task_id: int
    conversation_id: str
    content: str
    kind: str
    enqueued_at: float
    future: "asyncio.Future[bool]"
    label: str = ""
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueueStats:
    """Success ratio and running average latency (enqueue to settlement)."""

    succeeded: int = 0
    failed: int = 0
    average_latency: float = 0.0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.total if self.total else 0.0

    def record(self, success: bool, latency: float) -> None:
        if success:
            self.succeeded += 1
        else:
            self.failed += 1
        self.average_latency += (latency - self.average_latency) / self.total


Execute = Callable[[ReplyTask], Awaitable[None]]
SettledHook = Callable[[ReplyTask, bool, float], None]


class ReplyQueue:
    """Unbounded FIFO of reply tasks drained by a single loop."""

    def __init__(
        self,
        execute: Execute,
        config: QueueConfig,
        on_settled: Optional[SettledHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._execute = execute
        self._config = config
        self._on_settled = on_settled
        self._clock = clock
        self._pending: Deque[ReplyTask] = deque()
        self._processing = False
        self._runner: Optional[asyncio.Task] = None
        self._closing = False
        self._ids = itertools.count(1)
        self.stats = QueueStats()

    @property
    def processing(self) -> bool:
        return self._processing

    def __len__(self) -> int:
        return len(self._pending)

    def enqueue(
        self, conversation_id: str, content: str, kind: str = "text", label: str = "", **meta: Any
    ) -> "asyncio.Future[bool]":
        """Append a task and start draining if idle; return its future."""

        loop = asyncio.get_running_loop()
        task = ReplyTask(
            task_id=next(self._ids),
            conversation_id=conversation_id,
            content=content,
            kind=kind,
            enqueued_at=self._clock(),
            future=loop.create_future(),
            label=label,
            meta=dict(meta),
        )
        if self._closing:
            task.future.set_exception(QueueClearedError(f"task #{task.task_id} rejected while closing"))
            return task.future
        self._pending.append(task)
        LOGGER.debug("Queued %s task #%s for %s (depth=%s)", kind, task.task_id, conversation_id, len(self._pending))
        self._kick()
        return task.future

    def clear(self) -> int:
        """Reject every pending task; the in-flight task is left alone."""

        cleared = 0
        while self._pending:
            task = self._pending.popleft()
            if not task.future.done():
                task.future.set_exception(QueueClearedError(f"task #{task.task_id} cleared"))
            cleared += 1
        if cleared:
            LOGGER.info("Cleared %s pending reply task(s)", cleared)
        return cleared

    async def close(self) -> None:
        """Reject pending tasks and wait for the in-flight task to settle.

        The in-flight task is never interrupted; the executor's own timeouts
        bound the wait. Tasks enqueued while closing are rejected at once.
        """

        self._closing = True
        try:
            self.clear()
            runner = self._runner
            if runner is not None and not runner.done():
                await runner
        finally:
            self._closing = False

    def _kick(self) -> None:
        if self._processing or not self._pending:
            return
        self._processing = True
        self._runner = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        task: Optional[ReplyTask] = None
        try:
            while self._pending:
                task = self._pending.popleft()
                await self._run_one(task)
                task = None
        except asyncio.CancelledError:
            if task is not None and not task.future.done():
                task.future.cancel()
            self._processing = False
            raise
        except Exception as exc:
            LOGGER.exception("Reply queue bookkeeping failed; resuming in %.1fs", self._config.recovery_delay)
            if task is not None and not task.future.done():
                task.future.set_exception(QueueInternalFailure(f"task #{task.task_id}: {exc}"))
            self._processing = False
            asyncio.get_running_loop().call_later(self._config.recovery_delay, self._kick)
            return
        self._processing = False

    async def _run_one(self, task: ReplyTask) -> None:
        error: Optional[ExternalActionFailure] = None
        try:
            await self._execute(task)
        except asyncio.CancelledError:
            raise
        except ExternalActionFailure as exc:
            error = exc
        except Exception as exc:
            error = ExternalActionFailure("execute", task.conversation_id, f"{type(exc).__name__}: {exc}")
            error.__cause__ = exc

        success = error is None
        latency = self._clock() - task.enqueued_at
        self.stats.record(success, latency)
        if self._on_settled is not None:
            self._on_settled(task, success, latency)

        if task.future.done():
            return
        if success:
            task.future.set_result(True)
        else:
            LOGGER.warning("Reply task #%s failed: %s", task.task_id, error)
            task.future.set_exception(error)
