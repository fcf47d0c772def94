"""Error taxonomy for the auto-reply pipeline.

Dropped messages are informational and never escalate. Action failures carry
the phase they happened in so the queue can reject with useful context.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the core pipeline."""


class MessageDropped(PipelineError):
    """A raw message was intentionally not processed."""


class ResolutionError(MessageDropped):
    """No conversation id could be resolved for a message."""


class StaleMessage(MessageDropped):
    """Message timestamp is too far from now and no switch just happened."""


class DuplicateMessage(MessageDropped):
    """Fingerprint was already present in the dedup cache."""


class EmptyMessage(MessageDropped):
    """Message has no usable content for its kind."""


class MatchError(PipelineError):
    """A rule pattern could not be evaluated (for example a bad regex)."""


class ExternalActionFailure(PipelineError):
    """An action against the chat surface did not complete."""

    def __init__(self, phase: str, conversation_id: Optional[str], detail: str) -> None:
        super().__init__(f"{phase} failed for {conversation_id or 'unknown'}: {detail}")
        self.phase = phase
        self.conversation_id = conversation_id
        self.detail = detail


class DecisionServiceFailure(PipelineError):
    """The reply generator or intent service failed or returned garbage."""


class QueueInternalFailure(PipelineError):
    """The reply queue's own bookkeeping raised while handling a task."""


class QueueClearedError(PipelineError):
    """A pending reply task was cancelled by ``ReplyQueue.clear``."""
