"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely. Every
duration is in seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Any, FrozenSet, Mapping, Optional, Tuple


@dataclass(frozen=True)
class WorkingHoursConfig:
    """Inclusive local-time window in which replies may be sent."""

    enabled: bool = False
    start: time = time(9, 0)
    end: time = time(18, 0)


@dataclass(frozen=True)
class RateLimitConfig:
    max_per_day: int = 100
    max_per_conversation: int = 10


@dataclass(frozen=True)
class ClassifierConfig:
    dedup_capacity: int = 100
    staleness_seconds: float = 120.0


@dataclass(frozen=True)
class TrackerConfig:
    settle_delay: float = 1.0
    just_switched_window: float = 10.0
    max_attempts: int = 2
    retry_delay: float = 0.5


@dataclass(frozen=True)
class ExecutorConfig:
    element_timeout: float = 5.0
    verify_timeout: float = 2.0
    poll_interval: float = 0.1
    send_attempts: int = 2
    switch_attempts: int = 2
    input_settle_delay: float = 0.2


@dataclass(frozen=True)
class QueueConfig:
    recovery_delay: float = 0.5


@dataclass(frozen=True)
class HealthConfig:
    failure_threshold: int = 5
    max_recovery_attempts: int = 3
    resubscribe_attempts: int = 3
    resubscribe_delay: float = 1.0


@dataclass(frozen=True)
class PollingConfig:
    """Backup polling intervals used when subscriptions are missing or lag."""

    enabled: bool = True
    contacts_interval: float = 5.0
    messages_interval: float = 10.0


@dataclass(frozen=True)
class AILeadConfig:
    enabled: bool = False
    confidence_threshold: float = 0.7
    max_frequency_minutes: float = 60.0
    default_tool_type: Optional[str] = None
    default_tool_index: int = 0
    allow_generate_text: bool = False


@dataclass(frozen=True)
class RouterConfig:
    """Reply decision settings, re-read from the config source on demand."""

    enabled: bool = True
    reply_delay: Tuple[float, float] = (1.0, 3.0)
    max_history_messages: int = 10
    ignore_lead_tags: bool = False
    lead_tools_enabled: bool = False
    preferred_tool_type: Optional[str] = None
    duplicate_tool_window: float = 10.0
    working_hours: WorkingHoursConfig = field(default_factory=WorkingHoursConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    ai_lead: AILeadConfig = field(default_factory=AILeadConfig)


@dataclass(frozen=True)
class PipelineConfig:
    """Timing and capacity settings fixed for one pipeline run."""

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)


def _parse_time(value: Any, default: time) -> time:
    if isinstance(value, time):
        return value
    if not value:
        return default
    hours, _, minutes = str(value).partition(":")
    return time(int(hours), int(minutes or 0))


def router_config_from_dict(raw: Optional[Mapping[str, Any]]) -> RouterConfig:
    """Build a ``RouterConfig`` from the ``reply`` section of config.json."""

    raw = raw or {}
    hours = raw.get("working_hours") or {}
    limits = raw.get("rate_limits") or {}
    ai_lead = raw.get("ai_lead_generation") or {}
    delay = raw.get("auto_reply_delay", [1.0, 3.0]) or [0.0, 0.0]
    low, high = (float(delay[0]), float(delay[1])) if len(delay) == 2 else (0.0, 0.0)

    return RouterConfig(
        enabled=bool(raw.get("enabled", True)),
        reply_delay=(min(low, high), max(low, high)),
        max_history_messages=int(raw.get("max_history_messages", 10)),
        ignore_lead_tags=bool(raw.get("ignore_lead_tags", False)),
        lead_tools_enabled=bool(raw.get("lead_tools_enabled", False)),
        preferred_tool_type=raw.get("preferred_tool_type"),
        duplicate_tool_window=float(raw.get("duplicate_tool_window", 10.0)),
        working_hours=WorkingHoursConfig(
            enabled=bool(hours.get("enabled", False)),
            start=_parse_time(hours.get("start"), time(9, 0)),
            end=_parse_time(hours.get("end"), time(18, 0)),
        ),
        rate_limits=RateLimitConfig(
            max_per_day=int(limits.get("max_per_day", 100)),
            max_per_conversation=int(limits.get("max_per_conversation", 10)),
        ),
        ai_lead=AILeadConfig(
            enabled=bool(ai_lead.get("enabled", False)),
            confidence_threshold=float(ai_lead.get("confidence_threshold", 0.7)),
            max_frequency_minutes=float(ai_lead.get("max_frequency_minutes", 60)),
            default_tool_type=ai_lead.get("default_tool_type"),
            default_tool_index=int(ai_lead.get("default_tool_index", 0)),
            allow_generate_text=bool(ai_lead.get("allow_generate_text", False)),
        ),
    )


def pipeline_config_from_dict(raw: Optional[Mapping[str, Any]]) -> PipelineConfig:
    """Build a ``PipelineConfig`` from the ``pipeline`` section of config.json.

    Missing keys keep the dataclass defaults, so an empty section is valid.
    """

    raw = raw or {}

    def _section(cls, name: str):
        values = dict(raw.get(name) or {})
        return cls(**values)

    return PipelineConfig(
        classifier=_section(ClassifierConfig, "classifier"),
        tracker=_section(TrackerConfig, "tracker"),
        executor=_section(ExecutorConfig, "executor"),
        queue=_section(QueueConfig, "queue"),
        health=_section(HealthConfig, "health"),
        polling=_section(PollingConfig, "polling"),
    )


@dataclass(frozen=True)
class FollowUpStageConfig:
    """Templates and pacing for one follow-up status."""

    enabled: bool = True
    interval: float = 24 * 3600.0
    max_follow_ups: int = 3
    templates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FollowUpConfig:
    """Re-engagement settings, re-read from the config source on each check."""

    enabled: bool = False
    check_interval: float = 1800.0
    daily_limit: int = 50
    max_daily_per_contact: int = 1
    blacklist: FrozenSet[str] = frozenset()
    send_gap: float = 2.0
    working_hours: WorkingHoursConfig = field(default_factory=WorkingHoursConfig)
    no_response: FollowUpStageConfig = field(default_factory=FollowUpStageConfig)
    no_contact: FollowUpStageConfig = field(
        default_factory=lambda: FollowUpStageConfig(interval=48 * 3600.0, max_follow_ups=5)
    )
    lead_tool_frequency: int = 0
    lead_tool_type: Optional[str] = None
    lead_tool_index: int = 0

    @property
    def rate_limits(self) -> RateLimitConfig:
        return RateLimitConfig(max_per_day=self.daily_limit, max_per_conversation=self.max_daily_per_contact)


def _template_text(template: Any) -> str:
    # Templates are plain strings or {"order": n, "message": "..."} objects.
    if isinstance(template, Mapping):
        template = template.get("message", "")
    return str(template or "").strip()


def _stage_from_dict(raw: Optional[Mapping[str, Any]], default: FollowUpStageConfig) -> FollowUpStageConfig:
    raw = raw or {}
    templates = tuple(text for text in (_template_text(t) for t in raw.get("templates", [])) if text)
    return FollowUpStageConfig(
        enabled=bool(raw.get("enabled", default.enabled)),
        interval=float(raw.get("interval_hours", default.interval / 3600)) * 3600,
        max_follow_ups=int(raw.get("max_follow_ups", default.max_follow_ups)),
        templates=templates,
    )


def follow_up_config_from_dict(raw: Optional[Mapping[str, Any]]) -> FollowUpConfig:
    """Build a ``FollowUpConfig`` from the ``follow_up`` section of config.json."""

    raw = raw or {}
    defaults = FollowUpConfig()
    hours = raw.get("working_hours") or {}
    lead_tool = raw.get("lead_tool") or {}
    return FollowUpConfig(
        enabled=bool(raw.get("enabled", False)),
        check_interval=float(raw.get("check_interval_minutes", 30)) * 60,
        daily_limit=int(raw.get("daily_limit", defaults.daily_limit)),
        max_daily_per_contact=int(raw.get("max_daily_per_contact", defaults.max_daily_per_contact)),
        blacklist=frozenset(str(item) for item in raw.get("blacklist", [])),
        send_gap=float(raw.get("send_gap", defaults.send_gap)),
        working_hours=WorkingHoursConfig(
            enabled=bool(hours.get("enabled", False)),
            start=_parse_time(hours.get("start"), time(9, 0)),
            end=_parse_time(hours.get("end"), time(21, 0)),
        ),
        no_response=_stage_from_dict(raw.get("no_response"), defaults.no_response),
        no_contact=_stage_from_dict(raw.get("no_contact"), defaults.no_contact),
        lead_tool_frequency=int(lead_tool.get("frequency", 0)),
        lead_tool_type=lead_tool.get("type"),
        lead_tool_index=int(lead_tool.get("index", 0)),
    )
