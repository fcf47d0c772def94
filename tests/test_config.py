from __future__ import annotations

from datetime import time

import pytest

from core.config import (
    PipelineConfig,
    follow_up_config_from_dict,
    pipeline_config_from_dict,
    router_config_from_dict,
)


def test_router_defaults_from_empty_section() -> None:
    config = router_config_from_dict(None)
    assert config.enabled
    assert config.reply_delay == (1.0, 3.0)
    assert config.rate_limits.max_per_day == 100
    assert config.rate_limits.max_per_conversation == 10
    assert not config.working_hours.enabled
    assert not config.ai_lead.enabled


def test_router_parses_nested_sections() -> None:
    config = router_config_from_dict(
        {
            "auto_reply_delay": [5, 2],
            "ignore_lead_tags": True,
            "working_hours": {"enabled": True, "start": "08:30", "end": "20"},
            "rate_limits": {"max_per_day": 50},
            "ai_lead_generation": {"enabled": True, "confidence_threshold": 0.9, "default_tool_type": "LEAD_CARD"},
        }
    )
    assert config.reply_delay == (2.0, 5.0)
    assert config.ignore_lead_tags
    assert config.working_hours.start == time(8, 30)
    assert config.working_hours.end == time(20, 0)
    assert config.rate_limits.max_per_day == 50
    assert config.rate_limits.max_per_conversation == 10
    assert config.ai_lead.confidence_threshold == 0.9
    assert config.ai_lead.default_tool_type == "LEAD_CARD"


def test_pipeline_sections_override_defaults() -> None:
    config = pipeline_config_from_dict({"classifier": {"staleness_seconds": 60}, "polling": {"enabled": False}})
    assert config.classifier.staleness_seconds == 60
    assert config.classifier.dedup_capacity == 100
    assert not config.polling.enabled
    assert config.tracker == PipelineConfig().tracker


def test_pipeline_rejects_unknown_keys() -> None:
    with pytest.raises(TypeError):
        pipeline_config_from_dict({"queue": {"size": 3}})


def test_follow_up_defaults_from_empty_section() -> None:
    config = follow_up_config_from_dict(None)
    assert not config.enabled
    assert config.check_interval == 1800
    assert config.no_response.interval == 24 * 3600
    assert config.no_contact.max_follow_ups == 5
    assert config.no_response.templates == ()
    assert config.working_hours.end == time(21, 0)


def test_follow_up_parses_stages_and_templates() -> None:
    config = follow_up_config_from_dict(
        {
            "enabled": True,
            "check_interval_minutes": 10,
            "daily_limit": 20,
            "blacklist": ["User-9", 42],
            "no_response": {"interval_hours": 6, "templates": ["Hi", {"order": 2, "message": " Still there? "}, ""]},
            "no_contact": {"enabled": False},
            "lead_tool": {"frequency": 2, "type": "LEAD_CARD", "index": 1},
        }
    )
    assert config.check_interval == 600
    assert config.rate_limits.max_per_day == 20
    assert config.rate_limits.max_per_conversation == 1
    assert config.blacklist == frozenset({"User-9", "42"})
    assert config.no_response.interval == 6 * 3600
    assert config.no_response.templates == ("Hi", "Still there?")
    assert not config.no_contact.enabled
    assert config.no_contact.interval == 48 * 3600
    assert (config.lead_tool_frequency, config.lead_tool_type, config.lead_tool_index) == (2, "LEAD_CARD", 1)
