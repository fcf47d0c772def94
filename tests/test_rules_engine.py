from __future__ import annotations

import pytest

from core.errors import MatchError
from core.models import MessageKind
from core.rules_engine import build_rules, keyword_matches, match_rules


def test_price_rule_matches_contains() -> None:
    rules = build_rules(
        [
            {
                "name": "Price",
                "keywords": ["price"],
                "match_type": "contains",
                "match_logic": "OR",
                "priority": 10,
                "response": "Our prices start at $10.",
            }
        ]
    )
    match = match_rules("what about the price?", MessageKind.TEXT, rules)
    assert match is not None
    assert match.rule_name == "Price"
    assert match.rule.response == "Our prices start at $10."
    assert "price" in match.reason


def test_highest_priority_wins_regardless_of_order() -> None:
    low = {"name": "low", "keywords": ["price"], "priority": 1}
    high = {"name": "high", "keywords": ["price"], "priority": 5}

    assert match_rules("price?", MessageKind.TEXT, build_rules([low, high])).rule_name == "high"
    assert match_rules("price?", MessageKind.TEXT, build_rules([high, low])).rule_name == "high"


def test_equal_priority_keeps_configured_order() -> None:
    rules = build_rules(
        [
            {"name": "first", "keywords": ["hi"]},
            {"name": "second", "keywords": ["hi"]},
        ]
    )
    assert match_rules("hi there", MessageKind.TEXT, rules).rule_name == "first"


def test_and_logic_requires_every_keyword() -> None:
    rules = build_rules([{"name": "both", "keywords": ["price", "delivery"], "match_logic": "AND"}])
    assert match_rules("price and delivery?", MessageKind.TEXT, rules) is not None
    assert match_rules("price only", MessageKind.TEXT, rules) is None


def test_match_types() -> None:
    assert keyword_matches("Hello there", "hello", "startsWith")
    assert keyword_matches("Hello there", "THERE", "endsWith")
    assert keyword_matches("  Yes ", "yes", "exact")
    assert not keyword_matches("yes please", "yes", "exact")
    assert keyword_matches("order #123", r"#\d+", "regex")


def test_invalid_regex_never_matches() -> None:
    with pytest.raises(MatchError):
        keyword_matches("anything", "([", "regex")

    rules = build_rules(
        [
            {"name": "broken", "keywords": ["(["], "match_type": "regex", "priority": 9},
            {"name": "fallback", "keywords": ["anything"]},
        ]
    )
    assert match_rules("anything", MessageKind.TEXT, rules).rule_name == "fallback"


def test_rule_filters_by_message_kind() -> None:
    rules = build_rules([{"name": "cards", "keywords": ["offer"], "message_types": ["card"]}])
    assert match_rules("offer", MessageKind.TEXT, rules) is None
    assert match_rules("offer", MessageKind.CARD, rules) is not None


def test_build_rules_skips_disabled_and_maps_legacy_regex() -> None:
    rules = build_rules(
        [
            {"name": "off", "keywords": ["x"], "enabled": False},
            {"name": "legacy", "keywords": ["^a+$"], "is_regex": True},
            {"name": "plain", "keywords": ["b", "  "]},
        ]
    )
    assert [rule.name for rule in rules] == ["legacy", "plain"]
    assert rules[0].match_type == "regex"
    assert rules[1].match_type == "contains"
    assert rules[1].match_logic == "OR"
    assert rules[1].keywords == ["b"]


def test_rule_without_keywords_never_matches() -> None:
    rules = build_rules([{"name": "empty", "keywords": []}])
    assert match_rules("anything", MessageKind.TEXT, rules) is None


def test_build_rules_accepts_camel_case_keys() -> None:
    rules = build_rules(
        [
            {
                "name": "camel",
                "keywords": ["hello", "there"],
                "matchType": "startsWith",
                "matchLogic": "and",
                "messageTypes": ["text"],
                "useAI": True,
                "toolType": "link",
                "toolIndex": 2,
            },
            {"name": "old", "keywords": ["^x"], "isRegex": True},
        ]
    )
    camel, old = rules
    assert camel.match_type == "startsWith"
    assert camel.match_logic == "AND"
    assert camel.message_kinds == frozenset({MessageKind.TEXT})
    assert camel.use_ai is True
    assert camel.tool_type == "link"
    assert camel.tool_index == 2
    assert old.match_type == "regex"
