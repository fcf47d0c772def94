from __future__ import annotations

from core.lead_tools import build_catalog, match_tool
from core.models import MessageKind
from core.rules_engine import build_rules

TOOLS = [
    {"id": "card-a", "type": "LEAD_CARD", "title": "Form A", "content": "form-a"},
    {"id": "card-b", "type": "lead_card", "title": "Form B", "content": "form-b"},
    {"id": "site", "type": "LANDING_PAGE", "title": "Site", "content": "https://example.com"},
    {"id": "off", "type": "BUSINESS_CARD", "title": "Off", "content": "x", "enabled": False},
]


def test_catalog_indexes_tools_per_type() -> None:
    catalog = build_catalog(TOOLS)

    assert len(catalog) == 3
    assert catalog.find("LEAD_CARD", 1).id == "card-b"
    assert catalog.find("LEAD_CARD", 7).id == "card-a"
    assert catalog.find("BUSINESS_CARD") is None
    assert catalog.get("site").title == "Site"
    assert catalog.get(None) is None
    assert [tool["id"] for tool in catalog.describe()] == ["card-a", "card-b", "site"]


def test_tool_rules_run_in_configured_order() -> None:
    catalog = build_catalog(TOOLS)
    rules = build_rules(
        [
            {"name": "details", "keywords": ["details"], "tool_type": "LANDING_PAGE", "priority": 0},
            {"name": "form", "keywords": ["details"], "tool_type": "LEAD_CARD", "tool_index": 1, "priority": 9},
        ]
    )
    match = match_tool("send details", MessageKind.TEXT, rules, catalog)
    assert match is not None
    assert match.tool.id == "site"


def test_rule_without_type_uses_preferred_type() -> None:
    catalog = build_catalog(TOOLS)
    rules = build_rules([{"name": "any", "keywords": ["form"], "tool_index": 1}])
    match = match_tool("a form please", MessageKind.TEXT, rules, catalog, preferred_type="LEAD_CARD")
    assert match.tool.id == "card-b"


def test_preferred_type_is_the_fallback() -> None:
    catalog = build_catalog(TOOLS)
    rules = build_rules([{"name": "details", "keywords": ["details"], "tool_type": "LANDING_PAGE"}])

    assert match_tool("hello", MessageKind.TEXT, rules, catalog) is None
    fallback = match_tool("hello", MessageKind.TEXT, rules, catalog, preferred_type="LEAD_CARD")
    assert fallback is not None
    assert fallback.tool.id == "card-a"


def test_no_rules_means_no_tool() -> None:
    catalog = build_catalog(TOOLS)
    assert match_tool("details", MessageKind.TEXT, [], catalog, preferred_type="LEAD_CARD") is None
