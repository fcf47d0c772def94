"""Lead-tool catalog and keyword-to-tool matching (core domain).

Lead tools are grouped by type; a tool is addressed by ``(type, index)``.
Tool rules are evaluated in configured order, unlike reply rules which are
ordered by priority.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable, Optional

from core.models import LeadTool, MessageKind
from core.rules_engine import Rule, rule_matches

LOGGER = logging.getLogger(__name__)

TOOL_TYPES = ("LEAD_CARD", "BUSINESS_CARD", "LANDING_PAGE")


@dataclass(frozen=True)
class ToolMatch:
    tool: LeadTool
    reason: str


class ToolCatalog:
    """Available lead tools keyed by type, in configured order."""

    def __init__(self, tools: Iterable[LeadTool] = ()) -> None:
        self._by_type: dict[str, list[LeadTool]] = {tool_type: [] for tool_type in TOOL_TYPES}
        self._by_id: dict[str, LeadTool] = {}
        for tool in tools:
            self._by_type.setdefault(tool.type, []).append(tool)
            self._by_id[tool.id] = tool

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self):
        return iter(self._by_id.values())

    def get(self, tool_id: Optional[str]) -> Optional[LeadTool]:
        if not tool_id:
            return None
        return self._by_id.get(tool_id)

    def find(self, tool_type: Optional[str], index: int = 0) -> Optional[LeadTool]:
        """Return the tool at ``index`` of ``tool_type``, else the first of that type."""

        tools = self._by_type.get(tool_type or "", [])
        if not tools:
            return None
        if 0 <= index < len(tools):
            return tools[index]
        return tools[0]

    def describe(self) -> list[dict]:
        """Tool list in the shape passed to the intent service."""

        return [
            {"id": tool.id, "type": tool.type, "title": tool.title, "description": tool.description}
            for tool in self._by_id.values()
        ]


def match_tool(
    content: str,
    kind: MessageKind,
    tool_rules: Iterable[Rule],
    catalog: ToolCatalog,
    preferred_type: Optional[str] = None,
) -> Optional[ToolMatch]:
    """Pick a lead tool for ``content`` by keyword.

    A matching rule without a tool type uses ``preferred_type``. When no rule
    yields a tool, the first tool of ``preferred_type`` is the fallback.
    """

    rules = list(tool_rules)
    if not content or not rules:
        return None

    for rule in rules:
        if not rule.enabled or kind not in rule.message_kinds:
            continue
        if not rule_matches(content, rule):
            continue
        tool = catalog.find(rule.tool_type or preferred_type, rule.tool_index)
        if tool is not None:
            return ToolMatch(tool=tool, reason=f"tool rule {rule.name}")
        LOGGER.debug("Tool rule %s matched but no tool of type %s exists", rule.name, rule.tool_type)

    if preferred_type:
        tool = catalog.find(preferred_type, 0)
        if tool is not None:
            return ToolMatch(tool=tool, reason=f"preferred type {preferred_type}")
    return None


def lead_tool_from_dict(raw: dict, index: int) -> LeadTool:
    tool_type = str(raw.get("type", "LEAD_CARD")).upper()
    return LeadTool(
        id=str(raw.get("id") or f"{tool_type.lower()}_{index}"),
        type=tool_type,
        index=int(raw.get("index", index)),
        title=raw.get("title") or raw.get("id") or f"{tool_type} {index}",
        content=raw.get("content") or raw.get("title") or "",
        description=raw.get("description") or "",
    )


def build_catalog(tools_config: Iterable[dict]) -> ToolCatalog:
    """Build a catalog; the per-type index defaults to position within the type."""

    counters: dict[str, int] = {}
    tools = []
    for raw in tools_config:
        if not raw.get("enabled", True):
            continue
        tool_type = str(raw.get("type", "LEAD_CARD")).upper()
        position = counters.get(tool_type, 0)
        counters[tool_type] = position + 1
        tools.append(lead_tool_from_dict(raw, position))
    return ToolCatalog(tools)
