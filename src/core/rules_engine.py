"""Rule compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
import re
from typing import Any, FrozenSet, Iterable, List, Optional

from core.errors import MatchError
from core.models import MessageKind

LOGGER = logging.getLogger(__name__)

MATCH_TYPES = ("contains", "exact", "startsWith", "endsWith", "regex")
MATCH_LOGICS = ("AND", "OR")
ALL_KINDS: FrozenSet[MessageKind] = frozenset(MessageKind)


@dataclass(frozen=True)
class Rule:
    """Normalized keyword rule used by the router."""

    id: str
    name: str
    keywords: List[str]
    match_type: str = "contains"
    match_logic: str = "OR"
    message_kinds: FrozenSet[MessageKind] = ALL_KINDS
    priority: int = 0
    response: str = ""
    use_ai: bool = False
    enabled: bool = True
    tool_type: Optional[str] = None
    tool_index: int = 0


@dataclass(frozen=True)
class RuleMatch:
    """The winning rule with a human-readable reason."""

    rule: Rule
    reason: str

    @property
    def rule_name(self) -> str:
        return self.rule.name


def _parse_kinds(raw: Optional[Iterable[str]]) -> FrozenSet[MessageKind]:
    if not raw:
        return ALL_KINDS
    kinds = set()
    for value in raw:
        try:
            kinds.add(MessageKind(str(value).upper()))
        except ValueError:
            LOGGER.warning("Ignoring unknown message kind %r in rule config", value)
    return frozenset(kinds) or ALL_KINDS


def _option(rule: dict, snake: str, camel: str, default: Any = None) -> Any:
    if snake in rule:
        return rule[snake]
    return rule.get(camel, default)


def build_rules(rules_config: Iterable[dict]) -> List[Rule]:
    """Normalize rule configs into ``Rule`` values.

    Keys may be snake_case or camelCase. Disabled rules are skipped. Rules
    from older configs that only carry ``is_regex`` become regex rules;
    anything else defaults to contains/OR. Configured order is preserved so
    equal priorities keep their order.
    """

    compiled: List[Rule] = []
    for index, rule in enumerate(rules_config):
        if not rule.get("enabled", True):
            continue
        match_type = _option(rule, "match_type", "matchType")
        if not match_type:
            match_type = "regex" if _option(rule, "is_regex", "isRegex") else "contains"
        if match_type not in MATCH_TYPES:
            LOGGER.warning("Rule %s has unknown match_type %r; using contains", rule.get("name"), match_type)
            match_type = "contains"
        match_logic = str(_option(rule, "match_logic", "matchLogic", "OR")).upper()
        if match_logic not in MATCH_LOGICS:
            match_logic = "OR"
        keywords = [str(k) for k in rule.get("keywords", []) if str(k).strip()]
        compiled.append(
            Rule(
                id=str(rule.get("id") or f"rule-{index}"),
                name=rule.get("name") or f"rule-{index}",
                keywords=keywords,
                match_type=match_type,
                match_logic=match_logic,
                message_kinds=_parse_kinds(_option(rule, "message_types", "messageTypes")),
                priority=int(rule.get("priority", 0)),
                response=rule.get("response") or "",
                use_ai=bool(_option(rule, "use_ai", "useAI", False)),
                enabled=True,
                tool_type=_option(rule, "tool_type", "toolType"),
                tool_index=int(_option(rule, "tool_index", "toolIndex", 0) or 0),
            )
        )
    return compiled


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Optional[re.Pattern]:
    # Cached so a broken pattern is reported once, not on every message.
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        LOGGER.warning("Invalid rule regex %r treated as non-matching: %s", pattern, exc)
        return None


def keyword_matches(content: str, keyword: str, match_type: str) -> bool:
    """Apply one keyword with ``match_type``; raises ``MatchError`` on a bad regex."""

    if match_type == "regex":
        pattern = _compile(keyword)
        if pattern is None:
            raise MatchError(f"invalid pattern {keyword!r}")
        return pattern.search(content) is not None

    lowered = content.lower()
    needle = keyword.lower()
    if match_type == "exact":
        return lowered.strip() == needle.strip()
    if match_type == "startsWith":
        return lowered.startswith(needle)
    if match_type == "endsWith":
        return lowered.endswith(needle)
    return needle in lowered


def _keyword_hit(content: str, keyword: str, match_type: str) -> bool:
    try:
        return keyword_matches(content, keyword, match_type)
    except MatchError:
        return False


def rule_matches(content: str, rule: Rule) -> bool:
    """AND requires every keyword to hit, OR requires any; no keywords never match."""

    if not content or not rule.keywords:
        return False
    if rule.match_logic == "AND":
        return all(_keyword_hit(content, k, rule.match_type) for k in rule.keywords)
    return any(_keyword_hit(content, k, rule.match_type) for k in rule.keywords)


def match_rules(content: str, kind: MessageKind, rules: Iterable[Rule]) -> Optional[RuleMatch]:
    """Return the highest-priority matching rule for ``content``.

    Matching logic:
    - Only enabled rules whose message kinds include ``kind`` are considered.
    - Rules are tried by descending priority; ties keep configured order.
    - The first rule that matches wins.
    """

    candidates = [rule for rule in rules if rule.enabled and kind in rule.message_kinds]
    for rule in sorted(candidates, key=lambda r: -r.priority):
        if not rule_matches(content, rule):
            continue
        hits = [k for k in rule.keywords if _keyword_hit(content, k, rule.match_type)]
        reason = f"{rule.match_type}/{rule.match_logic}: {', '.join(hits)}"
        return RuleMatch(rule=rule, reason=reason)
    return None
