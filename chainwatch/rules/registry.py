"""
Rule Registry

Ordered, append-only set of detection rules. Rules are registered once at
process start; registration order is evaluation and reporting order.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

import structlog

from chainwatch.errors import DuplicateRuleId
from chainwatch.rules.anomaly import ValueAnomalyRule
from chainwatch.rules.base import Rule
from chainwatch.rules.self_call import SelfCallRule
from chainwatch.rules.threshold import LargeTransferRule
from chainwatch.rules.watchlist import WatchlistRule

if TYPE_CHECKING:
    from chainwatch.config import MonitorConfig

logger = structlog.get_logger(__name__)


class RuleRegistry:
    """Holds the rules evaluated against every event."""

    def __init__(self, rules: Iterable[Rule] | None = None) -> None:
        self._rules: dict[str, Rule] = {}
        for rule in rules or ():
            self.register(rule)

    def register(self, rule: Rule) -> None:
        """
        Add a rule.

        Raises:
            DuplicateRuleId: if a rule with the same id is already registered
        """
        if not rule.rule_id:
            raise ValueError(f"{type(rule).__name__} has no rule_id")
        if rule.rule_id in self._rules:
            raise DuplicateRuleId(rule.rule_id)
        self._rules[rule.rule_id] = rule
        logger.info("rule_registered", rule_id=rule.rule_id, version=rule.version)

    def all(self) -> list[Rule]:
        """Registered rules in registration order."""
        return list(self._rules.values())

    def get(self, rule_id: str) -> Rule | None:
        return self._rules.get(rule_id)

    def required_settings(self) -> set[str]:
        keys: set[str] = set()
        for rule in self._rules.values():
            keys.update(rule.required_settings)
        return keys

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.all())

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __len__(self) -> int:
        return len(self._rules)


# The closed set of rules this service ships with, in evaluation order
DEFAULT_RULES: tuple[type[Rule], ...] = (
    LargeTransferRule,
    SelfCallRule,
    WatchlistRule,
    ValueAnomalyRule,
)


def build_rule_registry(
    config: MonitorConfig,
    rule_types: Iterable[type[Rule]] = DEFAULT_RULES,
) -> RuleRegistry:
    """
    Build the registry and check the configuration covers every rule.

    Raises:
        DuplicateRuleId: if two rule types share an id
        ConfigurationError: if a rule's required setting is not configured
    """
    registry = RuleRegistry(rule_type() for rule_type in rule_types)
    config.require(sorted(registry.required_settings()))
    for rule_id in config.rule_severities:
        if rule_id not in registry:
            logger.warning("severity_override_for_unknown_rule", rule_id=rule_id)
    return registry
