"""
Chainwatch - Detection Rules

1. LargeTransferRule - value above the configured threshold
2. SelfCallRule - origin equals destination
3. WatchlistRule - watched addresses and funds derived from them
4. ValueAnomalyRule - z-score over a sliding window of values
"""

from chainwatch.rules.anomaly import ValueAnomalyRule
from chainwatch.rules.base import Rule, RuleMatch
from chainwatch.rules.registry import DEFAULT_RULES, RuleRegistry, build_rule_registry
from chainwatch.rules.self_call import SelfCallRule
from chainwatch.rules.state import RuleState, SlidingWindow
from chainwatch.rules.threshold import LargeTransferRule
from chainwatch.rules.watchlist import WatchlistRule

__all__ = [
    "Rule",
    "RuleMatch",
    "RuleState",
    "SlidingWindow",
    "RuleRegistry",
    "DEFAULT_RULES",
    "build_rule_registry",
    "LargeTransferRule",
    "SelfCallRule",
    "WatchlistRule",
    "ValueAnomalyRule",
]
