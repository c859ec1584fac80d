"""
Tests for the rule registry.

Tests cover:
- Registration order
- DuplicateRuleId at registration
- Required settings checked against the configuration
"""

from __future__ import annotations

from typing import Any

import pytest

from chainwatch.config import MonitorConfig
from chainwatch.errors import ConfigurationError, DuplicateRuleId
from chainwatch.models.events import ChainEvent
from chainwatch.rules import (
    DEFAULT_RULES,
    LargeTransferRule,
    Rule,
    RuleMatch,
    RuleRegistry,
    SelfCallRule,
    build_rule_registry,
)
from chainwatch.rules.state import RuleState


class GasCeilingRule(Rule):
    rule_id = "gas-ceiling"
    required_settings = ("gas_ceiling",)

    def evaluate(self, event: ChainEvent, state: RuleState, config: MonitorConfig) -> list[RuleMatch]:
        return []


class NamelessRule(Rule):
    def evaluate(self, event: ChainEvent, state: RuleState, config: MonitorConfig) -> list[RuleMatch]:
        return []


class TestRuleRegistry:
    """Tests for RuleRegistry."""

    def test_registration_order(self) -> None:
        registry = RuleRegistry()
        registry.register(SelfCallRule())
        registry.register(LargeTransferRule())

        assert [r.rule_id for r in registry.all()] == ["self-call", "large-transfer"]
        assert len(registry) == 2
        assert "self-call" in registry
        assert registry.get("large-transfer") is not None
        assert registry.get("missing") is None

    def test_duplicate_rule_id(self) -> None:
        registry = RuleRegistry([SelfCallRule()])

        with pytest.raises(DuplicateRuleId) as exc_info:
            registry.register(SelfCallRule())

        assert exc_info.value.rule_id == "self-call"
        assert exc_info.value.fatal is True
        assert len(registry) == 1

    def test_rule_without_id(self) -> None:
        with pytest.raises(ValueError):
            RuleRegistry([NamelessRule()])

    def test_required_settings(self) -> None:
        registry = RuleRegistry(rule_type() for rule_type in DEFAULT_RULES)

        assert registry.required_settings() == {
            "large_transfer_threshold",
            "anomaly_window_size",
            "anomaly_z_threshold",
            "watchlist_addresses",
            "max_hop_count",
        }

    def test_describe(self) -> None:
        info = SelfCallRule().describe()

        assert info["rule_id"] == "self-call"
        assert info["default_severity"] == "high"
        assert info["version"] == "1.0.0"


class TestBuildRuleRegistry:
    """Tests for build_rule_registry."""

    def test_default_rules(self, config: MonitorConfig) -> None:
        registry = build_rule_registry(config)

        assert [r.rule_id for r in registry] == ["large-transfer", "self-call", "watchlist", "value-anomaly"]

    def test_duplicate_types(self, config: MonitorConfig) -> None:
        with pytest.raises(DuplicateRuleId):
            build_rule_registry(config, [SelfCallRule, SelfCallRule])

    def test_unconfigured_setting(self, config: MonitorConfig) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            build_rule_registry(config, [*DEFAULT_RULES, GasCeilingRule])

        assert exc_info.value.key == "gas_ceiling"

    def test_unknown_severity_override_is_tolerated(self, make_config: Any) -> None:
        config = make_config(rule_severities={"no-such-rule": "low"})

        assert len(build_rule_registry(config)) == len(DEFAULT_RULES)
