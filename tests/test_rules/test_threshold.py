"""
Tests for the large-transfer rule.

Tests cover:
- Strict greater-than threshold comparison at arbitrary precision
- Severity overrides from configuration
"""

from __future__ import annotations

from typing import Any

import pytest

from chainwatch.config import MonitorConfig
from chainwatch.models.base import Severity
from chainwatch.rules.state import RuleState
from chainwatch.rules.threshold import LargeTransferRule


class TestLargeTransferRule:
    """Tests for LargeTransferRule."""

    @pytest.fixture
    def rule(self) -> LargeTransferRule:
        return LargeTransferRule()

    @pytest.mark.parametrize("value,fires", [(15000, True), (10001, True), (10000, False), (9999, False), (0, False)])
    def test_threshold(
        self,
        rule: LargeTransferRule,
        config: MonitorConfig,
        make_event: Any,
        value: int,
        fires: bool,
    ) -> None:
        matches = rule.evaluate(make_event(value=value), RuleState(rule.rule_id), config)

        assert len(matches) == (1 if fires else 0)

    def test_match_details(self, rule: LargeTransferRule, config: MonitorConfig, make_event: Any) -> None:
        (match,) = rule.evaluate(make_event(value=15000), RuleState(rule.rule_id), config)

        assert match.severity == Severity.MEDIUM
        assert match.description.startswith("Large transfer")
        assert match.metadata["value"] == "15000"
        assert match.metadata["threshold"] == "10000"

    def test_no_precision_loss(self, rule: LargeTransferRule, make_config: Any, make_event: Any) -> None:
        """2**64 + 1 differs from 2**64 only past double precision."""
        config = make_config(large_transfer_threshold=str(2**64))
        state = RuleState(rule.rule_id)

        assert rule.evaluate(make_event(value=2**64 + 1), state, config)
        assert not rule.evaluate(make_event(value=2**64), state, config)

    def test_severity_override(self, rule: LargeTransferRule, make_config: Any, make_event: Any) -> None:
        config = make_config(rule_severities={"large-transfer": "high"})

        (match,) = rule.evaluate(make_event(value=20000), RuleState(rule.rule_id), config)

        assert match.severity == Severity.HIGH
