"""
Tests for the self-call rule.

Tests cover:
- Exactly one finding for an event whose origin equals its destination
- No finding for transfers, contract creations or other addresses
- Address comparison after lowercase normalization
- Per-address self-call counts carried across events
- Bounded tracking of per-address counts
"""

from __future__ import annotations

from typing import Any

import pytest

from chainwatch.config import MonitorConfig
from chainwatch.models.base import Severity
from chainwatch.models.events import EventKind
from chainwatch.rules.self_call import SelfCallRule
from chainwatch.rules.state import RuleState
from tests.conftest import ALICE, BOB, CAROL


@pytest.fixture
def rule() -> SelfCallRule:
    return SelfCallRule()


# =============================================================================
# Detection
# =============================================================================


class TestSelfCallDetection:
    """Tests for when SelfCallRule fires."""

    def test_fires_once_on_self_call(self, rule: SelfCallRule, config: MonitorConfig, make_event: Any) -> None:
        matches = rule.evaluate(make_event(origin=ALICE, destination=ALICE), RuleState(rule.rule_id), config)

        assert len(matches) == 1
        assert matches[0].severity == Severity.HIGH
        assert matches[0].metadata["address"] == ALICE
        assert matches[0].metadata["kind"] == "transaction"

    @pytest.mark.parametrize(
        "origin,destination",
        [(ALICE, BOB), (BOB, ALICE), (ALICE, None), (CAROL, BOB)],
    )
    def test_silent_otherwise(
        self,
        rule: SelfCallRule,
        config: MonitorConfig,
        make_event: Any,
        origin: str,
        destination: str | None,
    ) -> None:
        state = RuleState(rule.rule_id)

        assert rule.evaluate(make_event(origin=origin, destination=destination), state, config) == []
        assert len(state) == 0

    def test_mixed_case_addresses(self, rule: SelfCallRule, config: MonitorConfig, make_event: Any) -> None:
        event = make_event(origin="0x" + ALICE[2:].upper(), destination=ALICE)

        (match,) = rule.evaluate(event, RuleState(rule.rule_id), config)

        assert match.metadata["address"] == ALICE

    def test_trace_self_call(self, rule: SelfCallRule, config: MonitorConfig, make_event: Any) -> None:
        event = make_event(origin=BOB, destination=BOB, kind=EventKind.TRACE)

        (match,) = rule.evaluate(event, RuleState(rule.rule_id), config)

        assert match.metadata["kind"] == "trace"
        assert "(trace)" in match.description

    def test_severity_override(self, rule: SelfCallRule, make_config: Any, make_event: Any) -> None:
        config = make_config(rule_severities={"self-call": "critical"})

        (match,) = rule.evaluate(make_event(origin=ALICE, destination=ALICE), RuleState(rule.rule_id), config)

        assert match.severity == Severity.CRITICAL


# =============================================================================
# Per-address counts
# =============================================================================


class TestSelfCallCounts:
    """Tests for the prior_self_calls counter."""

    def test_counts_prior_self_calls(self, rule: SelfCallRule, config: MonitorConfig, make_event: Any) -> None:
        state = RuleState(rule.rule_id)

        first = rule.evaluate(make_event(origin=ALICE, destination=ALICE), state, config)
        rule.evaluate(make_event(origin=ALICE, destination=BOB), state, config)
        second = rule.evaluate(make_event(origin=ALICE, destination=ALICE), state, config)
        other = rule.evaluate(make_event(origin=BOB, destination=BOB), state, config)

        assert first[0].metadata["prior_self_calls"] == 0
        assert second[0].metadata["prior_self_calls"] == 1
        assert other[0].metadata["prior_self_calls"] == 0
        assert state.get(ALICE) == 2
        assert state.get(BOB) == 1

    def test_counts_carry_across_engine_events(self, config: MonitorConfig, make_engine: Any, make_event: Any) -> None:
        engine = make_engine(config)

        counts = []
        for _ in range(3):
            result = engine.evaluate(make_event(origin=CAROL, destination=CAROL))
            (finding,) = [f for f in result.findings if f.rule_id == "self-call"]
            counts.append(finding.metadata["prior_self_calls"])

        assert counts == [0, 1, 2]

    def test_tracking_limit(self, rule: SelfCallRule, make_config: Any, make_event: Any) -> None:
        config = make_config(max_tracked_entities=1)
        state = RuleState(rule.rule_id)

        rule.evaluate(make_event(origin=ALICE, destination=ALICE), state, config)
        untracked = rule.evaluate(make_event(origin=BOB, destination=BOB), state, config)
        again = rule.evaluate(make_event(origin=BOB, destination=BOB), state, config)
        tracked = rule.evaluate(make_event(origin=ALICE, destination=ALICE), state, config)

        # Still fires once the counter table is full
        assert len(untracked) == 1
        assert again[0].metadata["prior_self_calls"] == 0
        assert tracked[0].metadata["prior_self_calls"] == 1
        assert list(state.keys()) == [ALICE]
