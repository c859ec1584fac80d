"""
Statistical anomaly rule.

Keeps a bounded FIFO window of recent transfer values per scope and flags
a value whose standardized score against that window exceeds the
configured multiple of standard deviations:

    z = (value - mean(window)) / std(window)

The value is scored against the window as it was before the event, then
appended (evicting the oldest entry once the window is full). Windows with
fewer than anomaly_min_samples values, or zero variance, suppress the rule.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from chainwatch.models.base import Severity
from chainwatch.models.events import ChainEvent
from chainwatch.rules.base import Rule, RuleMatch
from chainwatch.rules.state import RuleState, SlidingWindow

if TYPE_CHECKING:
    from chainwatch.config import MonitorConfig

logger = structlog.get_logger(__name__)

GLOBAL_SCOPE = "*"

# Scores at or beyond this multiple of the threshold are escalated
_ESCALATION_FACTOR = 2


class ValueAnomalyRule(Rule):
    """Z-score anomaly detection over a sliding window of event values."""

    rule_id = "value-anomaly"
    description = "Transfer value deviates from the recent window by more than the z threshold"
    default_severity = Severity.HIGH
    required_settings = ("anomaly_window_size", "anomaly_z_threshold")

    @staticmethod
    def scope_key(event: ChainEvent, config: MonitorConfig) -> str | None:
        if config.anomaly_scope == "origin":
            return event.origin
        if config.anomaly_scope == "destination":
            return event.destination
        return GLOBAL_SCOPE

    def evaluate(
        self,
        event: ChainEvent,
        state: RuleState,
        config: MonitorConfig,
    ) -> list[RuleMatch]:
        key = self.scope_key(event, config)
        if key is None:
            return []
        if key not in state and len(state) >= config.max_tracked_entities:
            logger.warning(
                "anomaly_tracking_saturated",
                scope=key,
                tracked=len(state),
                limit=config.max_tracked_entities,
                event_id=event.id,
            )
            return []

        window: SlidingWindow = state.get_or_create(
            key, lambda: SlidingWindow(config.anomaly_window_size)
        )

        matches: list[RuleMatch] = []
        if len(window) >= config.anomaly_min_samples:
            match = self._score(event, key, window, config)
            if match is not None:
                matches.append(match)

        window.append(event.value)
        return matches

    def _score(
        self,
        event: ChainEvent,
        key: str,
        window: SlidingWindow,
        config: MonitorConfig,
    ) -> RuleMatch | None:
        stats = window.mean_and_std(config.anomaly_std_mode)
        if stats is None:
            return None
        mean, std = stats

        z_score = window.standardize(event.value, mean, std)
        threshold = Decimal(str(config.anomaly_z_threshold))
        if abs(z_score) <= threshold:
            return None

        severity = self.severity(config)
        if abs(z_score) >= threshold * _ESCALATION_FACTOR:
            severity = Severity.CRITICAL

        direction = "above" if z_score > 0 else "below"
        return RuleMatch(
            severity=severity,
            description=(
                f"Value {event.value} is {abs(z_score):.2f} standard deviations "
                f"{direction} the recent mean for scope {key}"
            ),
            metadata={
                "scope": key,
                "value": str(event.value),
                "z_score": round(float(z_score), 6),
                "mean": f"{mean:.4f}",
                "std": f"{std:.4f}",
                "sample_size": len(window),
                "std_mode": config.anomaly_std_mode,
            },
        )
