"""
Rule Evaluation Engine

Runs every registered rule against each event, in registration order,
on a single evaluation path.

Guarantees:
- A rule that raises is isolated: it yields a RuleEvaluationError health
  finding for that event and the remaining rules still run.
- Each rule only ever receives its own RuleState namespace.
- Findings for one event are emitted in rule-registration order.
- Identical matches from one rule for one event are collapsed; findings of
  different rules are never merged.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from chainwatch.config import MonitorConfig
from chainwatch.errors import RuleEvaluationError
from chainwatch.models.base import Severity
from chainwatch.models.events import ChainEvent
from chainwatch.models.findings import Finding
from chainwatch.monitoring.metrics import EvaluationMetrics
from chainwatch.rules.base import Rule, RuleMatch
from chainwatch.rules.registry import RuleRegistry
from chainwatch.rules.state import RuleState

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class EvaluationResult:
    """Everything produced for one event."""

    event: ChainEvent
    findings: list[Finding] = field(default_factory=list)

    @property
    def detections(self) -> list[Finding]:
        return [f for f in self.findings if not f.is_health]

    @property
    def health(self) -> list[Finding]:
        return [f for f in self.findings if f.is_health]

    @property
    def max_severity(self) -> Severity | None:
        detections = self.detections
        if not detections:
            return None
        return max(f.severity for f in detections)

    def __bool__(self) -> bool:
        return bool(self.findings)


class EvaluationEngine:
    """Owns rolling state and evaluates events one at a time, in order."""

    def __init__(
        self,
        registry: RuleRegistry,
        config: MonitorConfig,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self._rules: list[Rule] = registry.all()
        self._clock = clock or utc_now
        self._state: dict[str, RuleState] = {}
        self.metrics = EvaluationMetrics()
        self.reset()

    @property
    def rules(self) -> list[Rule]:
        return list(self._rules)

    def reset(self) -> None:
        """Discard all rolling state and counters."""
        self._state = {rule.rule_id: RuleState(rule.rule_id) for rule in self._rules}
        self.metrics = EvaluationMetrics()

    def state_for(self, rule_id: str) -> RuleState:
        """The namespace owned by one rule (inspection only)."""
        return self._state[rule_id]

    def evaluate(self, event: ChainEvent) -> EvaluationResult:
        """Run every rule against one event."""
        start = time.monotonic()
        detected_at = self._clock()
        result = EvaluationResult(event=event)
        ordinal = 0

        for rule in self._rules:
            try:
                matches = rule.evaluate(event, self._state[rule.rule_id], self.config) or []
            except Exception as e:
                error = RuleEvaluationError(rule.rule_id, event.id, e)
                self.metrics.rule_errors.inc(rule_id=rule.rule_id)
                logger.error(
                    "rule_evaluation_failed",
                    rule_id=rule.rule_id,
                    event_id=event.id,
                    error=repr(e),
                    exc_info=True,
                )
                result.findings.append(Finding.from_error(error, detected_at=detected_at))
                continue

            for match in self._collapse(rule, matches):
                finding = Finding.for_event(
                    rule_id=rule.rule_id,
                    event_id=event.id,
                    ordinal=ordinal,
                    severity=match.severity,
                    description=match.description,
                    detected_at=detected_at,
                    metadata=match.metadata,
                )
                ordinal += 1
                result.findings.append(finding)
                self.metrics.findings.inc(rule_id=rule.rule_id, severity=finding.severity.value)
                logger.info(
                    "finding_detected",
                    finding_id=finding.id,
                    rule_id=rule.rule_id,
                    severity=finding.severity.value,
                    event_id=event.id,
                )

        self.metrics.events_evaluated.inc()
        self.metrics.evaluation_time.record((time.monotonic() - start) * 1000)
        return result

    def evaluate_all(self, events: Iterable[ChainEvent]) -> list[EvaluationResult]:
        """Evaluate a finite, already-ordered sequence of events."""
        return [self.evaluate(event) for event in events]

    def _collapse(self, rule: Rule, matches: Iterable[RuleMatch]) -> list[RuleMatch]:
        unique: list[RuleMatch] = []
        seen: set[tuple[Any, ...]] = set()
        for match in matches:
            key = (match.severity, match.description, repr(sorted(match.metadata.items())))
            if key in seen:
                self.metrics.duplicates_collapsed.inc()
                logger.debug("duplicate_finding_collapsed", rule_id=rule.rule_id)
                continue
            seen.add(key)
            unique.append(match)
        return unique

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.metrics.to_dict(),
            "rules": [rule.rule_id for rule in self._rules],
            "state_entities": {rule_id: len(state) for rule_id, state in self._state.items()},
        }
