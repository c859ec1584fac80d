"""
Chainwatch - Pipeline Metrics

In-process counters for ingestion, evaluation and delivery. Snapshots are
exposed as plain dicts through get_stats() on each component.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class Counter:
    """A monotonically increasing counter with optional labels."""

    name: str
    description: str
    labels: list[str] = field(default_factory=list)
    _values: dict[tuple[str, ...], int] = field(default_factory=dict)
    _max_cardinality: int = 1000
    _cardinality_warned: bool = field(default=False, repr=False)

    def inc(self, value: int = 1, **labels: str) -> None:
        """Increment the counter; new label sets beyond the limit are dropped."""
        key = self._label_key(labels)
        if key not in self._values and len(self._values) >= self._max_cardinality:
            if not self._cardinality_warned:
                logger.warning("metric_cardinality_limit", metric=self.name, limit=self._max_cardinality)
                self._cardinality_warned = True
            return
        self._values[key] = self._values.get(key, 0) + value

    def get(self, **labels: str) -> int:
        return self._values.get(self._label_key(labels), 0)

    @property
    def total(self) -> int:
        return sum(self._values.values())

    def _label_key(self, labels: dict[str, str]) -> tuple[str, ...]:
        return tuple(labels.get(label, "") for label in self.labels)

    def as_dict(self) -> dict[str, int]:
        """Label values joined by ',' mapped to counts."""
        if not self.labels:
            return {self.name: self.total}
        return {",".join(key): value for key, value in self._values.items()}


@dataclass
class Timing:
    """Running mean of a duration over a bounded number of samples."""

    name: str
    max_samples: int = 1000
    _samples: list[float] = field(default_factory=list)

    def record(self, duration_ms: float) -> None:
        self._samples.append(duration_ms)
        if len(self._samples) > self.max_samples:
            self._samples = self._samples[-self.max_samples:]

    @property
    def mean(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)


@dataclass
class EvaluationMetrics:
    """Counters kept by the evaluation engine."""

    events_evaluated: Counter = field(
        default_factory=lambda: Counter("events_evaluated", "Events run through every rule")
    )
    findings: Counter = field(
        default_factory=lambda: Counter("findings", "Detection findings emitted", ["rule_id", "severity"])
    )
    rule_errors: Counter = field(
        default_factory=lambda: Counter("rule_errors", "Rule faults isolated", ["rule_id"])
    )
    duplicates_collapsed: Counter = field(
        default_factory=lambda: Counter("duplicates_collapsed", "Identical findings merged")
    )
    evaluation_time: Timing = field(default_factory=lambda: Timing("evaluation_time_ms"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "events_evaluated": self.events_evaluated.total,
            "findings_total": self.findings.total,
            "findings": self.findings.as_dict(),
            "rule_errors_total": self.rule_errors.total,
            "rule_errors": self.rule_errors.as_dict(),
            "duplicates_collapsed": self.duplicates_collapsed.total,
            "avg_evaluation_time_ms": round(self.evaluation_time.mean, 3),
        }


@dataclass
class IngestionMetrics:
    """Counters kept by the ingestion adapter."""

    events_accepted: Counter = field(
        default_factory=lambda: Counter("events_accepted", "Events delivered in order")
    )
    out_of_order: Counter = field(
        default_factory=lambda: Counter("out_of_order", "Ordering violations reported")
    )
    malformed: Counter = field(
        default_factory=lambda: Counter("malformed", "Records that failed normalization")
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "events_accepted": self.events_accepted.total,
            "out_of_order": self.out_of_order.total,
            "malformed": self.malformed.total,
        }


@dataclass
class DeliveryMetrics:
    """Counters kept by the alert dispatcher."""

    delivered: Counter = field(
        default_factory=lambda: Counter("delivered", "Successful deliveries", ["target"])
    )
    retries: Counter = field(default_factory=lambda: Counter("retries", "Retried attempts", ["target"]))
    failed: Counter = field(default_factory=lambda: Counter("failed", "Exhausted deliveries", ["target"]))

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivered": self.delivered.total,
            "retries": self.retries.total,
            "failed": self.failed.total,
            "by_target": {
                "delivered": self.delivered.as_dict(),
                "failed": self.failed.as_dict(),
            },
        }


__all__ = [
    "Counter",
    "Timing",
    "EvaluationMetrics",
    "IngestionMetrics",
    "DeliveryMetrics",
]
