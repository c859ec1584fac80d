"""
Finding Models

Immutable detection records emitted by rules, and pipeline-health records
that report non-fatal faults through the same stream.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import Field

from chainwatch.errors import ChainwatchError
from chainwatch.models.base import ChainwatchModel, Severity, stable_id


class FindingKind(str, Enum):
    """Separates genuine security detections from pipeline health reports."""

    DETECTION = "detection"
    PIPELINE_HEALTH = "pipeline_health"


HEALTH_RULE_ID = "pipeline-health"


class Finding(ChainwatchModel):
    """A write-once record produced by a rule against one event."""

    id: str
    rule_id: str
    severity: Severity
    description: str
    event_id: str | None = None
    detected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    kind: FindingKind = FindingKind.DETECTION
    error_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_health(self) -> bool:
        return self.kind == FindingKind.PIPELINE_HEALTH

    def fingerprint(self) -> tuple[Any, ...]:
        """Identity of the finding content, ignoring id and detection time."""
        return (
            self.rule_id,
            self.severity,
            self.description,
            self.event_id,
            self.kind,
            self.error_type,
            repr(sorted(self.metadata.items())),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "description": self.description,
            "event_id": self.event_id,
            "detected_at": self.detected_at.isoformat(),
            "kind": self.kind.value,
            "error_type": self.error_type,
            "metadata": self.metadata,
        }

    @classmethod
    def for_event(
        cls,
        rule_id: str,
        event_id: str,
        ordinal: int,
        severity: Severity,
        description: str,
        detected_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> Finding:
        """Build a detection finding with an id derived from its origin."""
        return cls(
            id=stable_id(rule_id, event_id, ordinal, prefix="fnd_"),
            rule_id=rule_id,
            severity=severity,
            description=description,
            event_id=event_id,
            detected_at=detected_at,
            metadata=metadata or {},
        )

    @classmethod
    def from_error(
        cls,
        error: ChainwatchError,
        detected_at: datetime | None = None,
        severity: Severity = Severity.LOW,
    ) -> Finding:
        """Wrap a non-fatal pipeline error as a health finding."""
        details = error.to_dict()
        event_id = details.get("event_id")
        rule_id = details.get("rule_id") or HEALTH_RULE_ID
        return cls(
            id=stable_id(error.error_type, event_id, error.message, prefix="hlt_"),
            rule_id=rule_id,
            severity=severity,
            description=error.message,
            event_id=event_id,
            detected_at=detected_at or datetime.now(UTC),
            kind=FindingKind.PIPELINE_HEALTH,
            error_type=error.error_type,
            metadata=details,
        )
