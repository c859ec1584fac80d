"""
Delivery Models

Notification targets findings are dispatched to, and the record kept for
every delivery that could not be completed.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import Field, model_validator

from chainwatch.models.base import ChainwatchModel, Severity
from chainwatch.models.findings import Finding


class TargetKind(str, Enum):
    """Delivery channels for findings."""

    LOG = "log"
    MEMORY = "memory"
    WEBHOOK = "webhook"


class DeliveryTarget(ChainwatchModel):
    """A configured destination for findings."""

    name: str = Field(min_length=1)
    kind: TargetKind = TargetKind.LOG
    url: str | None = Field(default=None, description="Endpoint for webhook targets")
    secret: str | None = Field(default=None, description="HMAC-SHA256 secret for signing payloads")
    min_severity: Severity = Severity.INFO

    @model_validator(mode="after")
    def _webhook_needs_url(self) -> DeliveryTarget:
        if self.kind == TargetKind.WEBHOOK and not self.url:
            raise ValueError(f"webhook target '{self.name}' requires a url")
        return self

    def accepts(self, finding: Finding) -> bool:
        """Health findings always pass; detections are filtered by severity."""
        return finding.is_health or finding.severity >= self.min_severity


class FailedDelivery(ChainwatchModel):
    """A finding whose delivery exhausted every attempt."""

    finding: Finding
    target: str
    attempts: int
    last_error: str
    failed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
