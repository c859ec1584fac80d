"""
Rule Interface

Contract every detection rule implements. A rule sees one event at a
time, its own RuleState namespace and the frozen configuration, and
returns zero or more RuleMatch records. The engine turns matches into
Findings.

A rule must decide on the state as it was before the event and apply its
own update afterwards, so that the update becomes visible on the next
event only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from chainwatch.models.base import Severity
from chainwatch.models.events import ChainEvent
from chainwatch.rules.state import RuleState

if TYPE_CHECKING:
    from chainwatch.config import MonitorConfig


@dataclass(frozen=True)
class RuleMatch:
    """One positive detection produced by a rule for one event."""

    severity: Severity
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)


class Rule(ABC):
    """
    Base class for detection rules.

    Class-level attributes:
        rule_id           unique kebab-case identifier
        description       human-readable summary
        version           bumped when detection semantics change
        default_severity  severity unless overridden by configuration
        required_settings configuration keys the rule cannot run without
    """

    rule_id: str = ""
    description: str = ""
    version: str = "1.0.0"
    default_severity: Severity = Severity.MEDIUM
    required_settings: tuple[str, ...] = ()

    def severity(self, config: MonitorConfig) -> Severity:
        return config.severity_for(self.rule_id, self.default_severity)

    def match(self, config: MonitorConfig, description: str, **metadata: Any) -> RuleMatch:
        """Build a match at the configured severity."""
        return RuleMatch(severity=self.severity(config), description=description, metadata=metadata)

    @abstractmethod
    def evaluate(
        self,
        event: ChainEvent,
        state: RuleState,
        config: MonitorConfig,
    ) -> list[RuleMatch]:
        """Evaluate one event. Return an empty list when nothing fires."""

    def describe(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "description": self.description,
            "version": self.version,
            "default_severity": self.default_severity.value,
            "required_settings": list(self.required_settings),
        }

    def __repr__(self) -> str:
        return f"<Rule:{self.rule_id} v{self.version}>"
