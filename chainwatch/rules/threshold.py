"""Large-transfer threshold rule."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chainwatch.models.base import Severity
from chainwatch.models.events import ChainEvent
from chainwatch.rules.base import Rule, RuleMatch
from chainwatch.rules.state import RuleState

if TYPE_CHECKING:
    from chainwatch.config import MonitorConfig


class LargeTransferRule(Rule):
    """Fires when an event moves strictly more than the configured threshold."""

    rule_id = "large-transfer"
    description = "Transfer value exceeds the configured large-transfer threshold"
    default_severity = Severity.MEDIUM
    required_settings = ("large_transfer_threshold",)

    def evaluate(
        self,
        event: ChainEvent,
        state: RuleState,
        config: MonitorConfig,
    ) -> list[RuleMatch]:
        threshold = config.large_transfer_threshold
        # Both sides are ints: exact comparison at any magnitude
        if event.value <= threshold:
            return []
        return [
            self.match(
                config,
                f"Large transfer of {event.value} from {event.origin} exceeds threshold {threshold}",
                value=str(event.value),
                threshold=str(threshold),
                origin=event.origin,
                destination=event.destination,
            )
        ]
