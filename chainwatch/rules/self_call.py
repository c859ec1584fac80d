"""Self-invocation rule."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from chainwatch.models.base import Severity
from chainwatch.models.events import ChainEvent
from chainwatch.rules.base import Rule, RuleMatch
from chainwatch.rules.state import RuleState

if TYPE_CHECKING:
    from chainwatch.config import MonitorConfig

logger = structlog.get_logger(__name__)


class SelfCallRule(Rule):
    """
    Fires when an event's origin and destination are the same address.

    Contracts calling themselves inside a trace is the reentrancy-style
    pattern; the rule counts occurrences per address so repeated self-calls
    are visible in the finding metadata.
    """

    rule_id = "self-call"
    description = "Address invokes itself"
    default_severity = Severity.HIGH

    def evaluate(
        self,
        event: ChainEvent,
        state: RuleState,
        config: MonitorConfig,
    ) -> list[RuleMatch]:
        if not event.is_self_call:
            return []

        previous = state.get(event.origin, 0)
        if event.origin in state or len(state) < config.max_tracked_entities:
            state.set(event.origin, previous + 1)
        else:
            logger.warning(
                "self_call_tracking_saturated",
                address=event.origin,
                tracked=len(state),
                limit=config.max_tracked_entities,
            )

        return [
            self.match(
                config,
                f"Address {event.origin} called itself ({event.kind.value})",
                address=event.origin,
                kind=event.kind.value,
                prior_self_calls=previous,
            )
        ]
