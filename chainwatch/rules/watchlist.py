"""
Address-of-interest rule.

Flags any event touching a watchlisted address, and follows funds moved
by a flagged actor: every recipient of a watched (or already tainted)
sender becomes tainted one hop further out, up to max_hop_count hops.

State: address -> hop distance from the configured watchlist (min kept).
"""

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


class WatchlistRule(Rule):
    """Fires on events whose origin or destination is watched or tainted."""

    rule_id = "watchlist"
    description = "Event touches a watchlisted address or funds derived from one"
    default_severity = Severity.HIGH
    required_settings = ("watchlist_addresses", "max_hop_count")

    @staticmethod
    def hop_of(address: str | None, state: RuleState, config: MonitorConfig) -> int | None:
        """Hop distance of an address from the watchlist, None if unrelated."""
        if address is None:
            return None
        if address in config.watchlist_addresses:
            return 0
        hop: int | None = state.get(address)
        return hop

    def evaluate(
        self,
        event: ChainEvent,
        state: RuleState,
        config: MonitorConfig,
    ) -> list[RuleMatch]:
        origin_hop = self.hop_of(event.origin, state, config)
        destination_hop = self.hop_of(event.destination, state, config)

        matches: list[RuleMatch] = []
        hops = [h for h in (origin_hop, destination_hop) if h is not None]
        if hops:
            closest = min(hops)
            severity = self.severity(config)
            if closest > 0:
                severity = severity.lowered()
            matches.append(
                RuleMatch(
                    severity=severity,
                    description=self._describe(event, origin_hop, destination_hop),
                    metadata={
                        "origin": event.origin,
                        "destination": event.destination,
                        "origin_hop": origin_hop,
                        "destination_hop": destination_hop,
                        "value": str(event.value),
                    },
                )
            )

        self._propagate(event, origin_hop, destination_hop, state, config)
        return matches

    def _propagate(
        self,
        event: ChainEvent,
        origin_hop: int | None,
        destination_hop: int | None,
        state: RuleState,
        config: MonitorConfig,
    ) -> None:
        if origin_hop is None or event.destination is None or event.is_self_call:
            return

        next_hop = origin_hop + 1
        if next_hop > config.max_hop_count:
            return
        if destination_hop is not None and destination_hop <= next_hop:
            return

        if destination_hop is None and len(state) >= config.watchlist_max_tracked:
            logger.warning(
                "watchlist_tracking_saturated",
                address=event.destination,
                tracked=len(state),
                limit=config.watchlist_max_tracked,
            )
            return

        state.set(event.destination, next_hop)
        logger.debug(
            "watchlist_taint_propagated",
            source=event.origin,
            address=event.destination,
            hop=next_hop,
            event_id=event.id,
        )

    @staticmethod
    def _describe(event: ChainEvent, origin_hop: int | None, destination_hop: int | None) -> str:
        parts = []
        if origin_hop is not None:
            parts.append(_label("sender", event.origin, origin_hop))
        if destination_hop is not None:
            parts.append(_label("recipient", event.destination, destination_hop))
        return "; ".join(parts)


def _label(role: str, address: str | None, hop: int) -> str:
    if hop == 0:
        return f"Watchlisted {role} {address}"
    return f"{role.capitalize()} {address} received funds {hop} hop(s) from a watchlisted address"
