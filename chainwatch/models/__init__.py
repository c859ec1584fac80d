"""Chainwatch data models."""

from chainwatch.models.base import ChainwatchModel, Severity, normalize_address, stable_id
from chainwatch.models.delivery import DeliveryTarget, FailedDelivery, TargetKind
from chainwatch.models.events import ChainEvent, EventKind, parse_quantity
from chainwatch.models.findings import HEALTH_RULE_ID, Finding, FindingKind

__all__ = [
    "ChainwatchModel",
    "Severity",
    "normalize_address",
    "stable_id",
    "ChainEvent",
    "EventKind",
    "parse_quantity",
    "Finding",
    "FindingKind",
    "HEALTH_RULE_ID",
    "DeliveryTarget",
    "FailedDelivery",
    "TargetKind",
]
