"""Chainwatch - Event Ingestion."""

from chainwatch.ingestion.adapter import IngestionAdapter, OutOfOrderPolicy
from chainwatch.ingestion.normalize import normalize_record
from chainwatch.ingestion.sources import (
    EventSource,
    IterableEventSource,
    JsonLinesEventSource,
    JsonRpcEventSource,
    RpcError,
)

__all__ = [
    "IngestionAdapter",
    "OutOfOrderPolicy",
    "normalize_record",
    "EventSource",
    "IterableEventSource",
    "JsonLinesEventSource",
    "JsonRpcEventSource",
    "RpcError",
]
