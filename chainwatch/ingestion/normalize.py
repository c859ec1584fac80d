"""
Record Normalization

Turns raw source records into canonical ChainEvents. Two shapes are
accepted:

- canonical keys: id, origin, destination, value, block_number, position,
  payload, kind, timestamp, chain_id
- JSON-RPC keys: hash, from, to, value (hex), blockNumber (hex),
  transactionIndex (hex), input, and for call traces transactionHash +
  traceAddress (+ action.from / action.to / action.value)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from chainwatch.errors import MalformedEvent
from chainwatch.models.events import ChainEvent, EventKind, parse_quantity


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and not value.lower().startswith("0x") and not value.isdigit():
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.fromtimestamp(parse_quantity(value), tz=UTC)


def _flatten_trace(record: dict[str, Any]) -> dict[str, Any]:
    """Lift Parity/OpenEthereum style trace fields to the top level."""
    action = record.get("action") or {}
    if not isinstance(action, dict):
        raise MalformedEvent("trace action must be an object", record)
    flat = dict(record)
    for source, target in (("from", "from"), ("to", "to"), ("value", "value"), ("input", "input")):
        if action.get(source) is not None and flat.get(target) is None:
            flat[target] = action[source]
    trace_address = record.get("traceAddress") or []
    if not isinstance(trace_address, list):
        raise MalformedEvent("traceAddress must be a list", record)
    tx_hash = record.get("transactionHash") or record.get("hash")
    if tx_hash is not None:
        suffix = "-".join(str(i) for i in trace_address) or "root"
        flat["id"] = f"{tx_hash}:{suffix}"
    flat["kind"] = EventKind.TRACE.value
    return flat


def normalize_record(record: Any) -> ChainEvent:
    """
    Normalize one raw record.

    Raises:
        MalformedEvent: if the record cannot be turned into a ChainEvent
    """
    if isinstance(record, ChainEvent):
        return record
    if not isinstance(record, dict):
        raise MalformedEvent(f"expected an object, got {type(record).__name__}", record)

    try:
        if "traceAddress" in record or "action" in record:
            record = _flatten_trace(record)
        value = _first(record, "value")
        chain_id = _first(record, "chain_id", "chainId")
        fields = {
            "id": _first(record, "id", "hash"),
            "origin": _first(record, "origin", "from"),
            "destination": _first(record, "destination", "to"),
            "value": 0 if value is None else value,
            "block_number": _first(record, "block_number", "blockNumber"),
            "position": _first(record, "position", "transactionIndex", "transactionPosition") or 0,
            "payload": _first(record, "payload", "input"),
            "kind": record.get("kind") or EventKind.TRANSACTION.value,
            "timestamp": _parse_timestamp(record.get("timestamp")),
            "chain_id": None if chain_id is None else parse_quantity(chain_id),
        }
        if fields["id"] is None:
            raise MalformedEvent("missing id/hash", record)
        if fields["block_number"] is None:
            raise MalformedEvent("missing block number", record)
        return ChainEvent.model_validate(fields)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise MalformedEvent(f"{field}: {first.get('msg')}", record) from e
    except (TypeError, ValueError, OverflowError, OSError) as e:
        # fromtimestamp rejects values outside the platform time_t range
        raise MalformedEvent(str(e), record) from e
