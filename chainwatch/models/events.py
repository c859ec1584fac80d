"""
Event Models

Canonical, immutable representation of one observed on-chain action:
a top-level transaction or an internal call trace within it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from chainwatch.models.base import ChainwatchModel, normalize_address


class EventKind(str, Enum):
    """Granularity of an observed action."""

    TRANSACTION = "transaction"
    TRACE = "trace"


def parse_quantity(value: Any) -> int:
    """
    Parse an arbitrary-precision integer amount.

    Accepts ints, decimal strings and 0x-prefixed hex quantities (the
    JSON-RPC encoding). Floats are rejected since they cannot carry
    token amounts without losing precision.
    """
    if isinstance(value, bool):
        raise ValueError("boolean is not a quantity")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16) if len(text) > 2 else 0
        if text.isdigit():
            return int(text)
        raise ValueError(f"not an integer quantity: {value!r}")
    raise ValueError(f"quantity must be an int or string, got {type(value).__name__}")


class ChainEvent(ChainwatchModel):
    """
    One observed on-chain action.

    Ordering key is (block_number, position); sources must deliver events
    in non-decreasing ordering-key order.
    """

    id: str = Field(min_length=1, description="Transaction hash or hash:trace_address")
    origin: str = Field(min_length=1, description="Sender address")
    destination: str | None = Field(default=None, description="Recipient; None for contract creation")
    value: int = Field(ge=0, description="Amount transferred in the smallest unit")
    block_number: int = Field(ge=0)
    position: int = Field(default=0, ge=0, description="Index within the block")
    payload: str | None = Field(default=None, description="Call data reference")
    kind: EventKind = EventKind.TRANSACTION
    timestamp: datetime | None = None
    chain_id: int | None = None

    @field_validator("origin", "destination", mode="before")
    @classmethod
    def _normalize_address(cls, v: Any) -> str | None:
        return normalize_address(v)

    @field_validator("value", "block_number", "position", mode="before")
    @classmethod
    def _parse_quantity(cls, v: Any) -> int:
        return parse_quantity(v)

    @property
    def ordering_key(self) -> tuple[int, int]:
        return (self.block_number, self.position)

    @property
    def is_self_call(self) -> bool:
        return self.destination is not None and self.origin == self.destination

    def touches(self, address: str) -> bool:
        """Whether the address is either side of this event."""
        return address in (self.origin, self.destination)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "origin": self.origin,
            "destination": self.destination,
            "value": str(self.value),
            "block_number": self.block_number,
            "position": self.position,
            "payload": self.payload,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "chain_id": self.chain_id,
        }
