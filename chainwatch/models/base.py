"""
Base Models and Common Types

Foundation classes for all Chainwatch models: the pydantic base
configuration, the severity scale and address helpers.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class ChainwatchModel(BaseModel):
    """Base model for all Chainwatch records. Records are immutable."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class Severity(str, Enum):
    """
    Ordered severity scale: INFO < LOW < MEDIUM < HIGH < CRITICAL.

    Members compare by rank, not alphabetically.
    """

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def lowered(self, steps: int = 1) -> Severity:
        """Return the severity `steps` levels lower, floored at INFO."""
        return _SEVERITY_ORDER[max(self.rank - steps, 0)]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_ORDER: list[Severity] = [
    Severity.INFO,
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


def normalize_address(value: Any) -> str | None:
    """Lowercase and strip an address; empty values become None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"address must be a string, got {type(value).__name__}")
    address = value.strip().lower()
    return address or None


def stable_id(*parts: Any, prefix: str = "") -> str:
    """Deterministic identifier derived from its parts."""
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode()).hexdigest()[:16]
    return f"{prefix}{digest}"
