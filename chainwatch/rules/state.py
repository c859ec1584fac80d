"""
Rolling State

Per-rule namespaces of per-entity state. The evaluation engine owns one
RuleState per registered rule and hands each rule only its own namespace.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator
from decimal import Decimal, localcontext
from typing import Any, Literal, TypeVar

T = TypeVar("T")

# Enough digits for 256-bit token amounts and their squares
_PRECISION = 160


class RuleState:
    """Mutable entity-keyed state private to one rule."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        self._entities: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._entities.get(key, default)

    def get_or_create(self, key: str, factory: Callable[[], T]) -> T:
        """Return the entity's state, creating it on first access."""
        if key not in self._entities:
            self._entities[key] = factory()
        entity: T = self._entities[key]
        return entity

    def set(self, key: str, value: Any) -> None:
        self._entities[key] = value

    def discard(self, key: str) -> None:
        self._entities.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(self._entities)

    def items(self) -> Iterator[tuple[str, Any]]:
        return iter(self._entities.items())

    def clear(self) -> None:
        self._entities.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __repr__(self) -> str:
        return f"<RuleState:{self.rule_id} entities={len(self._entities)}>"


class SlidingWindow:
    """
    Bounded FIFO window of integer observations.

    Once full, each append evicts the oldest value.
    """

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._values: deque[int] = deque(maxlen=max_size)

    def append(self, value: int) -> int | None:
        """Add a value; return the evicted value if the window was full."""
        evicted = self._values[0] if len(self._values) == self.max_size else None
        self._values.append(value)
        return evicted

    def values(self) -> list[int]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def mean_and_std(
        self,
        mode: Literal["population", "sample"] = "population",
    ) -> tuple[Decimal, Decimal] | None:
        """
        Exact mean and standard deviation of the window.

        Returns None when the deviation is undefined or zero: fewer than two
        samples, or all samples equal.
        """
        n = len(self._values)
        if n < 2:
            return None

        with localcontext() as ctx:
            ctx.prec = _PRECISION
            mean = Decimal(sum(self._values)) / n
            squares = sum((Decimal(v) - mean) ** 2 for v in self._values)
            divisor = n if mode == "population" else n - 1
            variance = squares / divisor
            if variance == 0:
                return None
            return mean, variance.sqrt()

    def z_score(
        self,
        value: int,
        mode: Literal["population", "sample"] = "population",
    ) -> Decimal | None:
        """Standardized score of `value` against the current contents."""
        stats = self.mean_and_std(mode)
        if stats is None:
            return None
        mean, std = stats
        return self.standardize(value, mean, std)

    @staticmethod
    def standardize(value: int, mean: Decimal, std: Decimal) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return (Decimal(value) - mean) / std

    def __repr__(self) -> str:
        return f"<SlidingWindow size={len(self._values)}/{self.max_size}>"
