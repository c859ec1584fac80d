"""
Event Ingestion Adapter

Normalizes raw source records into ChainEvents and enforces delivery in
non-decreasing (block_number, position) order.

An event older than the last accepted one produces exactly one
OutOfOrderEvent report. Depending on policy it is then dropped, or parked
in a late-events buffer for manual replay; it is never delivered out of
order. Records that fail normalization are reported as MalformedEvent and
skipped. Neither condition stops the stream.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from enum import Enum
from typing import Any

import structlog

from chainwatch.errors import ChainwatchError, MalformedEvent, OutOfOrderEvent
from chainwatch.ingestion.normalize import normalize_record
from chainwatch.ingestion.sources import EventSource
from chainwatch.models.events import ChainEvent
from chainwatch.monitoring.metrics import IngestionMetrics

logger = structlog.get_logger(__name__)

ReportHandler = Callable[[ChainwatchError], Awaitable[None]]


class OutOfOrderPolicy(str, Enum):
    """What happens to an event that violates ordering after it is reported."""

    DROP = "drop"
    REBUFFER = "rebuffer"


class IngestionAdapter:
    """Turns an EventSource into an ordered async stream of ChainEvents."""

    def __init__(
        self,
        source: EventSource,
        policy: OutOfOrderPolicy | str = OutOfOrderPolicy.DROP,
        on_report: ReportHandler | None = None,
        max_late_events: int = 10000,
        max_reports: int = 1000,
    ) -> None:
        self.source = source
        self.policy = OutOfOrderPolicy(policy)
        self._on_report = on_report
        self._stop = asyncio.Event()
        self._last_key: tuple[int, int] | None = None
        self._late_events: deque[ChainEvent] = deque(maxlen=max_late_events)
        self._reports: deque[ChainwatchError] = deque(maxlen=max_reports)
        self.metrics = IngestionMetrics()

    @property
    def last_key(self) -> tuple[int, int] | None:
        return self._last_key

    @property
    def reports(self) -> list[ChainwatchError]:
        """Recent non-fatal ingestion reports, oldest first."""
        return list(self._reports)

    def set_report_handler(self, handler: ReportHandler | None) -> None:
        self._on_report = handler

    def stop(self) -> None:
        """Stop pulling new records from the source."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def drain_late_events(self) -> list[ChainEvent]:
        """Remove and return events parked by the rebuffer policy."""
        events = list(self._late_events)
        self._late_events.clear()
        return events

    async def _report(self, error: ChainwatchError) -> None:
        self._reports.append(error)
        logger.warning("ingestion_anomaly", **error.to_dict())
        if self._on_report is not None:
            await self._on_report(error)

    async def events(self) -> AsyncIterator[ChainEvent]:
        """Yield normalized events in non-decreasing ordering-key order."""
        logger.info("ingestion_started", source=self.source.name, policy=self.policy.value)
        try:
            async with aclosing(self.source.records(self._stop)) as records:
                async for record in records:
                    event = await self._accept(record)
                    if event is not None:
                        yield event
                    if self._stop.is_set():
                        break
        finally:
            await self.source.aclose()
            logger.info("ingestion_stopped", source=self.source.name, **self.metrics.to_dict())

    async def _accept(self, record: Any) -> ChainEvent | None:
        try:
            event = normalize_record(record)
        except MalformedEvent as e:
            self.metrics.malformed.inc()
            await self._report(e)
            return None

        key = event.ordering_key
        if self._last_key is not None and key < self._last_key:
            self.metrics.out_of_order.inc()
            await self._report(OutOfOrderEvent(event.id, key, self._last_key))
            if self.policy == OutOfOrderPolicy.REBUFFER:
                self._late_events.append(event)
            return None

        self._last_key = key
        self.metrics.events_accepted.inc()
        return event

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.metrics.to_dict(),
            "last_key": list(self._last_key) if self._last_key else None,
            "late_events": len(self._late_events),
            "policy": self.policy.value,
        }
