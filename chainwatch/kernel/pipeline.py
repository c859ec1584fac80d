"""
Monitor Pipeline

Wires ingestion, evaluation and delivery together:

    source -> IngestionAdapter -> [event queue] -> EvaluationEngine
           -> [finding queue] -> AlertDispatcher -> sinks

Three tasks run concurrently. The event queue is bounded and the producer
blocks when it is full, so no event is ever dropped for lack of room.
Findings are handed to delivery through their own queue so a slow sink
never stalls evaluation.

Shutdown is cooperative: request_shutdown() stops the adapter from pulling
new records, every queued event is still evaluated, every pending finding
is flushed to the sinks, then run() returns.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

import structlog

from chainwatch.config import MonitorConfig, Settings, get_settings
from chainwatch.errors import ChainwatchError
from chainwatch.ingestion.adapter import IngestionAdapter
from chainwatch.ingestion.sources import EventSource
from chainwatch.kernel.evaluation import Clock, EvaluationEngine
from chainwatch.models.delivery import TargetKind
from chainwatch.models.events import ChainEvent
from chainwatch.models.findings import Finding
from chainwatch.rules.registry import build_rule_registry
from chainwatch.services.dispatcher import AlertDispatcher, RetryPolicy
from chainwatch.services.sinks import FindingSink, default_sinks

logger = structlog.get_logger(__name__)


class MonitorPipeline:
    """Single evaluation path with producer/consumer handoff at both ends."""

    def __init__(
        self,
        adapter: IngestionAdapter,
        engine: EvaluationEngine,
        dispatcher: AlertDispatcher,
        event_queue_capacity: int = 1000,
        finding_queue_capacity: int = 10000,
        shutdown_timeout: float = 30.0,
    ) -> None:
        self.adapter = adapter
        self.engine = engine
        self.dispatcher = dispatcher
        self.shutdown_timeout = shutdown_timeout

        # None marks the end of each stream
        self._events: asyncio.Queue[ChainEvent | None] = asyncio.Queue(maxsize=event_queue_capacity)
        self._findings: asyncio.Queue[Finding | None] = asyncio.Queue(maxsize=finding_queue_capacity)
        self._health_backlog: deque[Finding] = deque()
        self._shutdown = asyncio.Event()
        self._running = False
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None
        self._findings_dispatched = 0

        self.adapter.set_report_handler(self._report)
        self.dispatcher.set_health_handler(self._defer_health)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._running

    def request_shutdown(self) -> None:
        """Stop ingesting; queued events and pending findings are still processed."""
        if not self._shutdown.is_set():
            logger.info("pipeline_shutdown_requested", queued_events=self._events.qsize())
        self._shutdown.set()
        self.adapter.stop()

    async def run(self) -> dict[str, Any]:
        """
        Run until the source is exhausted or shutdown is requested.

        Returns:
            Final pipeline statistics
        """
        if self._running:
            raise RuntimeError("pipeline is already running")
        self._running = True
        self._started_at = datetime.now(UTC)

        await self.dispatcher.start()
        producer = asyncio.create_task(self._produce(), name="chainwatch-ingest")
        evaluator = asyncio.create_task(self._evaluate(), name="chainwatch-evaluate")
        deliverer = asyncio.create_task(self._deliver(), name="chainwatch-deliver")
        logger.info("pipeline_started", source=self.adapter.source.name)

        ingest_error: BaseException | None = None
        try:
            ingest_error = await self._await_producer(producer)
            await self._events.put(None)
            await evaluator
            await self._findings.put(None)
            await deliverer
        finally:
            for task in (producer, evaluator, deliverer):
                if not task.done():
                    task.cancel()
            await asyncio.gather(producer, evaluator, deliverer, return_exceptions=True)
            await self.dispatcher.aclose()
            self._running = False
            self._finished_at = datetime.now(UTC)

        stats = self.get_stats()
        logger.info("pipeline_stopped", **stats["evaluation"])
        if ingest_error is not None:
            raise ingest_error
        return stats

    async def _await_producer(self, producer: asyncio.Task[None]) -> BaseException | None:
        """Wait for ingestion to end; bound the wait once shutdown is requested."""
        shutdown_wait = asyncio.create_task(self._shutdown.wait())
        try:
            await asyncio.wait({producer, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
            if not producer.done():
                try:
                    await asyncio.wait_for(asyncio.shield(producer), timeout=self.shutdown_timeout)
                except asyncio.TimeoutError:
                    logger.warning("ingestion_stop_timeout", timeout=self.shutdown_timeout)
                    producer.cancel()
        finally:
            shutdown_wait.cancel()

        try:
            await producer
        except asyncio.CancelledError:
            return None
        except Exception as e:
            logger.error("ingestion_failed", error=repr(e), exc_info=True)
            return e
        return None

    # =========================================================================
    # Tasks
    # =========================================================================

    async def _produce(self) -> None:
        async with aclosing(self.adapter.events()) as events:
            async for event in events:
                # Backpressure: blocks while the evaluator is behind
                await self._events.put(event)
                if self._shutdown.is_set():
                    break

    async def _evaluate(self) -> None:
        while True:
            event = await self._events.get()
            try:
                if event is None:
                    break
                result = self.engine.evaluate(event)
                for finding in result.findings:
                    await self._findings.put(finding)
            finally:
                self._events.task_done()

    async def _deliver(self) -> None:
        while True:
            finding = await self._findings.get()
            try:
                if finding is None:
                    break
                await self._dispatch(finding)
                while self._health_backlog:
                    await self._dispatch(self._health_backlog.popleft())
            finally:
                self._findings.task_done()

    async def _dispatch(self, finding: Finding) -> None:
        try:
            await self.dispatcher.dispatch(finding)
        except Exception as e:
            logger.error("dispatch_failed", finding_id=finding.id, error=repr(e), exc_info=True)
        self._findings_dispatched += 1

    # =========================================================================
    # Health reporting
    # =========================================================================

    async def _report(self, error: ChainwatchError) -> None:
        await self._findings.put(Finding.from_error(error))

    async def _defer_health(self, finding: Finding) -> None:
        # Raised from inside the delivery task; queued locally to avoid
        # blocking on the queue that task drains.
        self._health_backlog.append(finding)

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        return {
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "finished_at": self._finished_at.isoformat() if self._finished_at else None,
            "running": self._running,
            "shutdown_requested": self._shutdown.is_set(),
            "queued_events": self._events.qsize(),
            "queued_findings": self._findings.qsize(),
            "findings_dispatched": self._findings_dispatched,
            "ingestion": self.adapter.get_stats(),
            "evaluation": self.engine.get_stats(),
            "delivery": self.dispatcher.get_stats(),
        }


def create_pipeline(
    source: EventSource,
    config: MonitorConfig,
    settings: Settings | None = None,
    sinks: dict[TargetKind, FindingSink] | None = None,
    clock: Clock | None = None,
) -> MonitorPipeline:
    """
    Assemble a pipeline from a validated configuration.

    Rule registration and configuration checks happen here, before any
    event is read.

    Raises:
        DuplicateRuleId: if two rules share an id
        ConfigurationError: if a rule's required setting is missing
    """
    settings = settings or get_settings()

    registry = build_rule_registry(config)
    engine = EvaluationEngine(registry, config, clock=clock)
    adapter = IngestionAdapter(source, policy=config.out_of_order_policy)
    dispatcher = AlertDispatcher(
        config.notification_targets,
        sinks=sinks or default_sinks(webhook_timeout=settings.webhook_timeout),
        retry=RetryPolicy(
            max_attempts=settings.delivery_max_attempts,
            base_delay=settings.delivery_base_delay,
            max_delay=settings.delivery_max_delay,
        ),
    )
    return MonitorPipeline(
        adapter,
        engine,
        dispatcher,
        event_queue_capacity=settings.event_queue_capacity,
        finding_queue_capacity=settings.finding_queue_capacity,
        shutdown_timeout=settings.shutdown_timeout,
    )
