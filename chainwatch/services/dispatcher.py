"""
Alert Dispatcher

Delivers each finding to every configured target that accepts it, through
the sink registered for the target's kind.

Failed attempts are retried with bounded exponential backoff:

    delay(attempt) = min(base_delay * 2 ** (attempt - 1), max_delay)

After max_attempts the delivery is recorded as a SinkDeliveryError: the
finding is kept in the failed-delivery store (queryable and retryable),
logged, and reported as a pipeline-health finding.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from chainwatch.errors import SinkDeliveryError
from chainwatch.models.base import Severity
from chainwatch.models.delivery import DeliveryTarget, FailedDelivery, TargetKind
from chainwatch.models.findings import Finding
from chainwatch.monitoring.metrics import DeliveryMetrics
from chainwatch.services.sinks import FindingSink, default_sinks, describe_sinks

logger = structlog.get_logger(__name__)

HealthHandler = Callable[[Finding], Awaitable[None]]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return float(min(self.base_delay * 2 ** (attempt - 1), self.max_delay))


class AlertDispatcher:
    """Fans findings out to delivery targets with retry."""

    def __init__(
        self,
        targets: Iterable[DeliveryTarget],
        sinks: Mapping[TargetKind, FindingSink] | None = None,
        retry: RetryPolicy | None = None,
        on_health: HealthHandler | None = None,
        sleep: Sleep = asyncio.sleep,
        max_failed: int = 10000,
    ) -> None:
        self.targets = list(targets)
        self.sinks: dict[TargetKind, FindingSink] = dict(sinks or default_sinks())
        self.retry = retry or RetryPolicy()
        self._on_health = on_health
        self._sleep = sleep
        self._failed: deque[FailedDelivery] = deque(maxlen=max_failed)
        self.metrics = DeliveryMetrics()

        for target in self.targets:
            if target.kind not in self.sinks:
                raise ValueError(f"no sink registered for target '{target.name}' ({target.kind.value})")

    async def start(self) -> None:
        for sink in self.sinks.values():
            await sink.start()
        logger.info(
            "dispatcher_started",
            targets=[t.name for t in self.targets],
            sinks=describe_sinks(self.sinks),
            max_attempts=self.retry.max_attempts,
        )

    async def aclose(self) -> None:
        for sink in self.sinks.values():
            await sink.aclose()
        logger.info("dispatcher_stopped", **self.metrics.to_dict())

    def set_health_handler(self, handler: HealthHandler | None) -> None:
        self._on_health = handler

    async def dispatch(self, finding: Finding) -> bool:
        """
        Deliver to every accepting target.

        Returns:
            True if every accepting target received the finding
        """
        delivered = True
        for target in self.targets:
            if not target.accepts(finding):
                continue
            if not await self._deliver(finding, target):
                delivered = False
        return delivered

    async def _deliver(self, finding: Finding, target: DeliveryTarget) -> bool:
        sink = self.sinks[target.kind]
        last_error = ""

        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                await sink.deliver(finding, target)
            except Exception as e:
                last_error = repr(e)
                if attempt < self.retry.max_attempts:
                    delay = self.retry.delay(attempt)
                    self.metrics.retries.inc(target=target.name)
                    logger.warning(
                        "delivery_retry",
                        target=target.name,
                        finding_id=finding.id,
                        attempt=attempt,
                        delay=delay,
                        error=last_error,
                    )
                    await self._sleep(delay)
                continue

            self.metrics.delivered.inc(target=target.name)
            if attempt > 1:
                logger.info("delivery_recovered", target=target.name, finding_id=finding.id, attempt=attempt)
            return True

        await self._record_failure(finding, target, last_error)
        return False

    async def _record_failure(self, finding: Finding, target: DeliveryTarget, last_error: str) -> None:
        error = SinkDeliveryError(finding.id, target.name, self.retry.max_attempts, last_error)
        self.metrics.failed.inc(target=target.name)
        self._failed.append(
            FailedDelivery(
                finding=finding,
                target=target.name,
                attempts=self.retry.max_attempts,
                last_error=last_error,
            )
        )
        logger.error("delivery_failed", finding=finding.to_dict(), **error.to_dict())

        # A failed health report about delivery is not reported again
        if self._on_health is not None and finding.error_type != error.error_type:
            await self._on_health(Finding.from_error(error, severity=Severity.MEDIUM))

    def get_failed(self, target: str | None = None) -> list[FailedDelivery]:
        """Findings whose delivery was exhausted, oldest first."""
        return [f for f in self._failed if target is None or f.target == target]

    async def retry_failed(self) -> int:
        """Re-attempt every failed delivery once more. Returns the number recovered."""
        pending = list(self._failed)
        self._failed.clear()
        recovered = 0
        targets = {t.name: t for t in self.targets}
        for failed in pending:
            target = targets.get(failed.target)
            if target is None:
                self._failed.append(failed)
                continue
            if await self._deliver(failed.finding, target):
                recovered += 1
        return recovered

    def get_stats(self) -> dict[str, Any]:
        return {**self.metrics.to_dict(), "failed_pending": len(self._failed)}
