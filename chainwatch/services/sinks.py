"""
Finding Sinks

Transports that hand a finding to one delivery target. A sink either
returns normally (delivered) or raises (this attempt failed); retry and
backoff are the dispatcher's job.

- LogSink: structured log line per finding
- MemorySink: queryable in-process store
- WebhookSink: HTTP POST with an HMAC-SHA256 signature header
"""

from __future__ import annotations

import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from collections import deque
from typing import Any

import httpx
import structlog

from chainwatch import __version__
from chainwatch.models.base import Severity
from chainwatch.models.delivery import DeliveryTarget, TargetKind
from chainwatch.models.findings import Finding

logger = structlog.get_logger(__name__)


class FindingSink(ABC):
    """Base class for delivery transports."""

    kind: TargetKind

    async def start(self) -> None:
        return None

    async def aclose(self) -> None:
        return None

    @abstractmethod
    async def deliver(self, finding: Finding, target: DeliveryTarget) -> None:
        """Deliver one finding. Raise on failure."""


_LOG_LEVELS: dict[Severity, str] = {
    Severity.INFO: "info",
    Severity.LOW: "info",
    Severity.MEDIUM: "warning",
    Severity.HIGH: "warning",
    Severity.CRITICAL: "critical",
}


class LogSink(FindingSink):
    """Writes each finding as one structured log entry."""

    kind = TargetKind.LOG

    async def deliver(self, finding: Finding, target: DeliveryTarget) -> None:
        log = getattr(logger, _LOG_LEVELS[finding.severity])
        log(
            "finding",
            target=target.name,
            finding_id=finding.id,
            kind=finding.kind.value,
            rule_id=finding.rule_id,
            severity=finding.severity.value,
            event_id=finding.event_id,
            description=finding.description,
            error_type=finding.error_type,
        )


class MemorySink(FindingSink):
    """Keeps delivered findings in memory, newest last."""

    kind = TargetKind.MEMORY

    def __init__(self, max_findings: int = 10000) -> None:
        self._delivered: deque[tuple[str, Finding]] = deque(maxlen=max_findings)

    async def deliver(self, finding: Finding, target: DeliveryTarget) -> None:
        self._delivered.append((target.name, finding))

    def findings(
        self,
        target: str | None = None,
        min_severity: Severity | None = None,
        include_health: bool = True,
    ) -> list[Finding]:
        """Delivered findings with optional filters."""
        result = [f for name, f in self._delivered if target is None or name == target]
        if min_severity is not None:
            result = [f for f in result if f.is_health or f.severity >= min_severity]
        if not include_health:
            result = [f for f in result if not f.is_health]
        return result

    def get(self, finding_id: str) -> Finding | None:
        for _, finding in self._delivered:
            if finding.id == finding_id:
                return finding
        return None

    def clear(self) -> None:
        self._delivered.clear()

    def __len__(self) -> int:
        return len(self._delivered)


class WebhookSink(FindingSink):
    """Posts findings as JSON to a target's URL."""

    kind = TargetKind.WEBHOOK

    def __init__(
        self,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
            )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def sign_payload(body: bytes, secret: str) -> str:
        """Create HMAC-SHA256 signature for a payload."""
        signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return f"sha256={signature}"

    def build_request(self, finding: Finding, target: DeliveryTarget) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(
            {"target": target.name, "finding": finding.to_dict()},
            sort_keys=True,
            separators=(",", ":"),
        ).encode()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"chainwatch/{__version__}",
            "X-Chainwatch-Finding": finding.id,
            "X-Chainwatch-Kind": finding.kind.value,
            "X-Chainwatch-Severity": finding.severity.value,
        }
        if target.secret:
            headers["X-Chainwatch-Signature"] = self.sign_payload(body, target.secret)
        return body, headers

    async def deliver(self, finding: Finding, target: DeliveryTarget) -> None:
        if self._client is None:
            await self.start()
        assert self._client is not None
        if not target.url:
            raise ValueError(f"webhook target '{target.name}' has no url")

        body, headers = self.build_request(finding, target)
        response = await self._client.post(target.url, content=body, headers=headers)
        response.raise_for_status()


def default_sinks(webhook_timeout: float = 10.0) -> dict[TargetKind, FindingSink]:
    """One sink per target kind."""
    return {
        TargetKind.LOG: LogSink(),
        TargetKind.MEMORY: MemorySink(),
        TargetKind.WEBHOOK: WebhookSink(timeout=webhook_timeout),
    }


def describe_sinks(sinks: dict[TargetKind, FindingSink]) -> dict[str, Any]:
    return {kind.value: type(sink).__name__ for kind, sink in sinks.items()}
