"""
Tests for finding sinks.

Tests cover:
- MemorySink storage and queries
- WebhookSink payload, headers and HMAC signature
- WebhookSink failure on non-2xx responses
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import UTC, datetime

import httpx
import pytest

from chainwatch.errors import OutOfOrderEvent
from chainwatch.models.base import Severity
from chainwatch.models.delivery import DeliveryTarget, TargetKind
from chainwatch.models.findings import Finding
from chainwatch.services.sinks import LogSink, MemorySink, WebhookSink, default_sinks, describe_sinks

NOW = datetime(2024, 1, 1, tzinfo=UTC)


def detection(severity: Severity = Severity.HIGH) -> Finding:
    return Finding.for_event(
        "large-transfer", "0x1", 0, severity, "Large transfer", NOW, {"value": str(2**70)}
    )


class TestMemorySink:
    """Tests for MemorySink."""

    @pytest.mark.asyncio
    async def test_query(self) -> None:
        sink = MemorySink()
        target = DeliveryTarget(name="mem", kind=TargetKind.MEMORY)
        low = detection(Severity.LOW)
        health = Finding.from_error(OutOfOrderEvent("0x2", (1, 0), (2, 0)))

        await sink.deliver(low, target)
        await sink.deliver(detection(Severity.CRITICAL), target)
        await sink.deliver(health, target)

        assert len(sink) == 3
        assert len(sink.findings(min_severity=Severity.HIGH)) == 2
        assert len(sink.findings(include_health=False)) == 2
        assert sink.findings(target="other") == []
        assert sink.get(health.id) == health

        sink.clear()
        assert len(sink) == 0


class TestLogSink:
    """Tests for LogSink."""

    @pytest.mark.asyncio
    async def test_deliver_never_raises(self) -> None:
        for severity in Severity:
            await LogSink().deliver(detection(severity), DeliveryTarget(name="log"))


class TestWebhookSink:
    """Tests for WebhookSink."""

    def test_sign_payload(self) -> None:
        body = b'{"a":1}'
        expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

        assert WebhookSink.sign_payload(body, "s3cret") == f"sha256={expected}"

    def test_build_request(self) -> None:
        finding = detection()
        target = DeliveryTarget(name="hook", kind=TargetKind.WEBHOOK, url="http://hook", secret="s3cret")

        body, headers = WebhookSink().build_request(finding, target)

        payload = json.loads(body)
        assert payload["target"] == "hook"
        assert payload["finding"]["id"] == finding.id
        assert payload["finding"]["metadata"]["value"] == str(2**70)
        assert headers["X-Chainwatch-Finding"] == finding.id
        assert headers["X-Chainwatch-Severity"] == "high"
        assert headers["X-Chainwatch-Kind"] == "detection"
        assert headers["X-Chainwatch-Signature"] == WebhookSink.sign_payload(body, "s3cret")

    def test_unsigned_without_secret(self) -> None:
        target = DeliveryTarget(name="hook", kind=TargetKind.WEBHOOK, url="http://hook")

        _, headers = WebhookSink().build_request(detection(), target)

        assert "X-Chainwatch-Signature" not in headers

    @pytest.mark.asyncio
    async def test_deliver_posts_signed_body(self) -> None:
        received: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookSink(client=client)
        target = DeliveryTarget(name="hook", kind=TargetKind.WEBHOOK, url="http://hook/alerts", secret="k")

        await sink.deliver(detection(), target)

        (request,) = received
        assert request.method == "POST"
        assert str(request.url) == "http://hook/alerts"
        assert request.headers["X-Chainwatch-Signature"] == WebhookSink.sign_payload(request.content, "k")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_deliver_raises_on_error_status(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        sink = WebhookSink(client=client)
        target = DeliveryTarget(name="hook", kind=TargetKind.WEBHOOK, url="http://hook")

        with pytest.raises(httpx.HTTPStatusError):
            await sink.deliver(detection(), target)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_lifecycle(self) -> None:
        sink = WebhookSink(timeout=1.0)

        await sink.start()
        assert sink._client is not None
        await sink.aclose()
        assert sink._client is None


def test_default_sinks_cover_every_kind() -> None:
    sinks = default_sinks()

    assert set(sinks) == set(TargetKind)
    assert describe_sinks(sinks) == {"log": "LogSink", "memory": "MemorySink", "webhook": "WebhookSink"}
