"""
Tests for chainwatch.monitoring.logging and metrics.

Tests cover:
- Custom processors (timestamp, service info, sanitization)
- Logging configuration
- Context management (bind, unbind, clear)
- Performance logging (log_duration)
- Counters and timings
"""

from __future__ import annotations

import logging
from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog

from chainwatch import __version__
from chainwatch.monitoring.logging import (
    add_service_info,
    add_timestamp,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_duration,
    sanitize_sensitive_data,
    unbind_context,
)
from chainwatch.monitoring.metrics import Counter, EvaluationMetrics, Timing


# =============================================================================
# Processors
# =============================================================================


class TestProcessors:
    """Tests for custom structlog processors."""

    def test_adds_timestamp(self) -> None:
        result = add_timestamp(None, "info", {"event": "test"})  # type: ignore[arg-type]

        assert "T" in result["timestamp"]
        assert result["timestamp"].endswith("+00:00")

    def test_adds_service_info(self) -> None:
        result = add_service_info(None, "info", {"event": "test", "custom": 1})  # type: ignore[arg-type]

        assert result["service"] == "chainwatch"
        assert result["version"] == __version__
        assert result["custom"] == 1

    def test_redacts_sensitive_keys(self) -> None:
        event_dict: dict[str, Any] = {
            "event": "dispatcher_started",
            "secret": "s3cret",
            "headers": {"Authorization": "Bearer abc", "X-Chainwatch-Signature": "sha256=ff"},
            "target": "hook",
        }

        result = sanitize_sensitive_data(None, "info", event_dict)  # type: ignore[arg-type]

        assert result["secret"] == "[REDACTED]"
        assert result["headers"]["Authorization"] == "[REDACTED]"
        assert result["headers"]["X-Chainwatch-Signature"] == "[REDACTED]"
        assert result["target"] == "hook"

    def test_redacts_rpc_url_keys(self) -> None:
        event_dict: dict[str, Any] = {
            "event": "rpc_poll_failed",
            "url": "https://mainnet.example.io/v3/0123456789abcdef0123",
        }

        result = sanitize_sensitive_data(None, "info", event_dict)  # type: ignore[arg-type]

        assert result["url"] == "https://mainnet.example.io/v3/[REDACTED]"

    def test_leaves_lists_and_numbers(self) -> None:
        result = sanitize_sensitive_data(None, "info", {"event": "e", "targets": ["log"], "n": 3})  # type: ignore[arg-type]

        assert result["targets"] == ["log"]
        assert result["n"] == 3


# =============================================================================
# Configuration and context
# =============================================================================


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.mark.parametrize("json_output", [True, False])
    def test_configures(self, json_output: bool) -> None:
        configure_logging(level="DEBUG", json_output=json_output)

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        get_logger("test").info("configured", json=json_output)

    def test_minimal(self) -> None:
        configure_logging(
            level="WARNING",
            include_timestamps=False,
            include_service_info=False,
            sanitize_logs=False,
        )

        assert logging.getLogger().level == logging.WARNING


class TestContext:
    """Tests for contextvars helpers."""

    def teardown_method(self) -> None:
        clear_context()

    def test_bind_and_unbind(self) -> None:
        bind_context(run_id="r1", source="jsonl")
        assert structlog.contextvars.get_contextvars() == {"run_id": "r1", "source": "jsonl"}

        unbind_context("source")
        assert structlog.contextvars.get_contextvars() == {"run_id": "r1"}

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestLogDuration:
    """Tests for log_duration."""

    def test_logs_success(self) -> None:
        logger = MagicMock()

        with log_duration(logger, "replay", source="events.jsonl"):
            pass

        logger.info.assert_called_once()
        args, kwargs = logger.info.call_args
        assert kwargs["source"] == "events.jsonl"
        assert kwargs["duration_ms"] >= 0

    def test_logs_failure_and_reraises(self) -> None:
        logger = MagicMock()

        with pytest.raises(RuntimeError):
            with log_duration(logger, "replay"):
                raise RuntimeError("bad")

        logger.error.assert_called_once()


# =============================================================================
# Metrics
# =============================================================================


class TestMetrics:
    """Tests for in-process counters."""

    def test_labelled_counter(self) -> None:
        counter = Counter("findings", "Findings", ["rule_id", "severity"])

        counter.inc(rule_id="self-call", severity="high")
        counter.inc(rule_id="self-call", severity="high")
        counter.inc(rule_id="watchlist", severity="medium")

        assert counter.get(rule_id="self-call", severity="high") == 2
        assert counter.total == 3
        assert counter.as_dict() == {"self-call,high": 2, "watchlist,medium": 1}

    def test_cardinality_limit(self) -> None:
        counter = Counter("c", "c", ["k"], _max_cardinality=2)

        for i in range(5):
            counter.inc(k=str(i))

        assert counter.total == 2

    def test_timing_mean(self) -> None:
        timing = Timing("t", max_samples=2)

        for value in (1.0, 3.0, 5.0):
            timing.record(value)

        assert timing.mean == 4.0

    def test_evaluation_snapshot(self) -> None:
        metrics = EvaluationMetrics()
        metrics.events_evaluated.inc()

        snapshot = metrics.to_dict()

        assert snapshot["events_evaluated"] == 1
        assert snapshot["findings_total"] == 0
