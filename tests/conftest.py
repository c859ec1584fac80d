"""
Chainwatch - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from chainwatch.config import MonitorConfig, Settings, build_monitor_config
from chainwatch.kernel.evaluation import EvaluationEngine
from chainwatch.models.events import ChainEvent
from chainwatch.rules.registry import build_rule_registry

WATCHED = "0x00000000000000000000000000000000000000aa"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"

FIXED_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def config_data() -> dict[str, Any]:
    """Minimal complete detection configuration."""
    return {
        "large_transfer_threshold": 10000,
        "anomaly_window_size": 4,
        "anomaly_z_threshold": 3.0,
        "watchlist_addresses": [WATCHED],
        "max_hop_count": 2,
    }


@pytest.fixture
def make_config(config_data: dict[str, Any]) -> Callable[..., MonitorConfig]:
    """Factory building a MonitorConfig with overrides."""

    def _make(**overrides: Any) -> MonitorConfig:
        return build_monitor_config({**config_data, **overrides})

    return _make


@pytest.fixture
def config(make_config: Callable[..., MonitorConfig]) -> MonitorConfig:
    return make_config()


@pytest.fixture
def settings() -> Settings:
    """Runtime settings with fast retries and small queues."""
    return Settings(
        _env_file=None,
        event_queue_capacity=4,
        finding_queue_capacity=16,
        shutdown_timeout=2.0,
        delivery_max_attempts=3,
        delivery_base_delay=0.0,
        delivery_max_delay=0.0,
    )


# =============================================================================
# Events
# =============================================================================


@pytest.fixture
def make_event() -> Callable[..., ChainEvent]:
    """Factory for ChainEvents with sequential ordering keys."""
    counter = {"n": 0}

    def _make(**fields: Any) -> ChainEvent:
        n = counter["n"]
        counter["n"] += 1
        data: dict[str, Any] = {
            "id": f"0xtx{n:04d}",
            "origin": ALICE,
            "destination": BOB,
            "value": 0,
            "block_number": 100 + n,
            "position": 0,
        }
        data.update(fields)
        return ChainEvent(**data)

    return _make


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_TIME


@pytest.fixture
def make_engine(fixed_clock: Callable[[], datetime]) -> Callable[[MonitorConfig], EvaluationEngine]:
    """Factory for an engine with the default rule set and a fixed clock."""

    def _make(config: MonitorConfig) -> EvaluationEngine:
        return EvaluationEngine(build_rule_registry(config), config, clock=fixed_clock)

    return _make
