"""
Chainwatch Configuration Management

Two layers:

- Settings: runtime knobs (logging, queue capacities, delivery retry policy,
  RPC endpoint) loaded with Pydantic Settings from the environment / .env.
- MonitorConfig: detection thresholds and notification targets. Loaded once
  at startup from a JSON file and the environment, validated, then frozen.
  Required keys have no defaults: a missing or malformed key fails closed
  with a ConfigurationError naming it.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chainwatch.errors import ConfigurationError
from chainwatch.models.base import Severity, normalize_address
from chainwatch.models.delivery import DeliveryTarget, TargetKind
from chainwatch.models.events import parse_quantity

logger = structlog.get_logger(__name__)

ENV_PREFIX = "CHAINWATCH_"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # LOGGING
    # ═══════════════════════════════════════════════════════════════
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool = Field(default=False, description="Emit JSON logs")

    # ═══════════════════════════════════════════════════════════════
    # PIPELINE
    # ═══════════════════════════════════════════════════════════════
    event_queue_capacity: int = Field(
        default=1000, ge=1, description="Bounded ingestion queue; producer blocks when full"
    )
    finding_queue_capacity: int = Field(
        default=10000, ge=1, description="Findings awaiting delivery"
    )
    shutdown_timeout: float = Field(default=30.0, gt=0, description="Seconds to drain on shutdown")

    # ═══════════════════════════════════════════════════════════════
    # DELIVERY
    # ═══════════════════════════════════════════════════════════════
    delivery_max_attempts: int = Field(default=5, ge=1, le=20, description="Attempts per target")
    delivery_base_delay: float = Field(default=0.5, ge=0, description="First backoff delay (s)")
    delivery_max_delay: float = Field(default=30.0, ge=0, description="Backoff ceiling (s)")
    webhook_timeout: float = Field(default=10.0, gt=0, description="Webhook request timeout (s)")

    # ═══════════════════════════════════════════════════════════════
    # JSON-RPC SOURCE
    # ═══════════════════════════════════════════════════════════════
    rpc_url: str | None = Field(default=None, description="Ethereum JSON-RPC endpoint")
    rpc_start_block: int | None = Field(default=None, ge=0, description="First block to read")
    rpc_poll_interval: float = Field(default=2.0, gt=0, description="Seconds between head polls")
    rpc_timeout: float = Field(default=15.0, gt=0, description="RPC request timeout (s)")

    @model_validator(mode="after")
    def _delay_ceiling(self) -> Settings:
        if self.delivery_max_delay < self.delivery_base_delay:
            raise ValueError("delivery_max_delay must be >= delivery_base_delay")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Raises:
        ConfigurationError: naming the first invalid CHAINWATCH_* variable
    """
    try:
        return Settings()
    except ValidationError as e:
        raise _translate(e) from e


# =============================================================================
# Detection Configuration
# =============================================================================

REQUIRED_KEYS: tuple[str, ...] = (
    "large_transfer_threshold",
    "anomaly_window_size",
    "anomaly_z_threshold",
    "watchlist_addresses",
    "max_hop_count",
)


class MonitorConfig(BaseModel):
    """Read-only snapshot of detection thresholds, validated at load time."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Required: no silent defaults
    large_transfer_threshold: int = Field(ge=0)
    anomaly_window_size: int = Field(ge=1)
    anomaly_z_threshold: float = Field(gt=0)
    watchlist_addresses: frozenset[str]
    max_hop_count: int = Field(ge=0)

    # Optional tuning
    anomaly_min_samples: int = Field(default=2, ge=2)
    anomaly_std_mode: Literal["population", "sample"] = "population"
    anomaly_scope: Literal["global", "origin", "destination"] = "global"
    watchlist_max_tracked: int = Field(default=100_000, ge=1)
    max_tracked_entities: int = Field(default=100_000, ge=1)
    out_of_order_policy: Literal["drop", "rebuffer"] = "drop"
    rule_severities: dict[str, Severity] = Field(default_factory=dict)
    notification_targets: tuple[DeliveryTarget, ...] = (
        DeliveryTarget(name="log", kind=TargetKind.LOG),
    )

    @field_validator(
        "large_transfer_threshold",
        "anomaly_window_size",
        "max_hop_count",
        "anomaly_min_samples",
        "watchlist_max_tracked",
        "max_tracked_entities",
        mode="before",
    )
    @classmethod
    def _exact_integer(cls, v: Any) -> int:
        return parse_quantity(v)

    @field_validator("anomaly_z_threshold", mode="before")
    @classmethod
    def _real_number(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("boolean is not a number")
        return v

    @field_validator("watchlist_addresses", mode="before")
    @classmethod
    def _address_set(cls, v: Any) -> frozenset[str]:
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, Iterable) or isinstance(v, Mapping):
            raise ValueError("must be a list of addresses")
        addresses = set()
        for item in v:
            address = normalize_address(item)
            if address:
                addresses.add(address)
        return frozenset(addresses)

    def severity_for(self, rule_id: str, default: Severity) -> Severity:
        return self.rule_severities.get(rule_id, default)

    def require(self, keys: Iterable[str]) -> None:
        """Fail if any named key is not part of this configuration."""
        for key in keys:
            if key not in type(self).model_fields or getattr(self, key) is None:
                raise ConfigurationError(key, "required by a registered rule but not configured")

    def summary(self) -> dict[str, Any]:
        return {
            "large_transfer_threshold": str(self.large_transfer_threshold),
            "anomaly_window_size": self.anomaly_window_size,
            "anomaly_z_threshold": self.anomaly_z_threshold,
            "watchlist_size": len(self.watchlist_addresses),
            "max_hop_count": self.max_hop_count,
            "targets": [t.name for t in self.notification_targets],
        }


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect CHAINWATCH_<KEY> variables for MonitorConfig fields."""
    values: dict[str, Any] = {}
    for name in MonitorConfig.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        if name in ("notification_targets", "rule_severities"):
            try:
                values[name] = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ConfigurationError(name, f"environment value is not valid JSON: {e}") from e
        else:
            values[name] = raw
    return values


def _translate(error: ValidationError) -> ConfigurationError:
    first = error.errors()[0]
    loc = first.get("loc") or ("<root>",)
    key = str(loc[0])
    if first.get("type") == "missing":
        return ConfigurationError(key, "required key is missing")
    return ConfigurationError(key, first.get("msg", "invalid value"))


def build_monitor_config(data: Mapping[str, Any]) -> MonitorConfig:
    """Validate a raw mapping into a MonitorConfig."""
    try:
        config = MonitorConfig.model_validate(dict(data))
    except ValidationError as e:
        raise _translate(e) from e

    if config.anomaly_window_size < config.anomaly_min_samples:
        raise ConfigurationError(
            "anomaly_window_size",
            f"must be >= anomaly_min_samples ({config.anomaly_min_samples})",
        )
    return config


def load_monitor_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> MonitorConfig:
    """
    Load the detection configuration once at startup.

    Precedence (lowest to highest): JSON file, environment, overrides.

    Raises:
        ConfigurationError: naming the first missing or malformed key
    """
    data: dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        try:
            loaded = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigurationError("config_file", f"{config_path} does not exist") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError("config_file", f"{config_path} is not valid JSON: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError("config_file", "top level must be a JSON object")
        data.update(loaded)

    data.update(_env_overrides(os.environ if environ is None else environ))

    if overrides:
        data.update(overrides)

    config = build_monitor_config(data)
    logger.info("monitor_config_loaded", source=str(path) if path else "environment", **config.summary())
    return config


__all__ = [
    "Settings",
    "get_settings",
    "MonitorConfig",
    "REQUIRED_KEYS",
    "build_monitor_config",
    "load_monitor_config",
]
