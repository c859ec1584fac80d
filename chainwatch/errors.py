"""
Chainwatch - Error Taxonomy

Every failure the pipeline can report derives from ChainwatchError.

Fatal at startup (abort before any event is processed):
- ConfigurationError
- DuplicateRuleId

Recoverable (reported as pipeline-health findings, the stream continues):
- OutOfOrderEvent
- MalformedEvent
- RuleEvaluationError
- SinkDeliveryError
"""

from __future__ import annotations

from typing import Any


class ChainwatchError(Exception):
    """Base class for all Chainwatch errors."""

    fatal: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and health findings."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            **{k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, bool, float)) or value is None:
        return value
    if isinstance(value, int):
        # Wei amounts overflow JSON consumers that parse numbers as doubles
        return str(value) if abs(value) > 2**53 else value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


# =============================================================================
# Startup Errors
# =============================================================================


class ConfigurationError(ChainwatchError):
    """A required configuration key is missing or malformed."""

    fatal = True

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Invalid configuration for '{key}': {reason}", key=key, reason=reason)
        self.key = key
        self.reason = reason


class DuplicateRuleId(ChainwatchError):
    """A rule with the same identifier is already registered."""

    fatal = True

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Rule '{rule_id}' is already registered", rule_id=rule_id)
        self.rule_id = rule_id


# =============================================================================
# Stream Errors
# =============================================================================


class OutOfOrderEvent(ChainwatchError):
    """The source delivered an event older than one already accepted."""

    def __init__(
        self,
        event_id: str,
        ordering_key: tuple[int, int],
        last_key: tuple[int, int],
    ) -> None:
        super().__init__(
            f"Event {event_id} at {ordering_key} arrived after {last_key}",
            event_id=event_id,
            ordering_key=list(ordering_key),
            last_key=list(last_key),
        )
        self.event_id = event_id
        self.ordering_key = ordering_key
        self.last_key = last_key


class MalformedEvent(ChainwatchError):
    """A source record could not be normalized into a ChainEvent."""

    def __init__(self, reason: str, record: Any = None) -> None:
        event_id = None
        if isinstance(record, dict):
            event_id = record.get("id") or record.get("hash")
        super().__init__(f"Malformed event record: {reason}", event_id=event_id, reason=reason)
        self.event_id = event_id
        self.reason = reason


class RuleEvaluationError(ChainwatchError):
    """A rule raised while evaluating one event."""

    def __init__(self, rule_id: str, event_id: str, cause: BaseException) -> None:
        super().__init__(
            f"Rule '{rule_id}' failed on event {event_id}: {cause!r}",
            rule_id=rule_id,
            event_id=event_id,
            cause=repr(cause),
        )
        self.rule_id = rule_id
        self.event_id = event_id
        self.cause = cause


class SinkDeliveryError(ChainwatchError):
    """A finding could not be delivered after exhausting all attempts."""

    def __init__(self, finding_id: str, target: str, attempts: int, last_error: str) -> None:
        super().__init__(
            f"Delivery of finding {finding_id} to '{target}' failed after {attempts} attempts: {last_error}",
            finding_id=finding_id,
            target=target,
            attempts=attempts,
            last_error=last_error,
        )
        self.finding_id = finding_id
        self.target = target
        self.attempts = attempts
        self.last_error = last_error


__all__ = [
    "ChainwatchError",
    "ConfigurationError",
    "DuplicateRuleId",
    "OutOfOrderEvent",
    "MalformedEvent",
    "RuleEvaluationError",
    "SinkDeliveryError",
]
