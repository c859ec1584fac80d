"""
Chainwatch - Monitoring Module

- Structured logging
- Pipeline counters
"""

from .logging import configure_logging, get_logger, log_duration
from .metrics import Counter, DeliveryMetrics, EvaluationMetrics, IngestionMetrics, Timing

__all__ = [
    "configure_logging",
    "get_logger",
    "log_duration",
    "Counter",
    "Timing",
    "EvaluationMetrics",
    "IngestionMetrics",
    "DeliveryMetrics",
]
