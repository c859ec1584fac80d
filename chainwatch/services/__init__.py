"""Chainwatch - Finding delivery services."""

from chainwatch.services.dispatcher import AlertDispatcher, RetryPolicy
from chainwatch.services.sinks import FindingSink, LogSink, MemorySink, WebhookSink, default_sinks

__all__ = [
    "AlertDispatcher",
    "RetryPolicy",
    "FindingSink",
    "LogSink",
    "MemorySink",
    "WebhookSink",
    "default_sinks",
]
