"""
Chainwatch - Real-time On-chain Anomaly Detection

Ingests a blockchain transaction/trace stream, evaluates detection rules
against every event in order, and dispatches findings to notification
channels.
"""

__version__ = "0.3.0"
