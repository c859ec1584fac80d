"""
Chainwatch command line

Usage:
    chainwatch --config monitor.json --replay events.jsonl
    chainwatch --config monitor.json --rpc-url http://localhost:8545
    python -m chainwatch --replay events.jsonl --start-block 100 --json-logs

Exit codes: 0 on a clean run, 2 on a configuration error, 1 on any other
startup or ingestion failure.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import Sequence

import structlog

from chainwatch.config import get_settings, load_monitor_config
from chainwatch.errors import ChainwatchError, ConfigurationError
from chainwatch.ingestion.sources import EventSource, JsonLinesEventSource, JsonRpcEventSource
from chainwatch.kernel.pipeline import create_pipeline
from chainwatch.monitoring.logging import (
    bind_context,
    clear_context,
    configure_logging,
    log_duration,
    unbind_context,
)

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chainwatch",
        description="Real-time on-chain anomaly detection and alerting",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON file with detection thresholds (CHAINWATCH_* variables override it)",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--replay", type=str, metavar="FILE", help="Replay a JSON-lines event file")
    source.add_argument("--rpc-url", type=str, help="Follow an Ethereum JSON-RPC node")
    parser.add_argument("--start-block", type=int, default=None, help="First block to read over RPC")
    parser.add_argument("--end-block", type=int, default=None, help="Stop after this block")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override CHAINWATCH_LOG_LEVEL",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    return parser


def build_source(args: argparse.Namespace) -> EventSource:
    settings = get_settings()
    if args.replay:
        return JsonLinesEventSource(args.replay)

    url = args.rpc_url or settings.rpc_url
    if not url:
        raise ConfigurationError("rpc_url", "pass --replay FILE or set --rpc-url / CHAINWATCH_RPC_URL")
    start = args.start_block if args.start_block is not None else settings.rpc_start_block
    return JsonRpcEventSource(
        url,
        start_block=start,
        end_block=args.end_block,
        poll_interval=settings.rpc_poll_interval,
        timeout=settings.rpc_timeout,
    )


async def run(args: argparse.Namespace) -> int:
    try:
        settings = get_settings()
        config = load_monitor_config(args.config)
        source = build_source(args)
        pipeline = create_pipeline(source, config, settings=settings)
    except ConfigurationError as e:
        logger.error("startup_failed", **e.to_dict())
        return EXIT_CONFIG
    except ChainwatchError as e:
        logger.error("startup_failed", **e.to_dict())
        return EXIT_FAILURE

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pipeline.request_shutdown)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    clear_context()
    bind_context(source=source.name)
    try:
        with log_duration(logger, "pipeline_run"):
            stats = await pipeline.run()
    except Exception:
        # already logged as pipeline_run_failed
        return EXIT_FAILURE
    finally:
        unbind_context("source")

    print(json.dumps(stats, indent=2, sort_keys=True, default=str))
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ConfigurationError as e:
        configure_logging(level=args.log_level or "INFO", json_output=args.json_logs)
        logger.error("startup_failed", **e.to_dict())
        return EXIT_CONFIG

    configure_logging(
        level=args.log_level or settings.log_level,
        json_output=args.json_logs or settings.log_json,
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
