"""Command line entry point: ``python -m fleetwatch``."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

from fleetwatch.adapters.logging import configure_logging
from fleetwatch.config import Settings, load_settings
from fleetwatch.core.errors import ConfigurationError, NotificationError
from fleetwatch.monitor import Monitor

logger = logging.getLogger("fleetwatch")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetwatch",
        description="Collect service telemetry, probe health and raise alerts.",
    )
    parser.add_argument("--database", help="SQLite database path")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-format", choices=["text", "json"])
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="run a single collection, probe and evaluation cycle, then exit",
    )
    mode.add_argument(
        "--test-channel",
        metavar="CHANNEL",
        help="send a test alert through one channel (email, slack, pagerduty)",
    )
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.database:
        overrides["database_path"] = args.database
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    return overrides


async def _serve(monitor: Monitor) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    async with monitor:
        await stop.wait()


async def _once(monitor: Monitor) -> None:
    try:
        await monitor.run_once()
        print(json.dumps(monitor.status(), indent=2, default=str))
    finally:
        await monitor.stop()


async def _test_channel(monitor: Monitor, channel: str) -> None:
    try:
        await monitor.dispatcher.send_test(channel)
    finally:
        await monitor.stop()


def run(settings: Settings, args: argparse.Namespace) -> int:
    monitor = Monitor(settings)
    try:
        if args.test_channel:
            asyncio.run(_test_channel(monitor, args.test_channel))
        elif args.once:
            asyncio.run(_once(monitor))
        else:
            asyncio.run(_serve(monitor))
    except (ConfigurationError, NotificationError) as e:
        logger.error("%s", e)
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(**_overrides(args))
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 2
    configure_logging(settings.log_level, settings.log_format)
    return run(settings, args)


if __name__ == "__main__":
    sys.exit(main())
