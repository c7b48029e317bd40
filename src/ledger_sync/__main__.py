"""
Ledger sync CLI entry point.

Follow a staking contract and log a one-line summary whenever its state changes.

Usage::

    python -m ledger_sync --rpc-url http://localhost:8545 --contract 0x5FbD...0aa3
    python -m ledger_sync --config ledger-sync.yaml --api-port 5053
    python -m ledger_sync --config ledger-sync.yaml --cache-path cache.sqlite

Options:
    --rpc-url      JSON-RPC endpoint of the ledger
    --contract     Address of the staking contract
    --config       Path to a YAML config file
    --interval-ms  Poll interval in milliseconds (minimum 500)
    --cache-path   SQLite file for the warm-start cache mirror
    --api-port     Serve diagnostics on this port
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from ledger_sync.api import ApiServer, ApiServerConfig
from ledger_sync.client import json_rpc_transport_factory
from ledger_sync.config import SyncConfig
from ledger_sync.events import EventKind
from ledger_sync.storage import SQLiteCacheStore
from ledger_sync.sync import SyncEngine, SyncSnapshot
from ledger_sync.types import ConfigError, short_address

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    """Logging formatter with ANSI colors for better readability."""

    # ANSI color codes
    GREY = "\x1b[38;5;244m"
    BLUE = "\x1b[38;5;39m"
    GREEN = "\x1b[38;5;40m"
    YELLOW = "\x1b[38;5;220m"
    RED = "\x1b[38;5;196m"
    BOLD_RED = "\x1b[38;5;196;1m"
    CYAN = "\x1b[38;5;51m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)

        timestamp = self.formatTime(record, self.datefmt)
        colored_time = f"{self.CYAN}{timestamp}{self.RESET}"
        levelname = f"{color}{record.levelname:8}{self.RESET}"
        name = f"{self.BLUE}{record.name}{self.RESET}"

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        return f"{colored_time} {levelname} {name}: {message}"


def setup_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Configure logging with optional colors."""
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setLevel(level)

    # Use colored formatter unless disabled
    if no_color:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = ColoredFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    handler.setFormatter(formatter)

    # Configure root logger
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)


def summarize(snapshot: SyncSnapshot) -> str:
    """Render a snapshot as one log line."""
    if not snapshot.connected:
        return f"disconnected: {snapshot.error}"

    counts = ", ".join(
        f"{kind}={len(snapshot.records(kind))}"
        for kind in EventKind
        if snapshot.records(kind)
    )
    parts = [f"height={snapshot.height}", f"participants={len(snapshot.roster)}"]
    if "totalStaked" in snapshot.scalars:
        parts.append(f"staked={snapshot.scalars['totalStaked']} ETH")
    if counts:
        parts.append(f"events[{counts}]")
    if snapshot.recent_activity:
        latest = snapshot.recent_activity[0]
        parts.append(f"latest={latest.kind} by {short_address(latest.actor)}")
    return " ".join(parts)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="ledger_sync",
        description="Follow a staking contract over JSON-RPC",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--rpc-url",
        type=str,
        default=None,
        help="JSON-RPC endpoint (e.g., http://localhost:8545)",
    )
    parser.add_argument(
        "--contract",
        type=str,
        default=None,
        help="Address of the staking contract",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=None,
        help="Poll interval in milliseconds (default: 1000, minimum: 500)",
    )
    parser.add_argument(
        "--cache-path",
        type=Path,
        default=None,
        help="SQLite file for the warm-start cache mirror",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=None,
        help="Serve diagnostics (health, stats, snapshot, metrics) on this port",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored logging output",
    )
    return parser


def build_config(
    args: argparse.Namespace,
    environ: Mapping[str, str] | None = None,
) -> SyncConfig:
    """
    Merge the config file, environment, and command line.

    Precedence, lowest to highest: file, environment, command line.

    Raises:
        ConfigError: If the merged settings are invalid.
    """
    if args.config is not None:
        config = SyncConfig.from_yaml_file(args.config, environ)
    else:
        config = SyncConfig.from_mapping({}, environ)

    overrides: dict[str, Any] = {}
    if args.rpc_url is not None:
        overrides["endpoint"] = args.rpc_url
    if args.contract is not None:
        overrides["contract_address"] = args.contract
    if args.interval_ms is not None:
        overrides["poll_interval_ms"] = args.interval_ms
    if args.cache_path is not None:
        overrides["cache_path"] = args.cache_path
    if args.api_port is not None:
        overrides["api"] = ApiServerConfig(host=config.api.host, port=args.api_port)

    if not overrides:
        return config

    # Re-validate so overrides get the same normalization as file values.
    data = config.model_dump()
    data.update(overrides)
    return SyncConfig.from_mapping(data, environ={})


async def run(config: SyncConfig) -> None:
    """
    Follow the configured contract until cancelled.

    Args:
        config: Validated settings with an endpoint and contract address.
    """
    store = SQLiteCacheStore(config.cache_path) if config.cache_path is not None else None
    engine = SyncEngine.from_config(
        config,
        json_rpc_transport_factory(config.request_timeout, config.confirmation_timeout),
        store=store,
    )
    api_server = ApiServer(config=config.api, engine_getter=lambda: engine)

    try:
        await engine.configure(config.endpoint, config.contract_address)

        client = engine.client
        if client is not None and not await client.is_valid():
            logger.warning(
                "No staking contract answers at %s; polling anyway", config.contract_address
            )

        await api_server.start()

        engine.subscribe(lambda snapshot: logger.info("%s", summarize(snapshot)))

        # Run until interrupted.
        await asyncio.Event().wait()
    finally:
        await api_server.stop()
        await engine.close()
        if store is not None:
            store.close()


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.no_color)

    try:
        config = build_config(args)
    except ConfigError as exc:
        parser.error(str(exc))

    if not config.endpoint or not config.contract_address:
        parser.error("an RPC URL and a contract address are required (flags, config, or env)")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        # asyncio.run() handles task cancellation, but we log for clarity.
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
