#!/usr/bin/env python3
"""
TradeFlash - live equities, option chains, sweeps and blocks in the terminal.

Usage:
    python -m tradeflash.main --ws-url ws://127.0.0.1:8080/ws

    Or via the console script:
    tradeflash --min-notional 20000 --min-qty 50

Controls:
    q - Quit
    r - Typical filter preset (20000 notional / 50 contracts)
    c - Show all traffic
    n/m - Min notional +/- 1000
    k/j - Min qty +/- 10
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import Settings, load_settings
from .log import setup_logging

logger = logging.getLogger("tradeflash.main")


async def main(settings: Settings) -> None:
    """Main entry point - runs data feed and UI concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.client import DashboardClient
    from .ui.dashboard_view import run_ui

    logger.info("Starting TradeFlash: ws=%s api=%s", settings.ws_url, settings.api_base)

    client = DashboardClient(settings)

    async def run_feed() -> None:
        try:
            await client.run()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Feed crashed")

    feed_task = asyncio.create_task(run_feed())

    try:
        # Run UI (blocks until quit)
        await run_ui(client)
    finally:
        client.stop()
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass
        logger.info("TradeFlash stopped")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TradeFlash - live market data and options flow dashboard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
    TRADEFLASH_WS_URL, TRADEFLASH_API_BASE, TRADEFLASH_LOG_LEVEL, ...
    (flags below take precedence)

Examples:
    python -m tradeflash.main
    python -m tradeflash.main --ws-url ws://feed:8080/ws --api-base http://feed:8080
    python -m tradeflash.main --min-notional 20000 --min-qty 50
        """
    )
    parser.add_argument("--ws-url", help="Stream websocket URL")
    parser.add_argument("--api-base", help="Watchlist REST base URL")
    parser.add_argument("--min-notional", type=float, help="Initial min notional filter (default: 0)")
    parser.add_argument("--min-qty", type=float, help="Initial min contracts filter (default: 1)")
    parser.add_argument("--retention", type=int, help="Flow events kept per buffer (default: 400)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ... (default: INFO)")
    parser.add_argument("--log-file", help="Log file path (default: logs/tradeflash.log)")
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Apply CLI flags on top of environment settings."""
    if base is None:
        base = load_settings()
    return base.with_overrides(
        ws_url=args.ws_url,
        api_base=args.api_base,
        min_notional=args.min_notional,
        min_qty=args.min_qty,
        retention=args.retention,
        log_level=args.log_level.upper() if args.log_level else None,
        log_file=args.log_file,
    )


def cli() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()
    try:
        settings = settings_from_args(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.log_level, settings.log_file)

    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
