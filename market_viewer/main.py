#!/usr/bin/env python3
"""
Market Viewer - live coin view for the simulated AMM market.

Usage:
    python -m market_viewer.main DOGE

    Or, once installed:
    market-viewer DOGE

Controls:
    q - Quit
    r - Refresh coin snapshot
    Enter in an amount box - execute the trade
    Enter in the symbol box - switch coin
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from pathlib import Path

from .settings import Settings, load_settings, ws_url_for

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(loglevel: str = "INFO", logfile: Path | None = None, console: bool = True) -> None:
    """
    Root logger setup shared by the TUI and GUI entry points.

    The TUI owns the terminal, so it logs to the file only.
    """
    level = getattr(logging, loglevel.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if console:
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        root.addHandler(sh)

    if logfile is not None:
        try:
            fh = logging.FileHandler(logfile)
        except OSError as e:
            logger.warning("Could not open log file %s: %s", logfile, e)
        else:
            fh.setLevel(level)
            fh.setFormatter(formatter)
            root.addHandler(fh)

    # aiohttp access chatter is not useful at INFO
    logging.getLogger("aiohttp").setLevel(max(level, logging.WARNING))


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """CLI flags win over environment and defaults."""
    overrides = {}
    if args.api_base:
        overrides["api_base"] = args.api_base.rstrip("/")
    if args.ws_url:
        overrides["ws_url"] = args.ws_url
    elif args.api_base and not os.getenv("MARKET_WS_URL", "").strip():
        # Stream lives on the same host as the REST API
        overrides["ws_url"] = ws_url_for(overrides["api_base"])
    if getattr(args, "history_hours", None):
        overrides["history_hours"] = max(1, args.history_hours)
    return dataclasses.replace(settings, **overrides) if overrides else settings


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--api-base",
        default=None,
        help="REST base URL (default: $MARKET_API_BASE or http://localhost:3000)"
    )

    parser.add_argument(
        "--ws-url",
        default=None,
        help="Trade stream URL (default: $MARKET_WS_URL or derived from --api-base)"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=Path("market_viewer.log"),
        help="Log file path (default: market_viewer.log)"
    )


async def main(symbol: str, settings: Settings) -> None:
    """Main entry point - runs data feed and UI concurrently."""

    # Import here to avoid slow startup for --help
    import aiohttp

    from .datafeed.api_client import MarketApiClient
    from .datafeed.market_client import CoinFeed
    from .datafeed.stream import AiohttpTransport
    from .ui.coin_view import run_ui

    logger.info("Starting Market Viewer for %s (api=%s, ws=%s)", symbol, settings.api_base, settings.ws_url)

    timeout = aiohttp.ClientTimeout(total=settings.http_timeout_sec)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        api = MarketApiClient(
            settings.api_base,
            session=session,
            token=settings.api_token,
            timeout=settings.http_timeout_sec,
        )

        def transport_factory() -> AiohttpTransport:
            return AiohttpTransport(session, settings.ws_url, heartbeat=settings.ws_heartbeat_sec)

        feed = CoinFeed(api, transport_factory, symbol, settings)
        await feed.start()

        try:
            # Run UI (blocks until quit)
            await run_ui(feed)
        finally:
            await feed.close()
            await api.close()

    logger.info("Market Viewer stopped")


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Market Viewer - live candles, trades and quotes for one coin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m market_viewer.main DOGE
    python -m market_viewer.main PEPE --history-hours 6
    python -m market_viewer.main DOGE --api-base https://market.example.com
        """
    )

    parser.add_argument(
        "symbol",
        help="Coin symbol to open"
    )

    parser.add_argument(
        "--history-hours",
        type=int,
        default=None,
        help="History window to load (default: $MARKET_HISTORY_HOURS or 24)"
    )

    add_common_arguments(parser)

    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file, console=False)
    settings = apply_cli_overrides(load_settings(), args)

    # Run
    try:
        asyncio.run(main(args.symbol.upper(), settings))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
