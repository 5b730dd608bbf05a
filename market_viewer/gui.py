#!/usr/bin/env python3
"""
Market Viewer GUI - standalone treemap window.

Usage:
    python -m market_viewer.gui --api-base http://localhost:3000
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading

from .main import add_common_arguments, apply_cli_overrides, setup_logging
from .datafeed.api_client import MarketApiClient
from .datafeed.market_client import MarketFeed
from .datafeed.stream import AiohttpTransport
from .settings import Settings, load_settings

logger = logging.getLogger(__name__)


def run_async_feed(feed: MarketFeed, api: MarketApiClient, loop: asyncio.AbstractEventLoop) -> None:
    """Run the async market feed in a separate thread."""
    asyncio.set_event_loop(loop)
    try:
        logger.info("Starting async feed thread...")
        loop.run_until_complete(feed.run())
    except Exception:
        logger.exception("Feed thread crashed")
    finally:
        loop.run_until_complete(api.close())
        loop.close()


def main(settings: Settings) -> None:
    """Main entry point - runs data feed in background, GUI in main thread."""

    from .ui.treemap_window import run_gui

    logger.info("Starting Market Treemap (api=%s, ws=%s)", settings.api_base, settings.ws_url)

    # The api client opens its own session lazily, on the feed loop
    api = MarketApiClient(settings.api_base, token=settings.api_token, timeout=settings.http_timeout_sec)

    def transport_factory() -> AiohttpTransport:
        return AiohttpTransport(api.session, settings.ws_url, heartbeat=settings.ws_heartbeat_sec)

    feed = MarketFeed(api, transport_factory, settings)

    # Create event loop for async operations
    loop = asyncio.new_event_loop()

    # Start data feed in background thread
    feed_thread = threading.Thread(
        target=run_async_feed,
        args=(feed, api, loop),
        daemon=True
    )
    feed_thread.start()

    # Run GUI in main thread (required by Qt)
    try:
        run_gui(feed.snapshot_queue, feed, loop)
    finally:
        if not loop.is_closed():
            loop.call_soon_threadsafe(feed.stop)
        feed_thread.join(timeout=5.0)


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Market Viewer GUI - market treemap window",
    )

    add_common_arguments(parser)

    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)
    settings = apply_cli_overrides(load_settings(), args)

    try:
        main(settings)
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
