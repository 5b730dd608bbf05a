"""
Configuration for Market Viewer.

Defaults live on the `Settings` dataclass; `load_settings()` applies
environment overrides (Docker, CI, .env) and clamps every value to a sane
range so a typo degrades to the default instead of breaking the feed.
CLI flags are applied on top with `dataclasses.replace()`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _f(name: str, default: float) -> float:
    """Float from the environment, default when missing or unparsable."""
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return float(default)


def _i(name: str, default: int) -> int:
    """Int from the environment, default when missing or unparsable."""
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return int(default)


def _s(name: str, default: str) -> str:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else default


def ws_url_for(api_base: str) -> str:
    """Websocket endpoint served from the same host as the REST API."""
    if api_base.startswith("https://"):
        return "wss://" + api_base[len("https://"):]
    if api_base.startswith("http://"):
        return "ws://" + api_base[len("http://"):]
    return api_base


@dataclass(frozen=True)
class Settings:
    api_base: str = "http://localhost:3000"
    ws_url: str = "ws://localhost:3000"
    api_token: str | None = None

    # Coin view
    history_hours: int = 24           # History window loaded on open/switch
    coin_poll_sec: float = 5.0        # Snapshot refresh while the view is active
    recent_trades: int = 20           # Tape capacity

    # Treemap view
    treemap_refresh_sec: float = 30.0

    # Transport
    ws_heartbeat_sec: float = 30.0
    http_timeout_sec: float = 10.0


def load_settings() -> Settings:
    """Settings with `MARKET_*` environment overrides applied."""
    defaults = Settings()

    api_base = _s("MARKET_API_BASE", defaults.api_base).rstrip("/")
    ws_url = _s("MARKET_WS_URL", ws_url_for(api_base))

    return Settings(
        api_base=api_base,
        ws_url=ws_url,
        api_token=os.getenv("MARKET_API_TOKEN") or None,
        history_hours=max(1, min(24 * 30, _i("MARKET_HISTORY_HOURS", defaults.history_hours))),
        coin_poll_sec=max(1.0, _f("MARKET_COIN_POLL_SEC", defaults.coin_poll_sec)),
        recent_trades=max(1, min(500, _i("MARKET_RECENT_TRADES", defaults.recent_trades))),
        treemap_refresh_sec=max(1.0, _f("MARKET_TREEMAP_REFRESH_SEC", defaults.treemap_refresh_sec)),
        ws_heartbeat_sec=max(0.0, _f("MARKET_WS_HEARTBEAT_SEC", defaults.ws_heartbeat_sec)),
        http_timeout_sec=max(1.0, _f("MARKET_HTTP_TIMEOUT_SEC", defaults.http_timeout_sec)),
    )
