"""
Data types for Market Viewer.

Performance notes:
- Using NamedTuple for immutable, memory-efficient structures
- The last candle of a series is "mutated" by swapping in a `_replace()` copy
- Optional wire fields stay None; nothing here guesses missing values
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple


class Pool(NamedTuple):
    """Constant-product liquidity pool (last known server state)."""
    base_reserve: float   # USD side
    token_reserve: float  # Token side

    @property
    def k(self) -> float:
        return self.base_reserve * self.token_reserve

    @property
    def tradable(self) -> bool:
        return self.base_reserve > 0 and self.token_reserve > 0


class Candle(NamedTuple):
    """OHLC aggregate of trade prices inside one time bucket."""
    bucket_start_ms: int
    open: float
    high: float
    low: float
    close: float


class TradeEvent(NamedTuple):
    """
    Single trade from the live stream.

    Every market field is optional: the stream may omit any of them.
    `seq` is assigned by the RecentTrades buffer that stores the event.
    """
    symbol: str | None
    price: float | None
    timestamp_ms: int
    side: str | None = None          # "buy" | "sell"
    token_amount: float | None = None
    usd_amount: float | None = None
    pool_base: float | None = None
    pool_token: float | None = None
    volume24h: float | None = None
    change24h: float | None = None
    seq: int = 0


class CoinSnapshot(NamedTuple):
    """Coin as reported by the market snapshot service."""
    symbol: str
    name: str = ""
    price: float = 0.0
    pool_base: float = 0.0
    pool_token: float = 0.0
    volume24h: float = 0.0
    change24h: float = 0.0
    circulating_supply: float = 0.0


class MarketItem(NamedTuple):
    """Treemap input. Immutable per layout pass."""
    symbol: str
    weight: float       # >= 0, tile area is proportional to it
    change_pct: float   # Drives the tile colour
    name: str = ""
    price: float = 0.0


class LayoutRect(NamedTuple):
    """Treemap output: one rectangle per input item."""
    item: MarketItem
    x: float
    y: float
    width: float
    height: float


class Quote(NamedTuple):
    """Local bonding-curve preview. Advisory only, the server is authoritative."""
    amount_in: float
    amount_out: float
    fee: float          # Fee charged, in units of the input side
    pool_after: Pool


class TradeResult(NamedTuple):
    """Outcome of an authoritative buy/sell request."""
    ok: bool
    token_amount: float = 0.0
    usd_amount: float = 0.0     # usdSpent for buys, usdGained for sells
    error: str | None = None


class ConnectionPhase(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"


class ConnectionState(NamedTuple):
    """Stream connection state. `attempt` only counts while RECONNECTING."""
    phase: ConnectionPhase
    attempt: int = 0

    def __str__(self) -> str:
        if self.phase is ConnectionPhase.RECONNECTING:
            return f"reconnecting (#{self.attempt})"
        return self.phase.value


class CoinViewSnapshot(NamedTuple):
    """
    Complete coin view state for UI rendering.

    Pushed to the UI queue on every applied trade, poll and reload.
    """
    symbol: str
    coin: CoinSnapshot | None
    candles: list[Candle]          # Ascending by bucket start
    recent_trades: list[TradeEvent]  # Newest first
    connection: ConnectionState
    price_move: int                # +1 up, -1 down, 0 unchanged
    timestamp_ms: int


class MarketSnapshot(NamedTuple):
    """Full-market state for the treemap view."""
    items: list[MarketItem]        # Descending by weight
    connection: ConnectionState
    timestamp_ms: int
