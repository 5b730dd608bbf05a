"""
Per-symbol market state: last known coin/pool snapshot, candles and tape.

The tracker mirrors what the server reported last; it is never
authoritative. Trades for other symbols are ignored so a late message
from a previous subscription cannot leak into the current one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .candles import DEFAULT_BUCKET_MS, DEFAULT_MAX_CANDLES, DEFAULT_RECENT_TRADES, CandleAggregator, RecentTrades
from .pricing import pool_from_coin, quote_buy, quote_sell
from ..types import Candle, CoinSnapshot, Pool, Quote, TradeEvent

logger = logging.getLogger(__name__)

# Event fields mirrored onto the coin snapshot when present
_MIRRORED_FIELDS = ('price', 'pool_base', 'pool_token', 'volume24h', 'change24h')


class CoinTracker:
    """
    State owned by one coin view.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = ('symbol', 'coin', 'candles', 'trades', 'price_move')

    def __init__(
        self,
        symbol: str,
        bucket_ms: int = DEFAULT_BUCKET_MS,
        max_candles: int = DEFAULT_MAX_CANDLES,
        recent_trades: int = DEFAULT_RECENT_TRADES,
    ) -> None:
        self.symbol = symbol
        self.coin: CoinSnapshot | None = None
        self.candles = CandleAggregator(bucket_ms=bucket_ms, max_candles=max_candles)
        self.trades = RecentTrades(capacity=recent_trades)
        self.price_move: int = 0

    def reset(self, symbol: str) -> None:
        """Forget everything and start tracking `symbol`."""
        self.symbol = symbol
        self.coin = None
        self.candles.clear()
        self.trades.clear()
        self.price_move = 0

    def load_coin(self, coin: CoinSnapshot) -> None:
        """Adopt a fresh snapshot from the market service."""
        if coin.symbol != self.symbol:
            logger.debug("Ignoring snapshot for %s while tracking %s", coin.symbol, self.symbol)
            return
        self._track_move(self.coin.price if self.coin else None, coin.price)
        self.coin = coin

    def load_history(self, series: Iterable[Candle]) -> None:
        """Replace the candle series with a reloaded history."""
        self.candles.replace_series(series)

    def apply_trade(self, event: TradeEvent) -> bool:
        """
        Fold a live trade into the state.

        HOT PATH - called for every trade of the subscribed symbol.

        Returns True if the event belonged to this symbol and was applied.
        """
        if event.symbol != self.symbol:
            return False

        self.candles.ingest(event)
        self.trades.push(event)

        if self.coin is not None:
            updates = {
                name: value
                for name in _MIRRORED_FIELDS
                if (value := getattr(event, name)) is not None
            }
            if updates:
                self._track_move(self.coin.price, updates.get('price'))
                self.coin = self.coin._replace(**updates)
        return True

    def _track_move(self, prev: float | None, curr: float | None) -> None:
        if prev is None or curr is None or prev == curr:
            return
        self.price_move = 1 if curr > prev else -1

    @property
    def pool(self) -> Pool:
        return pool_from_coin(self.coin)

    def quote_buy(self, usd_in: float) -> Quote | None:
        return quote_buy(self.pool, usd_in)

    def quote_sell(self, token_in: float) -> Quote | None:
        return quote_sell(self.pool, token_in)
