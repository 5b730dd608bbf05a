"""
Candle aggregation engine.

HOT PATH: ingest() is called for every trade delivered by the stream.

Performance strategy:
1. O(1) per-trade updates: only the last candle is ever touched
2. Bounded deque gives FIFO eviction of the oldest candles for free
3. numpy arrays are built lazily, only when the chart asks for them

Bucket boundaries are anchored to the first trade of the session, not to
wall-clock 5-minute marks, so live candles can drift against a server
history reload. A full reload always replaces the series.
"""

from __future__ import annotations

import itertools
import math
from collections import deque
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

from ..types import Candle, TradeEvent

DEFAULT_BUCKET_MS = 5 * 60 * 1000
DEFAULT_MAX_CANDLES = 150
DEFAULT_RECENT_TRADES = 20


class CandleAggregator:
    """
    Folds trade prices into a capped, time-bucketed OHLC series.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = ('bucket_ms', 'max_candles', '_candles')

    def __init__(
        self,
        bucket_ms: int = DEFAULT_BUCKET_MS,
        max_candles: int = DEFAULT_MAX_CANDLES,
    ) -> None:
        if bucket_ms <= 0 or max_candles <= 0:
            raise ValueError("bucket_ms and max_candles must be positive")
        self.bucket_ms = bucket_ms
        self.max_candles = max_candles
        self._candles: deque[Candle] = deque(maxlen=max_candles)

    def ingest(self, event: TradeEvent) -> bool:
        """
        Merge one trade into the series.

        HOT PATH - called for every trade.

        Returns False if the event carries no usable price.
        """
        price = event.price
        if price is None or not math.isfinite(price):
            return False

        ts = event.timestamp_ms
        candles = self._candles

        if not candles or ts - candles[-1].bucket_start_ms >= self.bucket_ms:
            # maxlen evicts from the front once the cap is reached
            candles.append(Candle(ts, price, price, price, price))
            return True

        last = candles[-1]
        candles[-1] = last._replace(
            high=max(last.high, price),
            low=min(last.low, price),
            close=price,
        )
        return True

    def replace_series(self, series: Iterable[Candle]) -> None:
        """
        Replace the whole series with a reloaded history.

        Prior state is discarded, never merged. Candles with non-finite
        values are dropped and high/low are widened to contain open/close.
        """
        cleaned: list[Candle] = []
        for candle in series:
            values = (candle.open, candle.high, candle.low, candle.close)
            if not all(math.isfinite(v) for v in values):
                continue
            cleaned.append(candle._replace(
                high=max(values),
                low=min(values),
            ))

        cleaned.sort(key=lambda c: c.bucket_start_ms)

        self._candles.clear()
        self._candles.extend(cleaned[-self.max_candles:])

    @property
    def candles(self) -> list[Candle]:
        """Copy of the series, ascending by bucket start."""
        return list(self._candles)

    @property
    def last(self) -> Candle | None:
        return self._candles[-1] if self._candles else None

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def to_arrays(self) -> dict[str, NDArray[np.float64]]:
        """Column arrays (time, open, high, low, close) for chart scaling."""
        if not self._candles:
            empty = np.empty(0, dtype=np.float64)
            return {k: empty for k in ('time', 'open', 'high', 'low', 'close')}

        data = np.asarray(list(self._candles), dtype=np.float64)
        return {
            'time': data[:, 0],
            'open': data[:, 1],
            'high': data[:, 2],
            'low': data[:, 3],
            'close': data[:, 4],
        }

    def clear(self) -> None:
        """Clear all candles."""
        self._candles.clear()


class RecentTrades:
    """
    Fixed-capacity tape of the latest trades, newest first.

    Owns the sequence counter used to tag stored events.
    """

    __slots__ = ('capacity', '_trades', '_seq')

    def __init__(self, capacity: int = DEFAULT_RECENT_TRADES) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._trades: deque[TradeEvent] = deque(maxlen=capacity)
        self._seq = itertools.count(1)

    def push(self, event: TradeEvent) -> TradeEvent:
        """Store an event and return it tagged with its sequence number."""
        tagged = event._replace(seq=next(self._seq))
        self._trades.appendleft(tagged)
        return tagged

    def __len__(self) -> int:
        return len(self._trades)

    def __iter__(self) -> Iterator[TradeEvent]:
        return iter(self._trades)

    def to_list(self) -> list[TradeEvent]:
        return list(self._trades)

    def clear(self) -> None:
        """Drop stored trades. The sequence keeps counting."""
        self._trades.clear()
