import math

import pytest

from market_viewer.engine.candles import CandleAggregator, RecentTrades
from market_viewer.types import Candle, TradeEvent

T0 = 1_700_000_000_000
MIN = 60_000


def trade(price, ts, symbol="DOGE"):
    return TradeEvent(symbol=symbol, price=price, timestamp_ms=ts)


def test_trades_split_into_buckets():
    agg = CandleAggregator()
    agg.ingest(trade(1.0, T0))
    agg.ingest(trade(1.2, T0 + 1 * MIN))
    agg.ingest(trade(0.9, T0 + 2 * MIN))
    agg.ingest(trade(1.1, T0 + 6 * MIN))

    assert agg.candles == [
        Candle(T0, 1.0, 1.2, 0.9, 0.9),
        Candle(T0 + 6 * MIN, 1.1, 1.1, 1.1, 1.1),
    ]


def test_bucket_boundary_starts_new_candle():
    agg = CandleAggregator(bucket_ms=5 * MIN)
    agg.ingest(trade(1.0, T0))
    agg.ingest(trade(2.0, T0 + 5 * MIN - 1))
    agg.ingest(trade(3.0, T0 + 10 * MIN - 1))

    assert len(agg) == 2
    assert agg.candles[0].close == 2.0
    assert agg.last.bucket_start_ms == T0 + 10 * MIN - 1


def test_series_is_capped():
    agg = CandleAggregator(max_candles=150)
    for i in range(1000):
        agg.ingest(trade(1.0 + i, T0 + i * 5 * MIN))

    candles = agg.candles
    assert len(candles) == 150
    assert candles[0].open == 851.0
    assert candles[-1].open == 1000.0
    assert all(a.bucket_start_ms < b.bucket_start_ms for a, b in zip(candles, candles[1:]))


def test_high_low_contain_open_close():
    agg = CandleAggregator()
    for i, price in enumerate([5.0, 7.0, 3.0, 6.0, 4.0]):
        agg.ingest(trade(price, T0 + i * 1000))

    c = agg.last
    assert (c.open, c.high, c.low, c.close) == (5.0, 7.0, 3.0, 4.0)
    assert c.low <= min(c.open, c.close) <= max(c.open, c.close) <= c.high


@pytest.mark.parametrize("price", [None, math.nan, math.inf])
def test_unusable_price_is_ignored(price):
    agg = CandleAggregator()
    assert agg.ingest(trade(price, T0)) is False
    assert len(agg) == 0


def test_replace_series_discards_prior_state():
    agg = CandleAggregator(max_candles=3)
    agg.ingest(trade(100.0, T0 + 100 * MIN))

    agg.replace_series([
        Candle(T0 + 3 * MIN, 3.0, 3.0, 3.0, 3.0),
        Candle(T0, 1.0, 1.0, 1.0, 1.0),
        Candle(T0 + 1 * MIN, 2.0, 1.5, 2.5, 2.0),  # inverted high/low
        Candle(T0 + 2 * MIN, math.nan, 1.0, 1.0, 1.0),
        Candle(T0 + 4 * MIN, 4.0, 4.0, 4.0, 4.0),
    ])

    candles = agg.candles
    assert [c.bucket_start_ms for c in candles] == [T0 + 1 * MIN, T0 + 3 * MIN, T0 + 4 * MIN]
    assert candles[0].high == 2.5
    assert candles[0].low == 1.5


def test_to_arrays():
    agg = CandleAggregator()
    assert agg.to_arrays()['close'].size == 0

    agg.ingest(trade(1.0, T0))
    agg.ingest(trade(2.0, T0 + 10 * MIN))
    arrays = agg.to_arrays()
    assert arrays['time'].tolist() == [float(T0), float(T0 + 10 * MIN)]
    assert arrays['close'].tolist() == [1.0, 2.0]


def test_invalid_sizes_rejected():
    with pytest.raises(ValueError):
        CandleAggregator(bucket_ms=0)
    with pytest.raises(ValueError):
        CandleAggregator(max_candles=0)
    with pytest.raises(ValueError):
        RecentTrades(capacity=0)


def test_recent_trades_newest_first_and_bounded():
    tape = RecentTrades(capacity=20)
    for i in range(25):
        tape.push(trade(float(i), T0 + i))

    stored = tape.to_list()
    assert len(stored) == 20
    assert [t.price for t in stored[:3]] == [24.0, 23.0, 22.0]
    assert stored[-1].price == 5.0


def test_recent_trades_sequence_keeps_counting():
    tape = RecentTrades(capacity=2)
    first = tape.push(trade(1.0, T0))
    tape.push(trade(2.0, T0 + 1))
    tape.clear()
    third = tape.push(trade(3.0, T0 + 2))

    assert first.seq == 1
    assert third.seq == 3
    assert len(tape) == 1


def test_sequences_are_per_instance():
    a, b = RecentTrades(), RecentTrades()
    a.push(trade(1.0, T0))
    assert b.push(trade(1.0, T0)).seq == 1


def test_first_candle_spans_first_three_trades():
    agg = CandleAggregator()
    for minutes, price in ((0, 10.0), (1, 12.0), (4, 9.0), (6, 11.0)):
        agg.ingest(trade(price, T0 + minutes * MIN))

    first, second = agg.candles
    assert (first.high, first.low, first.close) == (12.0, 9.0, 9.0)
    assert second.open == 11.0


def test_six_minute_spacing_evicts_oldest():
    agg = CandleAggregator()
    for i in range(1000):
        agg.ingest(trade(float(i), T0 + i * 6 * MIN))

    assert len(agg) == 150
    assert agg.candles[0].bucket_start_ms == T0 + 850 * 6 * MIN
