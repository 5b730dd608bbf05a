import pytest

from market_viewer.engine.coin_state import CoinTracker
from market_viewer.types import Candle, CoinSnapshot, Pool, TradeEvent

T0 = 1_700_000_000_000


@pytest.fixture
def tracker():
    t = CoinTracker("DOGE")
    t.load_coin(CoinSnapshot("DOGE", name="Doge", price=0.01, pool_base=10_000.0, pool_token=1_000_000.0))
    return t


def test_trade_for_other_symbol_is_ignored(tracker):
    assert tracker.apply_trade(TradeEvent("PEPE", 5.0, T0)) is False
    assert tracker.apply_trade(TradeEvent(None, 5.0, T0)) is False
    assert len(tracker.candles) == 0
    assert len(tracker.trades) == 0
    assert tracker.coin.price == 0.01


def test_trade_updates_candles_tape_and_pool(tracker):
    applied = tracker.apply_trade(TradeEvent(
        "DOGE", 0.0102, T0, side="buy", pool_base=10_099.7, pool_token=990_128.0,
    ))

    assert applied is True
    assert tracker.candles.last == Candle(T0, 0.0102, 0.0102, 0.0102, 0.0102)
    assert tracker.trades.to_list()[0].seq == 1
    assert tracker.coin.price == 0.0102
    assert tracker.pool == Pool(10_099.7, 990_128.0)
    assert tracker.price_move == 1


def test_partial_trade_keeps_known_fields(tracker):
    tracker.apply_trade(TradeEvent("DOGE", None, T0, side="sell"))

    assert tracker.coin.price == 0.01
    assert tracker.pool == Pool(10_000.0, 1_000_000.0)
    assert len(tracker.candles) == 0
    assert len(tracker.trades) == 1


def test_price_move_tracks_direction(tracker):
    tracker.load_coin(tracker.coin._replace(price=0.009))
    assert tracker.price_move == -1

    # Unchanged price leaves the last move alone
    tracker.load_coin(tracker.coin)
    assert tracker.price_move == -1


def test_snapshot_for_other_symbol_is_ignored(tracker):
    tracker.load_coin(CoinSnapshot("PEPE", price=9.0))
    assert tracker.coin.symbol == "DOGE"


def test_quotes_follow_pool(tracker):
    quote = tracker.quote_buy(100.0)
    assert quote.pool_after.base_reserve == pytest.approx(10_099.7)
    assert tracker.quote_sell(0) is None


def test_no_coin_means_no_quote():
    tracker = CoinTracker("DOGE")
    assert tracker.quote_buy(10.0) is None
    assert tracker.quote_sell(10.0) is None


def test_reset_forgets_previous_coin(tracker):
    tracker.apply_trade(TradeEvent("DOGE", 0.011, T0))
    tracker.reset("PEPE")

    assert tracker.symbol == "PEPE"
    assert tracker.coin is None
    assert len(tracker.candles) == 0
    assert len(tracker.trades) == 0
    assert tracker.price_move == 0
    assert tracker.apply_trade(TradeEvent("DOGE", 0.012, T0 + 1)) is False


def test_load_history_replaces_series(tracker):
    tracker.apply_trade(TradeEvent("DOGE", 0.011, T0 + 10_000_000))
    tracker.load_history([Candle(T0, 1.0, 1.0, 1.0, 1.0)])
    assert tracker.candles.candles == [Candle(T0, 1.0, 1.0, 1.0, 1.0)]
