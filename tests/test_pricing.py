import math

import pytest

from market_viewer.engine.pricing import FEE, pool_from_coin, quote_buy, quote_sell, spot_price
from market_viewer.types import CoinSnapshot, Pool


@pytest.fixture
def pool():
    # 10,000 USD against 1,000,000 tokens
    return Pool(base_reserve=10_000.0, token_reserve=1_000_000.0)


def test_buy_keeps_invariant(pool):
    """Pool after a buy keeps k; the fee is taken before the curve."""
    quote = quote_buy(pool, 100.0)

    assert quote is not None
    assert quote.fee == pytest.approx(0.3)
    assert quote.pool_after.base_reserve == pytest.approx(10_099.7)
    assert quote.pool_after.k == pytest.approx(pool.k, rel=1e-9)
    assert quote.amount_out == pytest.approx(pool.token_reserve - pool.k / 10_099.7)


def test_buy_fee_lowers_output(pool):
    quote = quote_buy(pool, 100.0)
    feeless = pool.token_reserve - pool.k / (pool.base_reserve + 100.0)
    assert quote.amount_out < feeless


def test_buy_output_monotonic(pool):
    outs = [quote_buy(pool, usd).amount_out for usd in (1, 10, 100, 1_000, 10_000, 1e6)]
    assert outs == sorted(outs)
    assert all(out < pool.token_reserve for out in outs)


def test_sell_output(pool):
    quote = quote_sell(pool, 10_000.0)

    new_base = pool.k / 1_010_000.0
    gross = pool.base_reserve - new_base
    assert quote.amount_out == pytest.approx(gross * (1 - FEE))
    assert quote.fee == pytest.approx(gross * FEE)
    assert quote.pool_after.token_reserve == pytest.approx(1_010_000.0)
    assert quote.amount_out < pool.base_reserve


@pytest.mark.parametrize("amount", [0.0, -5.0, math.nan, math.inf])
def test_invalid_amount_gives_no_quote(pool, amount):
    assert quote_buy(pool, amount) is None
    assert quote_sell(pool, amount) is None


@pytest.mark.parametrize("bad_pool", [
    Pool(0.0, 1_000.0),
    Pool(1_000.0, 0.0),
    Pool(-1.0, 1_000.0),
    Pool(math.nan, 1_000.0),
])
def test_untradable_pool_gives_no_quote(bad_pool):
    assert quote_buy(bad_pool, 10.0) is None
    assert quote_sell(bad_pool, 10.0) is None
    assert spot_price(bad_pool) is None


def test_spot_price(pool):
    assert spot_price(pool) == pytest.approx(0.01)


def test_pool_from_coin():
    assert pool_from_coin(None) == Pool(0.0, 0.0)
    coin = CoinSnapshot("DOGE", pool_base=5.0, pool_token=50.0)
    assert pool_from_coin(coin) == Pool(5.0, 50.0)


def test_round_trip_never_profits(pool):
    for usd in (0.5, 100.0, 25_000.0):
        bought = quote_buy(pool, usd)
        sold = quote_sell(bought.pool_after, bought.amount_out)
        assert sold.amount_out <= usd


def test_deep_pool_invariant():
    pool = Pool(1_000.0, 1e9)
    quote = quote_buy(pool, 100.0)
    new_token = quote.pool_after.token_reserve
    assert new_token * (1_000 + 100 * 0.997) == pytest.approx(1_000 * 1e9, rel=1e-9)
    assert quote.amount_out == pytest.approx(1e9 - new_token)
