"""
Constant-product bonding curve quotes.

All functions are pure. A quote is a local preview of what a trade would
return against the last known pool state; the trade service may fill
slightly differently when other trades land first.

Preconditions that are not met (empty pool, non-positive input) yield
None rather than raising, so callers can simply disable the action.
"""

from __future__ import annotations

import math

from ..types import CoinSnapshot, Pool, Quote

# Fee taken from the input side before the invariant is applied
FEE = 0.003


def _valid_amount(amount: float) -> bool:
    return math.isfinite(amount) and amount > 0


def _valid_pool(pool: Pool) -> bool:
    return (
        math.isfinite(pool.base_reserve)
        and math.isfinite(pool.token_reserve)
        and pool.tradable
    )


def quote_buy(pool: Pool, usd_in: float) -> Quote | None:
    """
    Tokens received for spending `usd_in`.

    effective = usd_in * (1 - FEE)
    new_base  = base + effective
    new_token = k / new_base
    out       = max(token - new_token, 0)
    """
    if not _valid_amount(usd_in) or not _valid_pool(pool):
        return None

    effective_usd = usd_in * (1 - FEE)
    new_base = pool.base_reserve + effective_usd
    new_token = pool.k / new_base
    tokens_out = max(pool.token_reserve - new_token, 0.0)

    return Quote(
        amount_in=usd_in,
        amount_out=tokens_out,
        fee=usd_in - effective_usd,
        pool_after=Pool(new_base, new_token),
    )


def quote_sell(pool: Pool, token_in: float) -> Quote | None:
    """
    USD received for selling `token_in`.

    new_token = token + token_in
    new_base  = k / new_token
    out       = max((base - new_base) * (1 - FEE), 0)
    """
    if not _valid_amount(token_in) or not _valid_pool(pool):
        return None

    new_token = pool.token_reserve + token_in
    new_base = pool.k / new_token
    gross_usd = pool.base_reserve - new_base
    usd_out = max(gross_usd * (1 - FEE), 0.0)

    return Quote(
        amount_in=token_in,
        amount_out=usd_out,
        fee=max(gross_usd, 0.0) - usd_out,
        pool_after=Pool(new_base, new_token),
    )


def spot_price(pool: Pool) -> float | None:
    """Marginal USD price of one token, None when trading is disabled."""
    if not _valid_pool(pool):
        return None
    return pool.base_reserve / pool.token_reserve


def pool_from_coin(coin: CoinSnapshot | None) -> Pool:
    """Pool view of a coin snapshot. Missing coin means an empty pool."""
    if coin is None:
        return Pool(0.0, 0.0)
    return Pool(coin.pool_base, coin.pool_token)
