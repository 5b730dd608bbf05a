"""
Defensive parsing of stream and REST payloads.

Nothing coming off the wire is trusted: every field is optional, numbers
may arrive as strings, timestamps as ISO strings or epoch numbers. A
payload that cannot be understood is logged and dropped (None), never
raised into the engine.

Wire format of a live trade (any subset of fields may be missing):
    {type: "trade", coin, price, pool_base, pool_token, volume24h,
     change24h, created_at, side, tokenAmount, usdAmount}
"""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any

import orjson

from ..types import Candle, CoinSnapshot, TradeEvent

logger = logging.getLogger(__name__)

# Epoch numbers below this are taken as seconds, above as milliseconds
_SECONDS_CUTOFF = 100_000_000_000


def now_ms() -> int:
    return int(time.time() * 1000)


def to_float(value: Any) -> float | None:
    """Finite float from a number or numeric string, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def to_timestamp_ms(value: Any) -> int | None:
    """Epoch milliseconds from an ISO-8601 string or an epoch number."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return int(value * 1000) if abs(value) < _SECONDS_CUTOFF else int(value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        numeric = to_float(text)
        if numeric is not None:
            return to_timestamp_ms(numeric)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)

    return None


def decode(raw: str | bytes | dict) -> Any:
    """Decode a raw payload; dicts pass through untouched."""
    if isinstance(raw, dict):
        return raw
    return orjson.loads(raw)


def parse_trade_event(raw: str | bytes | dict) -> TradeEvent | None:
    """
    Parse one stream message into a TradeEvent.

    HOT PATH - called for every stream message.

    Returns None (after logging) for malformed JSON, non-object payloads
    and messages that are not trades.
    """
    try:
        data = decode(raw)
    except orjson.JSONDecodeError as e:
        logger.warning("Dropping malformed stream payload: %s", e)
        return None

    if not isinstance(data, dict):
        logger.warning("Dropping non-object stream payload: %r", type(data).__name__)
        return None

    if data.get('type') != 'trade':
        logger.debug("Ignoring stream message of type %r", data.get('type'))
        return None

    symbol = data.get('coin')
    if not isinstance(symbol, str) or not symbol:
        symbol = None

    side = data.get('side')
    if isinstance(side, str) and side.lower() in ('buy', 'sell'):
        side = side.lower()
    else:
        side = None

    timestamp = to_timestamp_ms(data.get('created_at'))
    if timestamp is None:
        timestamp = now_ms()

    return TradeEvent(
        symbol=symbol,
        price=to_float(data.get('price')),
        timestamp_ms=timestamp,
        side=side,
        token_amount=to_float(data.get('tokenAmount')),
        usd_amount=to_float(data.get('usdAmount')),
        pool_base=to_float(data.get('pool_base')),
        pool_token=to_float(data.get('pool_token')),
        volume24h=to_float(data.get('volume24h')),
        change24h=to_float(data.get('change24h')),
    )


def parse_coin(data: Any) -> CoinSnapshot | None:
    """CoinSnapshot from a REST coin object; None without a symbol."""
    if not isinstance(data, dict):
        return None
    symbol = data.get('symbol')
    if not isinstance(symbol, str) or not symbol:
        return None

    name = data.get('name')
    return CoinSnapshot(
        symbol=symbol,
        name=name if isinstance(name, str) else "",
        price=to_float(data.get('price')) or 0.0,
        pool_base=to_float(data.get('pool_base')) or 0.0,
        pool_token=to_float(data.get('pool_token')) or 0.0,
        volume24h=to_float(data.get('volume24h')) or 0.0,
        change24h=to_float(data.get('change24h')) or 0.0,
        circulating_supply=to_float(data.get('circulating_supply')) or 0.0,
    )


def parse_candle(data: Any) -> Candle | None:
    """Candle from a history point {time, open, high, low, close}."""
    if not isinstance(data, dict):
        return None
    ts = to_timestamp_ms(data.get('time'))
    values = [to_float(data.get(k)) for k in ('open', 'high', 'low', 'close')]
    if ts is None or any(v is None for v in values):
        return None
    return Candle(ts, *values)


def parse_series(points: Any) -> list[Candle]:
    """History series, skipping points with missing values."""
    if not isinstance(points, list):
        return []
    candles = [parse_candle(p) for p in points]
    dropped = sum(c is None for c in candles)
    if dropped:
        logger.debug("Skipped %d incomplete history points", dropped)
    return [c for c in candles if c is not None]
