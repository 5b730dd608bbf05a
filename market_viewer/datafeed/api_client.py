"""
Async REST client for the market snapshot and trade execution services.

Endpoints:
    GET  /api/coins                         -> {coins: [...]}
    GET  /api/coins/{symbol}                -> {coin: {...}}
    GET  /api/coins/{symbol}/history?hours  -> {series: [{time, open, high, low, close}]}
    POST /api/trade/buy   {symbol, usdAmount}   -> {ok, bought: {tokenAmount, usdSpent}} | {error}
    POST /api/trade/sell  {symbol, tokenAmount} -> {ok, sold: {tokenAmount, usdGained}} | {error}

Snapshot reads raise MarketApiError so callers can degrade to "no data".
Trades never raise: the server's verdict comes back as a TradeResult and
its error text is passed through verbatim.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import aiohttp
import orjson

from .messages import parse_coin, parse_series, to_float
from ..types import Candle, CoinSnapshot, TradeResult

logger = logging.getLogger(__name__)


class MarketApiError(Exception):
    """A market snapshot could not be fetched or understood."""


class MarketApiClient:
    """
    Thin async wrapper over the market REST API.

    Usage:
        async with MarketApiClient("http://localhost:3000") as api:
            coins = await api.list_coins()
    """

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession | None = None,
        token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> MarketApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, Any]:
        """Send a request and decode the JSON body. Network failures propagate."""
        url = f"{self.base_url}{path}"
        async with self.session.request(
            method, url, headers=self._headers(), timeout=self._timeout, **kwargs
        ) as resp:
            data = await resp.read()
            try:
                return resp.status, orjson.loads(data)
            except orjson.JSONDecodeError:
                return resp.status, {"error": "invalid_json_response"}

    async def _get(self, path: str, **params: Any) -> dict:
        try:
            status, body = await self._request("GET", path, params=params or None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise MarketApiError(f"GET {path} failed: {e or type(e).__name__}") from e

        if not isinstance(body, dict):
            raise MarketApiError(f"GET {path}: unexpected payload")
        if status >= 400 or "error" in body:
            raise MarketApiError(f"GET {path}: {body.get('error') or f'HTTP {status}'}")
        return body

    # ------------------------------------------------------------------
    # Market snapshot service
    # ------------------------------------------------------------------

    async def list_coins(self) -> list[CoinSnapshot]:
        body = await self._get("/api/coins")
        raw = body.get("coins")
        if not isinstance(raw, list):
            raise MarketApiError("GET /api/coins: missing coin list")
        coins = [parse_coin(c) for c in raw]
        return [c for c in coins if c is not None]

    async def get_coin(self, symbol: str) -> CoinSnapshot:
        body = await self._get(f"/api/coins/{quote(symbol, safe='')}")
        coin = parse_coin(body.get("coin"))
        if coin is None:
            raise MarketApiError(f"coin {symbol} not found")
        return coin

    async def get_coin_history(self, symbol: str, hours: int = 24) -> list[Candle]:
        body = await self._get(
            f"/api/coins/{quote(symbol, safe='')}/history", hours=int(hours),
        )
        return parse_series(body.get("series"))

    # ------------------------------------------------------------------
    # Trade execution service
    # ------------------------------------------------------------------

    async def buy(self, symbol: str, usd_amount: float) -> TradeResult:
        return await self._trade(
            "/api/trade/buy", {"symbol": symbol, "usdAmount": usd_amount},
            key="bought", usd_field="usdSpent",
        )

    async def sell(self, symbol: str, token_amount: float) -> TradeResult:
        return await self._trade(
            "/api/trade/sell", {"symbol": symbol, "tokenAmount": token_amount},
            key="sold", usd_field="usdGained",
        )

    async def _trade(self, path: str, payload: dict, key: str, usd_field: str) -> TradeResult:
        try:
            status, body = await self._request("POST", path, data=orjson.dumps(payload))
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning("POST %s failed: %s", path, e)
            return TradeResult(ok=False, error=str(e) or "network_error")

        if not isinstance(body, dict):
            return TradeResult(ok=False, error="invalid_json_response")
        if not body.get("ok"):
            return TradeResult(ok=False, error=str(body.get("error") or f"HTTP {status}"))

        fill = body.get(key)
        if not isinstance(fill, dict):
            fill = {}
        return TradeResult(
            ok=True,
            token_amount=to_float(fill.get("tokenAmount")) or 0.0,
            usd_amount=to_float(fill.get(usd_field)) or 0.0,
        )
