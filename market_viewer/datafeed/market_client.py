"""
Feed orchestration for the coin and treemap views.

Handles:
1. REST snapshot + history load for the initial coin view state
2. Live trade stream folded into the coin state (candles, tape, pool)
3. Periodic snapshot refresh as a polling fallback
4. Trade execution against the authoritative service (no optimistic updates)
5. Full-market refresh for the treemap, triggered by trades and by timer

Both feeds push render-ready snapshots to a bounded, thread-safe queue;
when the UI falls behind the oldest snapshot is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import queue
from collections.abc import Callable

from .api_client import MarketApiClient, MarketApiError
from .messages import now_ms
from .stream import StreamConnection, Transport
from ..engine.coin_state import CoinTracker
from ..engine.treemap import market_items
from ..settings import Settings
from ..types import (
    ConnectionPhase,
    ConnectionState,
    CoinViewSnapshot,
    MarketItem,
    MarketSnapshot,
    Quote,
    TradeEvent,
    TradeResult,
)

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]

_IDLE = ConnectionState(ConnectionPhase.CLOSED)


def _push_latest(q: queue.Queue, item: object) -> None:
    """Non-blocking put; drops the oldest entry when the queue is full."""
    try:
        q.put_nowait(item)
    except queue.Full:
        try:
            q.get_nowait()
        except queue.Empty:
            pass
        try:
            q.put_nowait(item)
        except queue.Full:
            logger.debug("Snapshot queue still full, dropping snapshot")


class CoinFeed:
    """
    Live state for one coin view.

    Usage:
        feed = CoinFeed(api, transport_factory, "DOGE", settings)
        await feed.start()
        ...
        await feed.switch_symbol("PEPE")
        ...
        await feed.close()
    """

    def __init__(
        self,
        api: MarketApiClient,
        transport_factory: TransportFactory,
        symbol: str,
        settings: Settings | None = None,
    ) -> None:
        self.api = api
        self.settings = settings or Settings()
        self._transport_factory = transport_factory

        self.tracker = CoinTracker(symbol, recent_trades=self.settings.recent_trades)
        self._connection: StreamConnection | None = None
        self.last_error: str | None = None

        # Output queue for UI - thread-safe so a GUI thread can drain it too
        self.snapshot_queue: queue.Queue[CoinViewSnapshot] = queue.Queue(maxsize=5)

    @property
    def symbol(self) -> str:
        return self.tracker.symbol

    @property
    def connection(self) -> ConnectionState:
        return self._connection.state if self._connection is not None else _IDLE

    async def start(self) -> None:
        """Load snapshot + history, then subscribe to the live stream."""
        await self._load(self.symbol)
        self._open_stream()
        self._push_snapshot()

    async def switch_symbol(self, symbol: str) -> None:
        """
        Move the view to another coin.

        The old subscription is torn down before anything else so no trade
        for the previous symbol can land in the new state.
        """
        old, self._connection = self._connection, None
        if old is not None:
            old.close()
        self.tracker.reset(symbol)
        self._push_snapshot()
        if old is not None:
            await old.wait_closed()
        await self.start()

    async def close(self) -> None:
        conn, self._connection = self._connection, None
        if conn is not None:
            conn.close()
            await conn.wait_closed()

    def suspend(self) -> None:
        if self._connection is not None:
            self._connection.suspend()

    def resume(self) -> None:
        if self._connection is not None:
            self._connection.resume()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _load(self, symbol: str) -> None:
        try:
            coin = await self.api.get_coin(symbol)
        except MarketApiError as e:
            logger.warning("Could not load coin %s: %s", symbol, e)
            self.last_error = str(e)
        else:
            if symbol == self.symbol:
                self.tracker.load_coin(coin)

        try:
            series = await self.api.get_coin_history(symbol, self.settings.history_hours)
        except MarketApiError as e:
            logger.warning("Could not load history for %s: %s", symbol, e)
            series = []
        if symbol == self.symbol:
            self.tracker.load_history(series)

    async def refresh_coin(self) -> None:
        """Re-fetch the coin snapshot (polling fallback)."""
        symbol = self.symbol
        try:
            coin = await self.api.get_coin(symbol)
        except MarketApiError as e:
            logger.warning("Coin refresh for %s failed: %s", symbol, e)
            return
        if symbol == self.symbol:
            self.tracker.load_coin(coin)
            self._push_snapshot()

    def _open_stream(self) -> None:
        self._connection = StreamConnection(
            self._transport_factory(),
            self._on_trade,
            on_state=self._on_state,
            poll=self.refresh_coin,
            poll_interval=self.settings.coin_poll_sec,
            name=f"coin:{self.symbol}",
        )
        self._connection.open()

    def _on_trade(self, event: TradeEvent) -> None:
        """HOT PATH - called for every trade on the stream."""
        if self.tracker.apply_trade(event):
            self._push_snapshot()

    def _on_state(self, state: ConnectionState) -> None:
        self._push_snapshot(state)

    # ------------------------------------------------------------------
    # Quotes and trades
    # ------------------------------------------------------------------

    def quote_buy(self, usd_in: float) -> Quote | None:
        return self.tracker.quote_buy(usd_in)

    def quote_sell(self, token_in: float) -> Quote | None:
        return self.tracker.quote_sell(token_in)

    async def buy(self, usd_amount: float) -> TradeResult:
        if not usd_amount or usd_amount <= 0:
            return TradeResult(ok=False, error="invalid_amount")
        result = await self.api.buy(self.symbol, usd_amount)
        return await self._after_trade("buy", result)

    async def sell(self, token_amount: float) -> TradeResult:
        if not token_amount or token_amount <= 0:
            return TradeResult(ok=False, error="invalid_amount")
        result = await self.api.sell(self.symbol, token_amount)
        return await self._after_trade("sell", result)

    async def _after_trade(self, side: str, result: TradeResult) -> TradeResult:
        if result.ok:
            logger.info(
                "%s %s: %.6f tokens for $%.2f",
                side, self.symbol, result.token_amount, result.usd_amount,
            )
            await self.refresh_coin()
        else:
            logger.info("%s %s rejected: %s", side, self.symbol, result.error)
        return result

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def snapshot(self, state: ConnectionState | None = None) -> CoinViewSnapshot:
        tracker = self.tracker
        return CoinViewSnapshot(
            symbol=tracker.symbol,
            coin=tracker.coin,
            candles=tracker.candles.candles,
            recent_trades=tracker.trades.to_list(),
            connection=state or self.connection,
            price_move=tracker.price_move,
            timestamp_ms=now_ms(),
        )

    def _push_snapshot(self, state: ConnectionState | None = None) -> None:
        _push_latest(self.snapshot_queue, self.snapshot(state))


class MarketFeed:
    """
    Full-market snapshots for the treemap view.

    Usage:
        feed = MarketFeed(api, transport_factory, settings)
        await feed.run()     # until feed.stop()
    """

    def __init__(
        self,
        api: MarketApiClient,
        transport_factory: TransportFactory,
        settings: Settings | None = None,
    ) -> None:
        self.api = api
        self.settings = settings or Settings()
        self._transport_factory = transport_factory

        self.items: list[MarketItem] = []
        self._connection: StreamConnection | None = None
        self._refresh_task: asyncio.Task | None = None
        self._refresh_again = False
        self._stop: asyncio.Event | None = None
        self._stop_requested = False

        self.snapshot_queue: queue.Queue[MarketSnapshot] = queue.Queue(maxsize=5)

    @property
    def connection(self) -> ConnectionState:
        return self._connection.state if self._connection is not None else _IDLE

    async def refresh(self) -> None:
        """Reload the whole market. A failed load empties the treemap."""
        try:
            coins = await self.api.list_coins()
        except MarketApiError as e:
            logger.warning("Market refresh failed: %s", e)
            coins = []
        self.items = market_items(coins)
        self._push_snapshot()

    def request_refresh(self) -> None:
        """Coalescing refresh: at most one running plus one queued."""
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_again = True
            return
        self._refresh_again = False
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        while True:
            await self.refresh()
            if not self._refresh_again:
                break
            self._refresh_again = False

    async def _poll_refresh(self) -> None:
        """Timer refresh, routed through the same single in-flight task."""
        self.request_refresh()
        task = self._refresh_task
        if task is not None:
            await asyncio.shield(task)

    def _on_trade(self, event: TradeEvent) -> None:
        self.request_refresh()

    def _on_state(self, state: ConnectionState) -> None:
        self._push_snapshot(state)

    def start(self) -> None:
        """Open the stream and kick off the first refresh."""
        self._connection = StreamConnection(
            self._transport_factory(),
            self._on_trade,
            on_state=self._on_state,
            poll=self._poll_refresh,
            poll_interval=self.settings.treemap_refresh_sec,
            name="market",
        )
        self._connection.open()
        self.request_refresh()

    async def run(self) -> None:
        """Run until stop() is called, then tear everything down."""
        self._stop = asyncio.Event()
        if self._stop_requested:
            return
        self.start()
        try:
            await self._stop.wait()
        finally:
            await self.close()

    def stop(self) -> None:
        """Signal run() to finish. Must be called on the loop thread."""
        self._stop_requested = True
        if self._stop is not None:
            self._stop.set()

    async def close(self) -> None:
        conn, self._connection = self._connection, None
        if conn is not None:
            conn.close()
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
        if conn is not None:
            await conn.wait_closed()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def suspend(self) -> None:
        if self._connection is not None:
            self._connection.suspend()

    def resume(self) -> None:
        if self._connection is not None:
            self._connection.resume()

    def _push_snapshot(self, state: ConnectionState | None = None) -> None:
        _push_latest(self.snapshot_queue, MarketSnapshot(
            items=list(self.items),
            connection=state or self.connection,
            timestamp_ms=now_ms(),
        ))
