"""
Coin view TUI using Textual.

Displays:
- Top: Symbol, price (flashes on moves), 24h change, pool, stream state
- Middle: Candlestick chart of the live-merged history
- Right: Recent trades tape
- Bottom: Buy/sell inputs with live bonding-curve estimates

Performance notes:
- Snapshots are drained from the feed queue at ~10 FPS, only the latest is kept
- Chart scaling is vectorised with numpy
- Quote previews are recomputed only when an input changes or a snapshot lands
"""

from __future__ import annotations

import math
import queue
from datetime import datetime
from typing import TYPE_CHECKING

import numpy as np
from rich.console import RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Input, Static

if TYPE_CHECKING:
    from ..datafeed.market_client import CoinFeed
    from ..types import Candle, CoinViewSnapshot, Quote, TradeResult

# Color scheme (dark theme)
UP_COLOR = "#26a69a"
DOWN_COLOR = "#ef5350"
FLAT_COLOR = "#94a3b8"
PRICE_COLOR = "#f8fafc"
HEADER_COLOR = "#94a3b8"
AXIS_COLOR = "#9fb0d4"


def format_price(price: float | None) -> str:
    if price is None:
        return "-"
    return f"{price:.6f}"


def format_qty(qty: float) -> str:
    """Format quantity for display."""
    if qty >= 1_000_000:
        return f"{qty/1_000_000:.2f}M"
    elif qty >= 1000:
        return f"{qty/1000:.1f}K"
    elif qty >= 1:
        return f"{qty:.2f}"
    else:
        return f"{qty:.6f}"


def format_change(pct: float) -> Text:
    sign = "+" if pct > 0 else ""
    color = UP_COLOR if pct > 0 else DOWN_COLOR if pct < 0 else FLAT_COLOR
    return Text(f"{sign}{pct:.2f}%", style=color)


def parse_amount(text: str) -> float | None:
    try:
        value = float(text.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) and value > 0 else None


def render_chart(candles: list[Candle], width: int, height: int) -> Text:
    """Draw the newest candles that fit as wick/body columns."""
    if not candles:
        return Text("No history yet...", style="dim")

    label_width = 12
    cols = max(1, width - label_width)
    height = max(3, height)
    visible = candles[-cols:]

    data = np.asarray(visible, dtype=np.float64)
    opens, highs, lows, closes = data[:, 1], data[:, 2], data[:, 3], data[:, 4]
    top = float(highs.max())
    bottom = float(lows.min())
    span = (top - bottom) or (abs(top) or 1.0)

    def to_rows(values: np.ndarray) -> np.ndarray:
        rows = np.rint((top - values) / span * (height - 1))
        return np.clip(rows, 0, height - 1).astype(int)

    r_high, r_low = to_rows(highs), to_rows(lows)
    r_open, r_close = to_rows(opens), to_rows(closes)
    colors = np.where(closes >= opens, UP_COLOR, DOWN_COLOR)

    grid = [[" "] * len(visible) for _ in range(height)]
    for i in range(len(visible)):
        body_top = min(r_open[i], r_close[i])
        body_bottom = max(r_open[i], r_close[i])
        for r in range(r_high[i], r_low[i] + 1):
            grid[r][i] = "┃" if body_top <= r <= body_bottom else "│"

    text = Text()
    for r, row in enumerate(grid):
        for i, ch in enumerate(row):
            text.append(ch, style=str(colors[i]))
        if r == 0:
            text.append(f" {format_price(top)}", style=AXIS_COLOR)
        elif r == height - 1:
            text.append(f" {format_price(bottom)}", style=AXIS_COLOR)
        if r < height - 1:
            text.append("\n")
    return text


class StatusBar(Static):
    """Status bar showing symbol, price, change, pool and stream state."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._snapshot: CoinViewSnapshot | None = None

    def update_snapshot(self, snapshot: CoinViewSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def render(self) -> RenderableType:
        if self._snapshot is None:
            return Text("Connecting...", style="dim")

        snap = self._snapshot
        coin = snap.coin
        price_style = {1: UP_COLOR, -1: DOWN_COLOR}.get(snap.price_move, PRICE_COLOR)

        result = Text()
        result.append(f" {snap.symbol} ", style="bold white on #1e40af")
        if coin is None:
            result.append("  coin unavailable", style="dim")
        else:
            result.append("  Price: ", style="dim")
            result.append(f"${format_price(coin.price)}", style=Style(color=price_style, bold=True))
            result.append("  24h: ", style="dim")
            result.append(format_change(coin.change24h))
            result.append("  Vol: ", style="dim")
            result.append(f"${format_qty(coin.volume24h)}", style="cyan")
            result.append("  Pool: ", style="dim")
            result.append(f"${format_qty(coin.pool_base)} / {format_qty(coin.pool_token)}")
        result.append("  │  ", style="dim")
        result.append(str(snap.connection), style="yellow")
        return result


class CandleChart(Static):
    """Candlestick chart widget."""

    DEFAULT_CSS = """
    CandleChart {
        width: 1fr;
        height: 100%;
        padding: 1 1;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._candles: list[Candle] = []

    def update_candles(self, candles: list[Candle]) -> None:
        self._candles = candles
        self.refresh()

    def render(self) -> RenderableType:
        size = self.content_size
        return render_chart(self._candles, size.width, size.height)


class TradesTable(Static):
    """Recent trades tape, newest first."""

    DEFAULT_CSS = """
    TradesTable {
        width: 46;
        height: 100%;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._snapshot: CoinViewSnapshot | None = None

    def update_snapshot(self, snapshot: CoinViewSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def render(self) -> RenderableType:
        if self._snapshot is None or not self._snapshot.recent_trades:
            return Text("No trades yet", style="dim")

        table = Table(
            show_header=True,
            header_style=HEADER_COLOR,
            box=None,
            padding=(0, 1),
            collapse_padding=True,
        )
        table.add_column("Time", width=8)
        table.add_column("Side", width=4)
        table.add_column("Price", justify="right", width=12)
        table.add_column("Tokens", justify="right", width=9)

        for trade in self._snapshot.recent_trades:
            when = datetime.fromtimestamp(trade.timestamp_ms / 1000).strftime("%H:%M:%S")
            side_style = UP_COLOR if trade.side == "buy" else DOWN_COLOR if trade.side == "sell" else FLAT_COLOR
            table.add_row(
                Text(when, style="dim"),
                Text(trade.side or "?", style=side_style),
                Text(format_price(trade.price)),
                Text(format_qty(trade.token_amount) if trade.token_amount is not None else ""),
            )
        return table


class TradePanel(Static):
    """Buy/sell inputs with bonding-curve estimates and the last trade result."""

    DEFAULT_CSS = """
    TradePanel {
        height: auto;
        padding: 0 2;
    }
    TradePanel Horizontal {
        height: auto;
    }
    TradePanel Input {
        width: 24;
    }
    TradePanel .estimate {
        width: 1fr;
        padding: 1 2;
    }
    """

    def compose(self) -> ComposeResult:
        with Horizontal():
            yield Input(placeholder="Buy with USD", id="buy-usd")
            yield Static("", id="buy-estimate", classes="estimate")
        with Horizontal():
            yield Input(placeholder="Sell tokens", id="sell-tokens")
            yield Static("", id="sell-estimate", classes="estimate")
        with Horizontal():
            yield Input(placeholder="Switch symbol", id="symbol")
            yield Static("", id="trade-message", classes="estimate")

    def show_estimates(self, buy: Quote | None, sell: Quote | None, symbol: str) -> None:
        buy_text = (
            Text(f"≈ {format_qty(buy.amount_out)} {symbol}  (fee ${buy.fee:.4f})", style=UP_COLOR)
            if buy is not None else Text("no quote", style="dim")
        )
        sell_text = (
            Text(f"≈ ${sell.amount_out:.4f}", style=DOWN_COLOR)
            if sell is not None else Text("no quote", style="dim")
        )
        self.query_one("#buy-estimate", Static).update(buy_text)
        self.query_one("#sell-estimate", Static).update(sell_text)

    def show_result(self, side: str, symbol: str, result: TradeResult) -> None:
        if result.ok:
            verb = "Bought" if side == "buy" else "Sold"
            message = Text(f"{verb} {result.token_amount:.6f} {symbol}", style=UP_COLOR)
        else:
            message = Text(result.error or "trade failed", style=DOWN_COLOR)
        self.query_one("#trade-message", Static).update(message)


class CoinApp(App):
    """Main coin view application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 1fr;
        padding: 1 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
    ]

    def __init__(self, feed: CoinFeed) -> None:
        super().__init__()
        self.feed = feed
        self._snapshot: CoinViewSnapshot | None = None
        self._status_bar: StatusBar | None = None
        self._chart: CandleChart | None = None
        self._trades: TradesTable | None = None
        self._panel: TradePanel | None = None

    def compose(self) -> ComposeResult:
        self._status_bar = StatusBar()
        self._chart = CandleChart()
        self._trades = TradesTable()
        self._panel = TradePanel()

        yield self._status_bar
        with Horizontal(id="main-container"):
            yield self._chart
            yield self._trades
        yield self._panel
        yield Footer()

    def on_mount(self) -> None:
        """Start polling the snapshot queue."""
        self.set_interval(0.1, self._drain_snapshots)

    def _drain_snapshots(self) -> None:
        """Drain the queue, keep only the latest snapshot."""
        latest = None
        while True:
            try:
                latest = self.feed.snapshot_queue.get_nowait()
            except queue.Empty:
                break
        if latest is None:
            return

        self._snapshot = latest
        if self._status_bar:
            self._status_bar.update_snapshot(latest)
        if self._chart:
            self._chart.update_candles(latest.candles)
        if self._trades:
            self._trades.update_snapshot(latest)
        self._update_estimates()

    def _input_amount(self, input_id: str) -> float | None:
        return parse_amount(self.query_one(input_id, Input).value)

    def _update_estimates(self) -> None:
        if self._panel is None:
            return
        usd = self._input_amount("#buy-usd")
        tokens = self._input_amount("#sell-tokens")
        self._panel.show_estimates(
            self.feed.quote_buy(usd) if usd is not None else None,
            self.feed.quote_sell(tokens) if tokens is not None else None,
            self.feed.symbol,
        )

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id in ("buy-usd", "sell-tokens"):
            self._update_estimates()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        input_id = event.input.id
        if input_id == "symbol":
            symbol = event.value.strip().upper()
            if symbol and symbol != self.feed.symbol:
                event.input.value = ""
                self.run_worker(self.feed.switch_symbol(symbol), exclusive=True, group="switch")
            return

        amount = parse_amount(event.value)
        if input_id == "buy-usd":
            # Disabled while there is no quote (empty pool or bad amount)
            if amount is None or self.feed.quote_buy(amount) is None:
                return
            self.run_worker(self._execute("buy", amount, event.input), group="trade")
        elif input_id == "sell-tokens":
            if amount is None or self.feed.quote_sell(amount) is None:
                return
            self.run_worker(self._execute("sell", amount, event.input), group="trade")

    async def _execute(self, side: str, amount: float, source: Input) -> None:
        symbol = self.feed.symbol
        if side == "buy":
            result = await self.feed.buy(amount)
        else:
            result = await self.feed.sell(amount)
        if result.ok:
            source.value = ""
        if self._panel:
            self._panel.show_result(side, symbol, result)

    async def action_refresh(self) -> None:
        """Force a snapshot refresh (bound to 'r' key)."""
        await self.feed.refresh_coin()

    def on_app_blur(self, event: events.AppBlur) -> None:
        self.feed.suspend()

    def on_app_focus(self, event: events.AppFocus) -> None:
        self.feed.resume()


async def run_ui(feed: CoinFeed) -> None:
    """Run the TUI application."""
    app = CoinApp(feed)
    await app.run_async()
