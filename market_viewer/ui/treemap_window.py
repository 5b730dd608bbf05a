"""
Market treemap GUI using PyQt6 - pops out as a standalone window.

Tile size follows 24h volume, colour follows 24h price change. Hover for
details, click to select a coin.

The feed runs on its own asyncio loop in a background thread; the window
only drains the thread-safe snapshot queue and hands suspend/resume back
to the loop with call_soon_threadsafe.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import sys
from datetime import datetime
from typing import TYPE_CHECKING

from PyQt6.QtCore import QEvent, QRectF, Qt, QTimer, pyqtSignal
from PyQt6.QtGui import QColor, QFont, QMouseEvent, QPainter, QPaintEvent, QPen
from PyQt6.QtWidgets import (
    QApplication, QLabel, QMainWindow, QToolTip, QVBoxLayout, QWidget,
)

from ..engine.treemap import change_color, squarify

if TYPE_CHECKING:
    from ..datafeed.market_client import MarketFeed
    from ..types import LayoutRect, MarketItem, MarketSnapshot

logger = logging.getLogger(__name__)

# Colors
BG_COLOR = QColor(6, 8, 15)
HEADER_BG = QColor(30, 41, 59)
TEXT_COLOR = QColor(230, 240, 255)
BORDER_COLOR = QColor(0, 0, 0, 90)

# Layout
INNER_PADDING = 10
TILE_GAP = 6
SMALL_TILE_W = 70
SMALL_TILE_H = 48


def format_volume(volume: float) -> str:
    if volume >= 1_000_000:
        return f"${volume/1_000_000:.1f}M"
    if volume >= 1000:
        return f"${volume/1000:.1f}K"
    return f"${volume:.2f}"


class TreemapWidget(QWidget):
    """Paints the squarified layout of the current market items."""

    coin_selected = pyqtSignal(str)

    def __init__(self) -> None:
        super().__init__()
        self._items: list[MarketItem] = []
        self._layout: list[LayoutRect] = []
        self.setMouseTracking(True)
        self.setMinimumSize(320, 200)

    def set_items(self, items: list[MarketItem]) -> None:
        self._items = items
        self._relayout()
        self.update()

    def _relayout(self) -> None:
        self._layout = squarify(
            self._items,
            INNER_PADDING,
            INNER_PADDING,
            max(1, self.width() - INNER_PADDING * 2),
            max(1, self.height() - INNER_PADDING * 2),
        )

    def resizeEvent(self, event) -> None:
        self._relayout()
        super().resizeEvent(event)

    def _tile_at(self, x: float, y: float) -> LayoutRect | None:
        for rect in self._layout:
            if rect.x <= x < rect.x + rect.width and rect.y <= y < rect.y + rect.height:
                return rect
        return None

    def paintEvent(self, event: QPaintEvent) -> None:
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        painter.fillRect(self.rect(), BG_COLOR)

        if not self._layout:
            painter.setPen(TEXT_COLOR)
            painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, "Loading market data...")
            painter.end()
            return

        for rect in self._layout:
            w = max(1.0, rect.width - TILE_GAP)
            h = max(1.0, rect.height - TILE_GAP)
            tile = QRectF(rect.x + TILE_GAP / 2, rect.y + TILE_GAP / 2, w, h)
            radius = min(10.0, round(min(w, h) * 0.08))

            painter.setPen(QPen(BORDER_COLOR, 1))
            painter.setBrush(QColor(*change_color(rect.item.change_pct)))
            painter.drawRoundedRect(tile, radius, radius)

            painter.setPen(TEXT_COLOR)
            item = rect.item
            if w < SMALL_TILE_W or h < SMALL_TILE_H:
                symbol = item.symbol if len(item.symbol) <= 10 else item.symbol[:9] + "…"
                painter.setFont(QFont("Consolas", max(7, min(11, round(w / 6))), QFont.Weight.Bold))
                painter.drawText(tile.adjusted(6, 2, -2, -2), Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignTop, symbol)
                continue

            sign = "+" if item.change_pct >= 0 else ""
            title_size = max(10, min(18, round(w / 8)))
            sub_size = max(9, min(13, round(w / 12)))
            top_half = QRectF(tile.x(), tile.y(), tile.width(), tile.height() / 2)
            bottom_half = QRectF(tile.x(), tile.center().y(), tile.width(), tile.height() / 2)

            painter.setFont(QFont("Consolas", title_size, QFont.Weight.ExtraBold))
            painter.drawText(top_half, Qt.AlignmentFlag.AlignHCenter | Qt.AlignmentFlag.AlignBottom, item.symbol)
            painter.setFont(QFont("Consolas", sub_size, QFont.Weight.Bold))
            painter.drawText(
                bottom_half,
                Qt.AlignmentFlag.AlignHCenter | Qt.AlignmentFlag.AlignTop,
                f"{sign}{item.change_pct:.2f}% · {format_volume(item.weight)}",
            )

        painter.end()

    def mouseMoveEvent(self, event: QMouseEvent) -> None:
        pos = event.position()
        rect = self._tile_at(pos.x(), pos.y())
        if rect is None:
            QToolTip.hideText()
            return
        item = rect.item
        sign = "+" if item.change_pct >= 0 else ""
        QToolTip.showText(
            event.globalPosition().toPoint(),
            f"{item.symbol} · {item.name}\n"
            f"Price: ${item.price:.6f}\n"
            f"{sign}{item.change_pct:.2f}%\n"
            f"24h Volume: {format_volume(item.weight)}",
            self,
        )

    def mousePressEvent(self, event: QMouseEvent) -> None:
        pos = event.position()
        rect = self._tile_at(pos.x(), pos.y())
        if rect is not None:
            self.coin_selected.emit(rect.item.symbol)


class TreemapWindow(QMainWindow):
    """Main treemap window."""

    def __init__(
        self,
        snapshot_queue: queue.Queue,
        feed: MarketFeed | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__()
        self.snapshot_queue = snapshot_queue
        self._feed = feed
        self._loop = loop

        self.setWindowTitle("Market Treemap")
        self.setMinimumSize(900, 600)
        self.setStyleSheet(f"background-color: {BG_COLOR.name()}; color: {TEXT_COLOR.name()};")

        self._setup_ui()
        self._setup_timer()

    def _setup_ui(self) -> None:
        """Build the UI."""
        central = QWidget()
        self.setCentralWidget(central)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(10, 10, 10, 10)

        self.header = QLabel("Connecting...")
        self.header.setFont(QFont("Consolas", 13, QFont.Weight.Bold))
        self.header.setStyleSheet(f"background-color: {HEADER_BG.name()}; padding: 8px;")
        layout.addWidget(self.header)

        self.treemap = TreemapWidget()
        self.treemap.coin_selected.connect(self._on_coin_selected)
        layout.addWidget(self.treemap, stretch=1)

    def _setup_timer(self) -> None:
        """Setup timer to poll snapshot queue."""
        self.timer = QTimer()
        self.timer.timeout.connect(self._poll_snapshots)
        self.timer.start(100)

    def _poll_snapshots(self) -> None:
        """Drain the thread-safe queue, keep only the latest snapshot."""
        latest = None
        while True:
            try:
                latest = self.snapshot_queue.get_nowait()
            except queue.Empty:
                break

        if latest is not None:
            self._update_display(latest)

    def _update_display(self, snap: MarketSnapshot) -> None:
        updated = datetime.fromtimestamp(snap.timestamp_ms / 1000).strftime("%H:%M")
        self.header.setText(
            f"  Market Treemap  │  Coins: {len(snap.items)}  │  "
            f"Stream: {snap.connection}  │  Last: {updated}"
        )
        self.treemap.set_items(snap.items)

    def _on_coin_selected(self, symbol: str) -> None:
        logger.info("Selected %s", symbol)
        self.header.setText(f"  Selected {symbol}  │  run: market-viewer {symbol}")

    def _call_feed(self, method: str) -> None:
        if self._feed is None or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(getattr(self._feed, method))

    def changeEvent(self, event: QEvent) -> None:
        """Suspend the feed while minimised, resume when restored."""
        if event.type() == QEvent.Type.WindowStateChange:
            self._call_feed("suspend" if self.isMinimized() else "resume")
        super().changeEvent(event)


def run_gui(
    snapshot_queue: queue.Queue,
    feed: MarketFeed | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> None:
    """Run the GUI application (blocking)."""
    app = QApplication(sys.argv)
    app.setStyle("Fusion")

    window = TreemapWindow(snapshot_queue, feed, loop)
    window.show()

    app.exec()
