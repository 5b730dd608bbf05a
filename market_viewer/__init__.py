"""
Market Viewer - live client for a simulated constant-product (AMM) coin market.

Architecture:
- datafeed/: REST snapshots, trade stream subscription, feed orchestration
- engine/: Pure computations (AMM quotes, candle aggregation, treemap layout)
- ui/: Coin view (Textual TUI) and market treemap (PyQt6 window)
"""

__version__ = "0.1.0"
