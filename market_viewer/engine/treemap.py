"""
Squarified treemap layout for the market overview.

Tile area is proportional to weight (24h volume), colour follows the 24h
price change.

The row selection is greedy: items are added to the current row one at a
time and the row is closed at the first item that does not strictly
improve the worst aspect ratio. This is not the globally optimal squarify
and must stay that way, otherwise tiles move between refreshes.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from ..types import CoinSnapshot, LayoutRect, MarketItem

# Longest row the greedy search will consider
MAX_ROW_ITEMS = 30

# Pseudo-coin that is not part of the tradable market
EXCLUDED_SYMBOLS = frozenset({"COMMUNITY"})

# Floor so that idle coins still get a visible tile
MIN_WEIGHT = 0.01

# |change| at which tile colour saturates
COLOR_SATURATION_PCT = 15.0
NEUTRAL_COLOR = (71, 85, 105)


def worst_ratio(areas: Sequence[float], width: float, height: float) -> float:
    """
    Worst aspect ratio of a candidate row laid along the shorter side.

    `width`/`height` describe the free rectangle the row would be placed in.
    """
    total = sum(areas)
    if total <= 0:
        return math.inf

    if width >= height:
        thickness = total / height
        side = height
    else:
        thickness = total / width
        side = width

    worst = 0.0
    for area in areas:
        length = area / total * side
        if length <= 0:
            return math.inf
        ratio = thickness / length
        worst = max(worst, ratio, 1 / ratio)
    return worst


def _weight(item: MarketItem) -> float:
    w = item.weight
    return w if w > 0 and math.isfinite(w) else 0.0


def _best_row(areas: Sequence[float], width: float, height: float) -> int:
    """Length of the greedy prefix of `areas` to lay out as the next row."""
    if len(areas) <= 1:
        return len(areas)

    best_len = 1
    best = worst_ratio(areas[:1], width, height)
    for n in range(2, min(len(areas), MAX_ROW_ITEMS) + 1):
        ratio = worst_ratio(areas[:n], width, height)
        if ratio < best:
            best = ratio
            best_len = n
        else:
            break
    return best_len


def squarify(
    items: Iterable[MarketItem],
    x: float,
    y: float,
    width: float,
    height: float,
) -> list[LayoutRect]:
    """
    Partition the rectangle (x, y, width, height) proportionally to weight.

    Returns one LayoutRect per input item, largest weights first. Zero
    weight items get a zero-area rect. An empty, all-zero or degenerate
    input returns an empty list.
    """
    ordered = sorted(items, key=_weight, reverse=True)
    total = sum(_weight(it) for it in ordered)
    if not ordered or total <= 0 or width <= 0 or height <= 0:
        return []

    scale = width * height / total
    positive = [it for it in ordered if _weight(it) > 0]
    zero = ordered[len(positive):]
    areas = [it.weight * scale for it in positive]

    result: list[LayoutRect] = []
    cur_x, cur_y = x, y
    free_w, free_h = width, height
    start = 0

    while start < len(positive):
        if free_w <= 0 or free_h <= 0:
            break
        n = _best_row(areas[start:], free_w, free_h)
        row_items = positive[start:start + n]
        row_areas = areas[start:start + n]
        row_area = sum(row_areas)

        if free_w >= free_h:
            # Vertical column on the left, items stacked top to bottom
            row_w = row_area / free_h
            item_y = cur_y
            for item, area in zip(row_items, row_areas):
                item_h = area / row_area * free_h
                result.append(LayoutRect(item, cur_x, item_y, row_w, item_h))
                item_y += item_h
            cur_x += row_w
            free_w = max(free_w - row_w, 0.0)
        else:
            # Horizontal band on top, items left to right
            row_h = row_area / free_w
            item_x = cur_x
            for item, area in zip(row_items, row_areas):
                item_w = area / row_area * free_w
                result.append(LayoutRect(item, item_x, cur_y, item_w, row_h))
                item_x += item_w
            cur_y += row_h
            free_h = max(free_h - row_h, 0.0)

        start += n

    # Zero weights, plus anything left once rounding exhausted the box
    for item in positive[start:] + zero:
        result.append(LayoutRect(item, cur_x, cur_y, 0.0, 0.0))

    return result


def market_items(coins: Iterable[CoinSnapshot]) -> list[MarketItem]:
    """Treemap items from a full market snapshot, heaviest first."""
    items = [
        MarketItem(
            symbol=coin.symbol,
            weight=max(MIN_WEIGHT, coin.volume24h),
            change_pct=coin.change24h,
            name=coin.name,
            price=coin.price,
        )
        for coin in coins
        if coin.symbol not in EXCLUDED_SYMBOLS
    ]
    items.sort(key=lambda it: it.weight, reverse=True)
    return items


def change_color(change_pct: float) -> tuple[int, int, int]:
    """RGB tile colour: green shades up, red shades down, slate flat."""
    if not math.isfinite(change_pct) or change_pct == 0:
        return NEUTRAL_COLOR

    intensity = min(abs(change_pct) / COLOR_SATURATION_PCT, 1.0)
    if change_pct > 0:
        return (
            int(34 + intensity * 60),
            int(197 - intensity * 80),
            int(94 - intensity * 40),
        )
    return (
        int(220 - intensity * 60),
        int(38 + intensity * 30),
        int(38 + intensity * 30),
    )
