import pytest

from market_viewer.types import Candle
from market_viewer.ui.coin_view import format_price, format_qty, parse_amount, render_chart


@pytest.mark.parametrize("text,expected", [
    ("10", 10.0),
    (" 2.5 ", 2.5),
    ("0", None),
    ("-3", None),
    ("abc", None),
    ("", None),
    ("nan", None),
    ("inf", None),
])
def test_parse_amount(text, expected):
    assert parse_amount(text) == expected


def test_formatting():
    assert format_price(None) == "-"
    assert format_price(0.1) == "0.100000"
    assert format_qty(2_500_000) == "2.50M"
    assert format_qty(1500) == "1.5K"
    assert format_qty(0.5) == "0.500000"


def test_render_chart_fits_height():
    candles = [Candle(i, 1.0 + i, 2.0 + i, 0.5 + i, 1.5 + i) for i in range(50)]
    text = render_chart(candles, width=32, height=8)

    lines = text.plain.split("\n")
    assert len(lines) == 8
    assert "51.000000" in lines[0]
    assert "30.500000" in lines[-1]


def test_render_chart_flat_series():
    text = render_chart([Candle(0, 1.0, 1.0, 1.0, 1.0)], width=20, height=5)
    assert len(text.plain.split("\n")) == 5
    assert "1.000000" in text.plain


def test_render_chart_empty():
    assert "No history" in render_chart([], 40, 10).plain
