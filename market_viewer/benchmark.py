#!/usr/bin/env python3
"""
Micro-benchmark for Market Viewer hot paths.

Tests:
1. Trade message parsing throughput
2. Candle aggregation throughput
3. Quote computation throughput
4. Treemap layout speed (500 coins)

Usage:
    python -m market_viewer.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

import orjson

from .datafeed.messages import parse_trade_event
from .engine.candles import CandleAggregator
from .engine.pricing import quote_buy, quote_sell
from .engine.treemap import squarify
from .types import MarketItem, Pool, TradeEvent


def generate_mock_trades(count: int, base_price: float = 0.05) -> list[bytes]:
    """Generate raw trade payloads as they arrive on the stream."""
    base_ts = int(time.time() * 1000)
    payloads = []
    for i in range(count):
        payloads.append(orjson.dumps({
            'type': 'trade',
            'coin': 'DOGE',
            'side': 'buy' if random.random() > 0.5 else 'sell',
            'price': base_price * random.uniform(0.95, 1.05),
            'tokenAmount': random.uniform(10, 10_000),
            'usdAmount': random.uniform(1, 500),
            'pool_base': random.uniform(5_000, 50_000),
            'pool_token': random.uniform(100_000, 1_000_000),
            'created_at': base_ts + i * 250,
        }))
    return payloads


def benchmark_message_parsing(iterations: int = 100000) -> None:
    """Benchmark trade message decoding."""
    print("\n=== Trade Message Parsing Benchmark ===")

    payloads = generate_mock_trades(iterations)

    start = time.perf_counter()
    for p in payloads:
        parse_trade_event(p)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Messages parsed: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} msgs/sec")
    print(f"  Per message: {elapsed/iterations*1_000_000:.2f}µs")


def benchmark_candle_aggregation(iterations: int = 200000) -> None:
    """Benchmark candle ingestion."""
    print("\n=== Candle Aggregation Benchmark ===")

    agg = CandleAggregator()
    base_ts = int(time.time() * 1000)
    events = [
        TradeEvent(
            symbol='DOGE',
            price=0.05 * random.uniform(0.95, 1.05),
            timestamp_ms=base_ts + i * 1000,  # 1s apart
        )
        for i in range(iterations)
    ]

    start = time.perf_counter()
    for e in events:
        agg.ingest(e)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Trades ingested: {iterations:,}")
    print(f"  Candles kept: {len(agg)}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} trades/sec")
    print(f"  Per trade: {elapsed/iterations*1_000_000:.2f}µs")


def benchmark_quotes(iterations: int = 200000) -> None:
    """Benchmark buy/sell quote computation (runs on every keystroke)."""
    print("\n=== Quote Benchmark ===")

    pool = Pool(base_reserve=10_000.0, token_reserve=1_000_000.0)
    amounts = [random.uniform(0.01, 5_000) for _ in range(iterations)]

    start = time.perf_counter()
    for a in amounts:
        quote_buy(pool, a)
        quote_sell(pool, a)
    elapsed = time.perf_counter() - start

    rate = iterations * 2 / elapsed
    print(f"  Quotes: {iterations*2:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} quotes/sec")


def benchmark_treemap_layout(iterations: int = 200, coins: int = 500) -> None:
    """Benchmark squarified layout of a full market."""
    print("\n=== Treemap Layout Benchmark ===")

    items = [
        MarketItem(
            symbol=f"C{i}",
            weight=random.paretovariate(1.2) * 1000,
            change_pct=random.uniform(-30, 30),
        )
        for i in range(coins)
    ]

    # Warm up
    for _ in range(5):
        squarify(items, 10, 10, 1260, 780)

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        squarify(items, 10, 10, 1260, 780)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000

    print(f"  Coins: {coins}")
    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Max FPS possible: {1000/avg_time:,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Market Viewer Performance Benchmark")
    print("=" * 60)

    benchmark_message_parsing()
    benchmark_candle_aggregation()
    benchmark_quotes()
    benchmark_treemap_layout()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
