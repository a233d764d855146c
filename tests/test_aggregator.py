"""Unit tests for CandleAggregator."""

import random

import pytest

from tradesim.aggregator import CandleAggregator
from tradesim.models import Candle, Tick

T0 = 1_700_000_040_000  # minute boundary
MIN = 60_000


def bar(i, price=100.0):
    return Candle(T0 + i * MIN, price, price + 1, price - 1, price, 1.0)


def test_ticks_within_one_bucket_keep_ohlc_bounds():
    agg = CandleAggregator("s1", "1m")
    rng = random.Random(7)
    prices = [rng.uniform(90, 110) for _ in range(200)]
    for n, price in enumerate(prices):
        agg.on_tick(Tick(price, T0 + n * 100))

    assert len(agg) == 1
    candle = agg.last
    assert candle.open == prices[0]
    assert candle.close == prices[-1]
    assert candle.high == max(prices)
    assert candle.low == min(prices)
    assert candle.high >= max(candle.open, candle.close)
    assert candle.low <= min(candle.open, candle.close)


def test_boundary_crossing_opens_new_bar_with_zero_volume():
    agg = CandleAggregator("s1", "1m")
    agg.load([bar(0)])
    agg.on_tick(Tick(105.0, T0 + MIN + 5))
    assert len(agg) == 2
    assert agg.last == Candle(T0 + MIN, 105.0, 105.0, 105.0, 105.0, 0.0)


def test_late_tick_discarded_by_default():
    agg = CandleAggregator("s1", "1m")
    agg.load([bar(0), bar(1)])
    before = agg.candles
    assert agg.on_tick(Tick(500.0, T0 + 10)) is None
    assert agg.candles == before


def test_late_tick_rewrite_widens_only_high_low():
    agg = CandleAggregator("s1", "1m", late_tick_policy="rewrite")
    agg.load([bar(0), bar(1)])
    agg.on_tick(Tick(500.0, T0 + 10))
    first = agg.candles[0]
    assert first.high == 500.0
    assert first.open == 100.0 and first.close == 100.0
    assert agg.candles[1] == bar(1)


def test_unknown_late_tick_policy():
    with pytest.raises(ValueError):
        CandleAggregator("s1", "1m", late_tick_policy="reorder")


def test_fill_gaps_inserts_flat_bars():
    agg = CandleAggregator("s1", "1m", fill_gaps=True)
    agg.load([bar(0, price=100.0)])
    agg.on_tick(Tick(103.0, T0 + 3 * MIN + 1))
    times = [c.time for c in agg.candles]
    assert times == [T0 + i * MIN for i in range(4)]
    assert agg.candles[1] == Candle(T0 + MIN, 100.0, 100.0, 100.0, 100.0, 0.0)


def test_merge_is_strictly_increasing_without_duplicates():
    agg = CandleAggregator("s1", "1m")
    agg.load([bar(i) for i in range(5, 10)])
    agg.merge([bar(i, price=200.0) for i in range(0, 7)])
    times = [c.time for c in agg.candles]
    assert times == sorted(set(times))
    assert len(times) == 10
    assert agg.candles[5].close == 200.0  # incoming wins on overlap


def test_prepend_filters_overlap():
    agg = CandleAggregator("s1", "1m")
    agg.load([bar(i) for i in range(10, 20)])
    added = agg.prepend([bar(i, price=50.0) for i in range(0, 15)])
    assert added == 10
    times = [c.time for c in agg.candles]
    assert times == [T0 + i * MIN for i in range(20)]
    assert agg.candles[10].close == 100.0  # existing bars untouched


def test_max_candles_caps_prepend_and_evicts_on_append():
    agg = CandleAggregator("s1", "1m", max_candles=5)
    agg.load([bar(i) for i in range(10, 13)])
    assert agg.prepend([bar(i) for i in range(0, 10)]) == 2
    assert agg.oldest_time() == T0 + 8 * MIN
    assert agg.prepend([bar(i) for i in range(0, 5)]) == 0

    agg.on_tick(Tick(101.0, T0 + 13 * MIN))
    assert len(agg) == 5
    assert agg.oldest_time() == T0 + 9 * MIN


def test_needs_backfill():
    agg = CandleAggregator("s1", "1m")
    agg.load([bar(i) for i in range(100)])
    assert agg.needs_backfill(T0 + 10 * MIN)
    assert not agg.needs_backfill(T0 + 50 * MIN)


def test_publishes_to_store(store):
    store.put_slot("s1", "BTCUSDT", "1m")
    agg = CandleAggregator("s1", "1m", store)
    agg.load([bar(0)])
    agg.on_tick(Tick(102.0, T0 + 30_000))
    assert store.slot("s1").candles == agg.candles
    assert store.slot("s1").candles[-1].close == 102.0


# Provider-aligned history. D0 is Tuesday 2023-11-14 00:00 UTC.
D0 = 1_699_920_000_000
HOUR = 3_600_000
DAY = 24 * HOUR


def test_tick_folds_into_daily_bar_opening_at_exchange_midnight():
    agg = CandleAggregator("s1", "1d")
    agg.load([Candle(D0 + 5 * HOUR, 100.0, 101.0, 99.0, 100.0, 10.0)])
    touched = agg.on_tick(Tick(104.0, D0 + 15 * HOUR))
    assert touched is not None
    assert len(agg) == 1
    assert agg.last.close == 104.0 and agg.last.high == 104.0

    agg.on_tick(Tick(98.0, D0 + DAY + 15 * HOUR))
    assert [c.time for c in agg.candles] == [D0 + 5 * HOUR, D0 + DAY + 5 * HOUR]


def test_half_hour_phase_survives_ticks_and_refresh():
    start = D0 + 14 * HOUR + 30 * MIN
    agg = CandleAggregator("s1", "1h")
    agg.load([Candle(start, 100.0, 101.0, 99.0, 100.0, 5.0)])
    agg.on_tick(Tick(102.0, D0 + 15 * HOUR + 10 * MIN))
    agg.on_tick(Tick(103.0, D0 + 15 * HOUR + 40 * MIN))
    agg.merge([
        Candle(start, 100.0, 102.5, 99.0, 102.0, 6.0),
        Candle(start + HOUR, 102.0, 103.0, 101.0, 103.0, 2.0),
    ])
    assert [c.time for c in agg.candles] == [start, start + HOUR]
    assert agg.last.volume == 2.0


def test_weekly_bar_opening_monday_takes_midweek_ticks():
    monday = D0 - DAY
    agg = CandleAggregator("s1", "1w")
    agg.load([Candle(monday, 100.0, 101.0, 99.0, 100.0, 1.0)])
    assert agg.on_tick(Tick(105.0, D0 + HOUR)) is not None
    assert agg.on_tick(Tick(106.0, D0 + 3 * DAY)) is not None
    assert len(agg) == 1
    assert agg.last.close == 106.0


def test_weekly_bar_without_history_opens_on_monday():
    agg = CandleAggregator("s1", "1w")
    agg.on_tick(Tick(100.0, D0 + HOUR))
    assert agg.last.time == D0 - DAY


def test_merge_drops_off_phase_live_bars_inside_refreshed_span():
    agg = CandleAggregator("s1", "1h")
    agg.on_tick(Tick(100.0, D0 + 15 * HOUR + 10 * MIN))  # history failed: UTC phase
    assert agg.last.time == D0 + 15 * HOUR
    agg.merge([
        Candle(D0 + 13 * HOUR + 30 * MIN, 99.0, 100.0, 98.0, 99.5, 1.0),
        Candle(D0 + 14 * HOUR + 30 * MIN, 99.5, 101.0, 99.0, 100.5, 1.0),
        Candle(D0 + 15 * HOUR + 30 * MIN, 100.5, 101.0, 100.0, 100.0, 1.0),
    ])
    offsets = [(c.time - D0) / HOUR for c in agg.candles]
    assert offsets == [13.5, 14.5, 15.5]
