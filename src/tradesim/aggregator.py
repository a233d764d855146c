"""Candle aggregation — one live OHLCV series per chart slot."""

from __future__ import annotations

import bisect
from collections.abc import Iterable
from dataclasses import replace
from typing import TYPE_CHECKING

from loguru import logger

from tradesim.normalize import sort_and_dedupe
from tradesim.models import Candle, Tick
from tradesim.timeframes import bucket_for, next_bucket, timeframe_ms

if TYPE_CHECKING:
    from tradesim.store import StateStore

_log = logger.bind(component="aggregator")


class CandleAggregator:
    """Owns the series for one (symbol, timeframe) and keeps its last bar live.

    Ticks are applied in arrival order and bucketed in phase with the bars
    already held, so history that opens at 14:30 or at exchange-local
    midnight keeps its alignment. A tick in the last bar's bucket
    updates it; a later bucket opens a new bar seeded at the tick price. A
    tick older than the last bar is dropped (``late_tick_policy="discard"``)
    or widens the high/low of the bar it falls in (``"rewrite"``).

    The series never holds more than *max_candles* bars: live appends evict
    from the front, backward pages stop once the cap is reached.
    """

    def __init__(
        self,
        slot_id: str,
        timeframe: str,
        store: StateStore | None = None,
        *,
        max_candles: int = 5000,
        late_tick_policy: str = "discard",
        fill_gaps: bool = False,
    ) -> None:
        if late_tick_policy not in ("discard", "rewrite"):
            raise ValueError(f"unknown late tick policy: {late_tick_policy}")
        self.slot_id = slot_id
        self.timeframe = timeframe
        self.interval = timeframe_ms(timeframe)
        self.store = store
        self.max_candles = max_candles
        self.late_tick_policy = late_tick_policy
        self.fill_gaps = fill_gaps
        self._candles: list[Candle] = []

    @property
    def candles(self) -> tuple[Candle, ...]:
        return tuple(self._candles)

    @property
    def last(self) -> Candle | None:
        return self._candles[-1] if self._candles else None

    def oldest_time(self) -> int | None:
        return self._candles[0].time if self._candles else None

    def __len__(self) -> int:
        return len(self._candles)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def load(self, candles: Iterable[Candle]) -> None:
        """Replace the series with a fresh history batch."""
        self._candles = sort_and_dedupe(candles)[-self.max_candles:]
        self._publish()

    def merge(self, candles: Iterable[Candle]) -> None:
        """Fold a refreshed batch into the series.

        The batch replaces every held bar inside the span it covers, so live
        bars opened off-phase (before history arrived, or across a DST shift)
        give way to the provider's bars. Held bars outside that span stay.
        """
        fresh = sort_and_dedupe(candles)
        if not fresh:
            return
        first, last = fresh[0].time, fresh[-1].time
        before = [c for c in self._candles if c.time < first]
        after = [c for c in self._candles if c.time > last]
        self._candles = (before + fresh + after)[-self.max_candles:]
        self._publish()

    def prepend(self, older: Iterable[Candle]) -> int:
        """Add bars older than the current oldest bar. Returns how many were added."""
        oldest = self.oldest_time()
        fresh = sort_and_dedupe(older)
        if oldest is not None:
            fresh = [c for c in fresh if c.time < oldest]
        room = self.max_candles - len(self._candles)
        if room <= 0 or not fresh:
            return 0
        fresh = fresh[-room:]
        self._candles = fresh + self._candles
        self._publish()
        return len(fresh)

    def needs_backfill(self, first_visible: int, margin_bars: int = 20) -> bool:
        """True when the visible range starts within *margin_bars* of the oldest bar."""
        oldest = self.oldest_time()
        if oldest is None or len(self._candles) >= self.max_candles:
            return False
        return first_visible - oldest <= margin_bars * self.interval

    # ------------------------------------------------------------------
    # Live ticks
    # ------------------------------------------------------------------

    def on_tick(self, tick: Tick) -> Candle | None:
        """Fold *tick* into the series. Returns the bar it touched, or None if dropped."""
        price = tick.price
        last = self.last
        bucket = bucket_for(tick.time, self.timeframe, last.time if last is not None else None)

        if last is None or bucket > last.time:
            if last is not None and self.fill_gaps:
                t = next_bucket(last.time, self.timeframe)
                while t < bucket:
                    self._candles.append(
                        Candle(t, last.close, last.close, last.close, last.close, 0.0)
                    )
                    t = next_bucket(t, self.timeframe)
            bar = Candle(bucket, price, price, price, price, 0.0)
            self._candles.append(bar)
            if len(self._candles) > self.max_candles:
                del self._candles[: len(self._candles) - self.max_candles]
        elif bucket == last.time:
            bar = replace(
                last,
                high=max(last.high, price),
                low=min(last.low, price),
                close=price,
            )
            self._candles[-1] = bar
        else:
            bar = self._late_tick(bucket, price)
            if bar is None:
                return None

        self._publish()
        return bar

    def _late_tick(self, bucket: int, price: float) -> Candle | None:
        if self.late_tick_policy == "discard":
            _log.debug(f"{self.slot_id}: dropped late tick for bucket {bucket}")
            return None
        times = [c.time for c in self._candles]
        idx = bisect.bisect_left(times, bucket)
        if idx >= len(times) or times[idx] != bucket:
            return None
        old = self._candles[idx]
        bar = replace(old, high=max(old.high, price), low=min(old.low, price))
        self._candles[idx] = bar
        return bar

    def _publish(self) -> None:
        if self.store is not None:
            self.store.set_candles(self.slot_id, self.candles)
