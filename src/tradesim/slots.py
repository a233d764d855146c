"""Chart slots — one aggregator and one failover controller per visible chart.

Every slot keeps running while inactive; activating a slot only moves the
store's active pointer, so switching charts never refetches.
"""

from __future__ import annotations

import itertools

import aiohttp
from loguru import logger

from tradesim import registry
from tradesim.aggregator import CandleAggregator
from tradesim.config import Settings
from tradesim.failover import FailoverController
from tradesim.ledger import Ledger
from tradesim.models import Candle, ConnectionStatus, Tick, Ticker
from tradesim.store import StateStore
from tradesim.timeframes import timeframe_ms

_log = logger.bind(component="slots")


class ChartSlot:
    def __init__(
        self,
        slot_id: str,
        symbol: str,
        timeframe: str,
        *,
        store: StateStore,
        ledger: Ledger,
        settings: Settings,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        # reject unknown symbols and timeframes before anything starts
        registry.check_symbol(symbol)
        timeframe_ms(timeframe)
        self.slot_id = slot_id
        self.symbol = symbol
        self.timeframe = timeframe
        self.store = store
        self.ledger = ledger
        self.settings = settings
        self.http = http
        self.aggregator: CandleAggregator | None = None
        self.controller: FailoverController | None = None

    def _build(self) -> None:
        self.aggregator = CandleAggregator(
            self.slot_id,
            self.timeframe,
            self.store,
            max_candles=self.settings.max_candles,
            late_tick_policy=self.settings.late_tick_policy,
            fill_gaps=self.settings.fill_gaps,
        )
        self.controller = FailoverController(
            self.symbol,
            self.timeframe,
            self.settings,
            on_tick=self._on_tick,
            on_candles=self._on_candles,
            on_status=self._on_status,
            http=self.http,
        )

    def start(self) -> None:
        if self.controller is not None:
            raise RuntimeError(f"slot {self.slot_id} already started")
        self.store.put_slot(self.slot_id, self.symbol, self.timeframe)
        self._build()
        self.controller.start()

    def cancel(self) -> None:
        if self.controller is not None:
            self.controller.cancel()

    async def stop(self) -> None:
        controller, self.controller = self.controller, None
        if controller is not None:
            await controller.stop()
            self.store.set_status(self.slot_id, ConnectionStatus.DISCONNECTED)

    async def retarget(self, symbol: str | None = None, timeframe: str | None = None) -> None:
        """Switch symbol and/or timeframe. The old feed is cancelled before
        the new one starts, so the two never write to the slot together."""
        new_symbol = symbol if symbol is not None else self.symbol
        new_timeframe = timeframe if timeframe is not None else self.timeframe
        registry.check_symbol(new_symbol)
        timeframe_ms(new_timeframe)
        await self.stop()
        self.symbol, self.timeframe = new_symbol, new_timeframe
        _log.info(f"slot {self.slot_id} → {self.symbol} {self.timeframe}")
        self.start()

    async def load_older(
        self, limit: int | None = None, *, first_visible: int | None = None
    ) -> int:
        """Fetch one older page and prepend it. Returns bars added.

        With *first_visible* (open time of the leftmost bar on screen) the
        page is only fetched once the view nears the oldest loaded bar.
        """
        if self.controller is None or self.aggregator is None:
            return 0
        if first_visible is not None and not self.aggregator.needs_backfill(first_visible):
            return 0
        oldest = self.aggregator.oldest_time()
        if oldest is None or len(self.aggregator) >= self.settings.max_candles:
            return 0
        controller, aggregator = self.controller, self.aggregator
        older = await controller.load_older(oldest, limit)
        if controller is not self.controller:
            return 0  # retargeted while the page was in flight
        added = aggregator.prepend(older)
        _log.debug(f"slot {self.slot_id}: prepended {added} bars")
        return added

    # Controller callbacks

    def _on_tick(self, tick: Tick, ticker: Ticker) -> None:
        self.aggregator.on_tick(tick)
        self.store.set_ticker(self.slot_id, ticker)
        self.ledger.on_price_update(self.symbol, tick.price)

    def _on_candles(self, candles: list[Candle], initial: bool) -> None:
        if initial:
            self.aggregator.load(candles)
        else:
            self.aggregator.merge(candles)

    def _on_status(self, status: ConnectionStatus) -> None:
        self.store.set_status(self.slot_id, status)


class ChartGrid:
    """The set of chart slots, exactly one of which is active."""

    def __init__(
        self,
        store: StateStore,
        ledger: Ledger,
        settings: Settings,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.settings = settings
        self.http = http
        self.slots: dict[str, ChartSlot] = {}
        self._ids = itertools.count(1)

    @property
    def active(self) -> ChartSlot | None:
        slot_id = self.store.active_slot_id
        return self.slots.get(slot_id) if slot_id else None

    def add(
        self,
        symbol: str,
        timeframe: str = "1m",
        *,
        slot_id: str | None = None,
        activate: bool = False,
    ) -> ChartSlot:
        slot_id = slot_id or f"slot-{next(self._ids)}"
        if slot_id in self.slots:
            raise ValueError(f"slot {slot_id} already exists")
        slot = ChartSlot(
            slot_id,
            symbol,
            timeframe,
            store=self.store,
            ledger=self.ledger,
            settings=self.settings,
            http=self.http,
        )
        self.slots[slot_id] = slot
        slot.start()
        if activate or self.store.active_slot_id is None:
            self.activate(slot_id)
        return slot

    def activate(self, slot_id: str) -> None:
        if slot_id not in self.slots:
            raise KeyError(slot_id)
        self.store.set_active_slot(slot_id)

    async def retarget(
        self, slot_id: str, symbol: str | None = None, timeframe: str | None = None
    ) -> None:
        await self.slots[slot_id].retarget(symbol, timeframe)

    async def remove(self, slot_id: str) -> None:
        slot = self.slots.pop(slot_id)
        await slot.stop()
        self.store.remove_slot(slot_id)
        if self.store.active_slot_id is None and self.slots:
            self.activate(next(iter(self.slots)))

    async def close(self) -> None:
        for slot in self.slots.values():
            slot.cancel()
        for slot in list(self.slots.values()):
            await slot.stop()
