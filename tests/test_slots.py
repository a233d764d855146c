"""Tests for ChartSlot / ChartGrid wiring: feeds into store, aggregator and ledger."""

import asyncio

import pytest

from tradesim import registry
from tradesim.models import Candle, ConnectionStatus, OrderSide, Tick
from tradesim.providers.base import PriceSource
from tradesim.slots import ChartGrid

T0 = 1_700_000_040_000
MIN = 60_000


class CountingSource(PriceSource):
    def __init__(self, name, price):
        self.name = name
        self.price = price
        self.calls = 0

    async def poll(self, session=None):
        self.calls += 1
        return Tick(self.price, T0 + 2 * MIN + self.calls, source=self.name)


@pytest.fixture
def feeds(monkeypatch):
    history_calls = []
    sources = {}

    async def fake_history(symbol, interval, limit, *, end=None, prefer=None, session=None):
        history_calls.append((symbol, interval, end))
        if end is not None:
            return ("fake", [Candle(end - MIN, 9, 9, 9, 9, 1)])
        return ("fake", [Candle(T0, 10, 11, 9, 10, 1), Candle(T0 + MIN, 10, 12, 9, 11, 1)])

    def fake_sources(symbol):
        src = CountingSource(f"src-{symbol}", 200.0 if symbol == "ETHUSDT" else 100.0)
        sources[symbol] = src
        return [src]

    monkeypatch.setattr(registry, "fetch_history", fake_history)
    monkeypatch.setattr(registry, "price_sources", fake_sources)
    monkeypatch.setattr(registry, "stream_for", lambda symbol: None)
    monkeypatch.setattr(registry, "stats_source", lambda symbol: None)
    return history_calls, sources


async def settle(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached"
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_slot_feeds_store_and_ledger(feeds, ledger, store, fast_settings):
    ledger.execute_order("BTCUSDT", OrderSide.BUY, 1, 90.0)
    grid = ChartGrid(store, ledger, fast_settings)
    slot = grid.add("BTCUSDT", "1m")

    await settle(lambda: store.slot(slot.slot_id).ticker is not None)
    state = store.slot(slot.slot_id)
    assert store.active_slot_id == slot.slot_id
    assert state.status is ConnectionStatus.CONNECTED
    assert state.candles[-1].time == T0 + 2 * MIN  # live bar opened after history
    assert store.portfolio.position("BTCUSDT").unrealized_pnl == pytest.approx(10.0)
    await grid.close()


@pytest.mark.asyncio
async def test_background_slots_keep_running_and_switch_without_refetch(
    feeds, ledger, store, fast_settings
):
    history_calls, sources = feeds
    grid = ChartGrid(store, ledger, fast_settings)
    first = grid.add("BTCUSDT", "1m")
    second = grid.add("ETHUSDT", "5m")
    assert grid.active is first

    await settle(lambda: sources.get("ETHUSDT") and sources["ETHUSDT"].calls >= 3)
    fetched = len(history_calls)
    grid.activate(second.slot_id)
    assert grid.active is second
    assert store.active_slot.ticker.price == 200.0
    assert len(history_calls) == fetched
    await grid.close()


@pytest.mark.asyncio
async def test_retarget_cancels_previous_feed(feeds, ledger, store, fast_settings):
    _, sources = feeds
    grid = ChartGrid(store, ledger, fast_settings)
    slot = grid.add("BTCUSDT", "1m")
    await settle(lambda: "BTCUSDT" in sources and sources["BTCUSDT"].calls >= 1)

    await grid.retarget(slot.slot_id, symbol="ETHUSDT")
    old_calls = sources["BTCUSDT"].calls
    await settle(lambda: store.slot(slot.slot_id).ticker is not None)
    await asyncio.sleep(0.05)

    assert sources["BTCUSDT"].calls == old_calls
    state = store.slot(slot.slot_id)
    assert state.symbol == "ETHUSDT"
    assert state.ticker.symbol == "ETHUSDT"
    await grid.close()


@pytest.mark.asyncio
async def test_load_older_prepends_page(feeds, ledger, store, fast_settings):
    history_calls, _ = feeds
    grid = ChartGrid(store, ledger, fast_settings)
    slot = grid.add("BTCUSDT", "1m")
    await settle(lambda: len(store.slot(slot.slot_id).candles) >= 2)

    assert await slot.load_older() == 1
    assert history_calls[-1] == ("BTCUSDT", "1m", T0)
    assert store.slot(slot.slot_id).candles[0].time == T0 - MIN
    await grid.close()


@pytest.mark.asyncio
async def test_remove_promotes_another_slot(feeds, ledger, store, fast_settings):
    grid = ChartGrid(store, ledger, fast_settings)
    first = grid.add("BTCUSDT")
    second = grid.add("ETHUSDT")
    await grid.remove(first.slot_id)
    assert store.slot(first.slot_id) is None
    assert grid.active is second
    await grid.close()


@pytest.mark.asyncio
async def test_add_rejects_malformed_symbol(feeds, ledger, store, fast_settings):
    grid = ChartGrid(store, ledger, fast_settings)
    with pytest.raises(ValueError):
        grid.add("dex:solana")
    assert store.slots == {}
    assert grid.slots == {}
    await grid.close()


@pytest.mark.asyncio
async def test_load_older_waits_until_view_nears_oldest_bar(feeds, ledger, store, fast_settings):
    history_calls, _ = feeds
    grid = ChartGrid(store, ledger, fast_settings)
    slot = grid.add("BTCUSDT", "1m")
    await settle(lambda: len(store.slot(slot.slot_id).candles) >= 2)
    fetched = len(history_calls)

    assert await slot.load_older(first_visible=T0 + 500 * MIN) == 0
    assert len(history_calls) == fetched
    assert await slot.load_older(first_visible=T0 + MIN) == 1
    assert history_calls[-1] == ("BTCUSDT", "1m", T0)
    await grid.close()
