"""Unit tests for StateStore."""

from tradesim.ledger import build_portfolio
from tradesim.models import ConnectionStatus, Ticker
from tradesim.store import ACTIVE, PORTFOLIO, STATUS, TICKER, StateChange, StateStore


def make_store():
    return StateStore(build_portfolio(1_000.0, ()))


def test_notifies_synchronously_in_write_order():
    store = make_store()
    seen = []
    store.subscribe(lambda s, change: seen.append(change))
    store.put_slot("a", "AAPL", "1m")
    store.set_status("a", ConnectionStatus.CONNECTING)
    store.set_portfolio(build_portfolio(500.0, ()))
    assert [c.topic for c in seen] == ["slots", STATUS, PORTFOLIO]
    assert seen[1] == StateChange(STATUS, "a")


def test_topic_filter_and_unsubscribe():
    store = make_store()
    seen = []
    unsubscribe = store.subscribe(lambda s, c: seen.append(c.topic), topics=[TICKER])
    store.put_slot("a", "AAPL", "1m")
    store.set_ticker("a", Ticker("AAPL", 190.0))
    unsubscribe()
    store.set_ticker("a", Ticker("AAPL", 191.0))
    assert seen == [TICKER]
    assert store.slot("a").ticker.price == 191.0


def test_unsubscribe_by_listener():
    store = make_store()
    seen = []

    def listener(s, c):
        seen.append(c)

    store.subscribe(listener)
    store.unsubscribe(listener)
    store.set_portfolio(build_portfolio(1.0, ()))
    assert seen == []


def test_failing_listener_does_not_block_others():
    store = make_store()
    seen = []

    def broken(s, c):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(lambda s, c: seen.append(c.topic))
    store.set_portfolio(build_portfolio(1.0, ()))
    assert seen == [PORTFOLIO]


def test_active_slot_and_last_price():
    store = make_store()
    store.put_slot("a", "BTCUSDT", "1m")
    store.put_slot("b", "BTCUSDT", "5m")
    store.set_ticker("a", Ticker("BTCUSDT", 100.0))
    store.set_ticker("b", Ticker("BTCUSDT", 101.0))
    store.set_active_slot("b")
    assert store.active_slot.slot_id == "b"
    assert store.last_price("BTCUSDT") == 101.0
    assert store.last_price("ETHUSDT") is None

    seen = []
    store.subscribe(lambda s, c: seen.append(c.topic))
    store.remove_slot("b")
    assert store.active_slot_id is None
    assert ACTIVE in seen


def test_close_drops_subscribers():
    store = make_store()
    seen = []
    store.subscribe(lambda s, c: seen.append(c))
    store.close()
    store.set_portfolio(build_portfolio(2.0, ()))
    assert seen == []
    assert store.portfolio.balance == 2.0
