"""Observable state shared by the feeds, the ledger, and a presentation layer.

Every write notifies subscribers synchronously, before the setter returns.
Readers get immutable snapshots (frozen dataclasses and tuples).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import NamedTuple

from loguru import logger

from tradesim.models import (
    Candle,
    ConnectionStatus,
    Order,
    Portfolio,
    Ticker,
    TradeRecord,
)

_log = logger.bind(component="store")

# Change topics
PORTFOLIO = "portfolio"
TRADES = "trades"
ORDERS = "orders"
CANDLES = "candles"
TICKER = "ticker"
STATUS = "status"
SLOTS = "slots"
ACTIVE = "active"


@dataclass(frozen=True, slots=True)
class SlotState:
    """What one chart slot currently shows."""

    slot_id: str
    symbol: str
    timeframe: str
    candles: tuple[Candle, ...] = ()
    ticker: Ticker | None = None
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED


class StateChange(NamedTuple):
    topic: str
    slot_id: str | None = None


Listener = Callable[["StateStore", StateChange], None]


class StateStore:
    def __init__(self, portfolio: Portfolio) -> None:
        self._portfolio = portfolio
        self._trades: list[TradeRecord] = []
        self._orders: list[Order] = []
        self._slots: dict[str, SlotState] = {}
        self._active: str | None = None
        self._listeners: list[tuple[Listener, frozenset[str] | None]] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self, listener: Listener, topics: Iterable[str] | None = None
    ) -> Callable[[], None]:
        """Register *listener* for *topics* (all when None). Returns an unsubscribe callable."""
        entry = (listener, frozenset(topics) if topics is not None else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners = [e for e in self._listeners if e[0] is not listener]

    def close(self) -> None:
        """Drop every subscriber; later writes still apply but notify nobody."""
        self._listeners.clear()

    def _notify(self, topic: str, slot_id: str | None = None) -> None:
        change = StateChange(topic, slot_id)
        for listener, topics in list(self._listeners):
            if topics is not None and topic not in topics:
                continue
            try:
                listener(self, change)
            except Exception:
                _log.exception(f"listener failed on {topic}")

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    @property
    def portfolio(self) -> Portfolio:
        return self._portfolio

    @property
    def trade_history(self) -> tuple[TradeRecord, ...]:
        return tuple(self._trades)

    @property
    def order_history(self) -> tuple[Order, ...]:
        return tuple(self._orders)

    def set_portfolio(self, portfolio: Portfolio) -> None:
        self._portfolio = portfolio
        self._notify(PORTFOLIO)

    def add_order(self, order: Order) -> None:
        self._orders.append(order)
        self._notify(ORDERS)

    def add_trades(self, records: Iterable[TradeRecord]) -> None:
        records = list(records)
        if records:
            self._trades.extend(records)
            self._notify(TRADES)

    def reset_account(self, portfolio: Portfolio) -> None:
        self._trades.clear()
        self._orders.clear()
        self._notify(TRADES)
        self._notify(ORDERS)
        self.set_portfolio(portfolio)

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    @property
    def slots(self) -> dict[str, SlotState]:
        return dict(self._slots)

    @property
    def active_slot_id(self) -> str | None:
        return self._active

    @property
    def active_slot(self) -> SlotState | None:
        return self._slots.get(self._active) if self._active else None

    def slot(self, slot_id: str) -> SlotState | None:
        return self._slots.get(slot_id)

    def put_slot(self, slot_id: str, symbol: str, timeframe: str) -> None:
        """Create or reset *slot_id* for a new symbol/timeframe."""
        self._slots[slot_id] = SlotState(slot_id, symbol, timeframe)
        self._notify(SLOTS, slot_id)

    def remove_slot(self, slot_id: str) -> None:
        if self._slots.pop(slot_id, None) is None:
            return
        if self._active == slot_id:
            self._active = None
            self._notify(ACTIVE)
        self._notify(SLOTS, slot_id)

    def set_active_slot(self, slot_id: str | None) -> None:
        if slot_id is not None and slot_id not in self._slots:
            raise KeyError(slot_id)
        if slot_id == self._active:
            return
        self._active = slot_id
        self._notify(ACTIVE, slot_id)

    def _update_slot(self, slot_id: str, topic: str, **changes) -> None:
        state = self._slots.get(slot_id)
        if state is None:
            return
        self._slots[slot_id] = replace(state, **changes)
        self._notify(topic, slot_id)

    def set_candles(self, slot_id: str, candles: tuple[Candle, ...]) -> None:
        self._update_slot(slot_id, CANDLES, candles=candles)

    def set_ticker(self, slot_id: str, ticker: Ticker) -> None:
        self._update_slot(slot_id, TICKER, ticker=ticker)

    def set_status(self, slot_id: str, status: ConnectionStatus) -> None:
        self._update_slot(slot_id, STATUS, status=status)

    def last_price(self, symbol: str) -> float | None:
        """Latest ticker price for *symbol*, preferring the active slot."""
        active = self.active_slot
        if active is not None and active.symbol == symbol and active.ticker is not None:
            return active.ticker.price
        for state in self._slots.values():
            if state.symbol == symbol and state.ticker is not None:
                return state.ticker.price
        return None
