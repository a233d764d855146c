"""Order-intent API for a UI: validate, then hand off to the ledger."""

from __future__ import annotations

import math

from tradesim.errors import OrderRejected
from tradesim.ledger import Ledger
from tradesim.models import Order, OrderSide
from tradesim.store import StateStore


def _positive(value: float, what: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise OrderRejected(f"{what} must be a number") from None
    if not math.isfinite(number) or number <= 0:
        raise OrderRejected(f"{what} must be a positive number")
    return number


class TradingDesk:
    """Rejects invalid intents with :class:`OrderRejected` before the ledger
    sees them. Orders default to the active slot's symbol and last price."""

    def __init__(self, ledger: Ledger, store: StateStore | None = None) -> None:
        self.ledger = ledger
        self.store = store if store is not None else ledger.store

    def _symbol(self, symbol: str | None) -> str:
        if symbol:
            return symbol
        active = self.store.active_slot
        if active is None:
            raise OrderRejected("No symbol selected")
        return active.symbol

    def execute_order(
        self,
        side: OrderSide | str,
        quantity: float,
        price: float | None = None,
        symbol: str | None = None,
    ) -> Order:
        try:
            side = OrderSide(side)
        except ValueError:
            raise OrderRejected(f"Unknown order side: {side}") from None
        symbol = self._symbol(symbol)
        quantity = _positive(quantity, "Quantity")
        if price is None:
            price = self.store.last_price(symbol)
            if price is None:
                raise OrderRejected(f"No price available for {symbol}")
        price = _positive(price, "Price")

        portfolio = self.store.portfolio
        if side is OrderSide.SELL and portfolio.position(symbol) is None:
            raise OrderRejected(f"No position in {symbol} to sell")
        if side is OrderSide.BUY and quantity * price > portfolio.buying_power:
            raise OrderRejected(
                f"Insufficient buying power: need {quantity * price:.2f}, "
                f"have {portfolio.buying_power:.2f}"
            )
        return self.ledger.execute_order(symbol, side, quantity, price)

    def close_position(self, symbol: str | None = None) -> Order:
        symbol = self._symbol(symbol)
        position = self.store.portfolio.position(symbol)
        if position is None:
            raise OrderRejected(f"No open position in {symbol}")
        price = self.store.last_price(symbol) or position.current_price
        return self.ledger.close_position(symbol, price)

    def set_balance(self, amount: float) -> None:
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise OrderRejected("Balance must be a number") from None
        if not math.isfinite(amount) or amount < 0:
            raise OrderRejected("Balance must be a non-negative number")
        self.ledger.set_balance(amount)
