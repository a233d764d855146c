"""Paper-trading ledger — the single writer of account state.

Cash accounting: opening or adding to a position (long or short) debits
``quantity × price``; closing any part of it credits the entry cost of that
part plus the realized P&L. Equity is always recomputed as
``balance + Σ current_price × quantity`` and buying power equals balance.

The ledger trusts its inputs. Orders are validated upstream
(:class:`tradesim.desk.TradingDesk`).
"""

from __future__ import annotations

import datetime
import time
import uuid
from collections.abc import Iterable

from loguru import logger

from tradesim.models import (
    Order,
    OrderSide,
    Portfolio,
    Position,
    TradeRecord,
)
from tradesim.store import StateStore

#: Relative tolerance under which an opposite-side order closes the whole
#: position instead of leaving dust or flipping by a hair.
FULL_CLOSE_EPSILON = 1e-4

_log = logger.bind(component="ledger")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return uuid.uuid4().hex


def _utc_day(ts_ms: int) -> datetime.date:
    return datetime.datetime.fromtimestamp(ts_ms / 1000, tz=datetime.timezone.utc).date()


def mark(position: Position, price: float) -> Position:
    """Revalue *position* at *price*."""
    pnl = (price - position.avg_entry_price) * position.quantity * position.side.sign
    cost = position.avg_entry_price * position.quantity
    return Position(
        symbol=position.symbol,
        side=position.side,
        quantity=position.quantity,
        avg_entry_price=position.avg_entry_price,
        current_price=price,
        unrealized_pnl=pnl,
        unrealized_pnl_percent=pnl / cost * 100 if cost else 0.0,
    )


def build_portfolio(
    balance: float,
    positions: Iterable[Position],
    daily_pnl: float = 0.0,
    total_pnl: float = 0.0,
) -> Portfolio:
    positions = tuple(positions)
    return Portfolio(
        balance=balance,
        equity=balance + sum(p.market_value for p in positions),
        buying_power=balance,
        positions=positions,
        daily_pnl=daily_pnl,
        total_pnl=total_pnl,
    )


class Ledger:
    def __init__(self, store: StateStore, initial_balance: float = 100_000.0) -> None:
        self.store = store
        self.initial_balance = initial_balance
        self._last_trade_day: datetime.date | None = None

    @classmethod
    def with_new_store(cls, initial_balance: float = 100_000.0) -> Ledger:
        return cls(StateStore(build_portfolio(initial_balance, ())), initial_balance)

    @property
    def portfolio(self) -> Portfolio:
        return self.store.portfolio

    def on_price_update(self, symbol: str, price: float) -> None:
        pf = self.store.portfolio
        if pf.position(symbol) is None:
            return
        positions = [mark(p, price) if p.symbol == symbol else p for p in pf.positions]
        self.store.set_portfolio(
            build_portfolio(pf.balance, positions, pf.daily_pnl, pf.total_pnl)
        )

    def execute_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        now: int | None = None,
    ) -> Order:
        """Fill a market order of *quantity* at *price* immediately."""
        now = now if now is not None else _now_ms()
        daily_pnl = self._daily_pnl_for(now)
        pf = self.store.portfolio
        balance = pf.balance
        positions = {p.symbol: p for p in pf.positions}
        existing = positions.get(symbol)
        records: list[TradeRecord] = []
        realized = 0.0

        def record(rec_side: OrderSide, qty: float, pnl: float) -> None:
            records.append(TradeRecord(_new_id(), symbol, rec_side, qty, price, pnl, now))

        if existing is None:
            balance -= quantity * price
            positions[symbol] = Position(symbol, side, quantity, price, price)
            record(side, quantity, 0.0)

        elif existing.side is side:
            new_qty = existing.quantity + quantity
            avg = (existing.avg_entry_price * existing.quantity + price * quantity) / new_qty
            balance -= quantity * price
            positions[symbol] = Position(symbol, side, new_qty, avg, price)
            record(side, quantity, 0.0)

        else:
            held = existing.quantity
            full = abs(quantity - held) <= held * FULL_CLOSE_EPSILON
            closed = held if full or quantity > held else quantity
            realized = (price - existing.avg_entry_price) * closed * existing.side.sign
            balance += existing.avg_entry_price * closed + realized
            record(side, closed, realized)

            if full:
                del positions[symbol]
            elif quantity < held:
                positions[symbol] = Position(
                    symbol, existing.side, held - closed, existing.avg_entry_price, price
                )
            else:
                remainder = quantity - held
                balance -= remainder * price
                positions[symbol] = Position(symbol, side, remainder, price, price)
                record(side, remainder, 0.0)

        order = Order(
            id=_new_id(),
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            created_at=now,
            filled_quantity=quantity,
            avg_fill_price=price,
            updated_at=now,
        )

        # Mark every open position in this symbol at the fill price
        kept = [mark(p, price) if p.symbol == symbol else p for p in positions.values()]
        self.store.set_portfolio(
            build_portfolio(balance, kept, daily_pnl + realized, pf.total_pnl + realized)
        )
        self.store.add_order(order)
        self.store.add_trades(records)
        _log.info(
            f"{side.value} {quantity:g} {symbol} @ {price:g}"
            + (f" realized {realized:+.2f}" if realized else "")
        )
        return order

    def close_position(
        self, symbol: str, price: float | None = None, now: int | None = None
    ) -> Order | None:
        """Close all of *symbol* at *price* (default: its last mark)."""
        pos = self.store.portfolio.position(symbol)
        if pos is None:
            return None
        fill = price if price is not None else pos.current_price
        return self.execute_order(symbol, pos.side.opposite, pos.quantity, fill, now)

    def set_balance(self, amount: float) -> None:
        pf = self.store.portfolio
        self.store.set_portfolio(
            build_portfolio(amount, pf.positions, pf.daily_pnl, pf.total_pnl)
        )

    def reset(self) -> None:
        """Back to the initial balance with no positions and no history."""
        self._last_trade_day = None
        self.store.reset_account(build_portfolio(self.initial_balance, ()))

    def _daily_pnl_for(self, now: int) -> float:
        day = _utc_day(now)
        previous, self._last_trade_day = self._last_trade_day, day
        if previous is not None and previous != day:
            return 0.0
        return self.store.portfolio.daily_pnl
