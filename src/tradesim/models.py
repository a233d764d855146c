"""Data models for candles, ticks, and the paper-trading account."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


class MarketClass(str, Enum):
    """Which family of data providers serves a symbol."""

    CRYPTO = "crypto"
    EQUITY = "equity"
    DEX = "dex"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class MarketSession(str, Enum):
    """Trading phase of a listed equity at quote time."""

    PRE = "pre"
    REGULAR = "regular"
    POST = "post"
    CLOSED = "closed"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> OrderSide:
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY

    @property
    def sign(self) -> int:
        """+1 for long exposure, -1 for short."""
        return 1 if self is OrderSide.BUY else -1


class OrderType(str, Enum):
    MARKET = "market"


class OrderStatus(str, Enum):
    FILLED = "filled"


@dataclass(slots=True, frozen=True)
class Candle:
    """A single OHLCV bar.

    Attributes:
        time:   Bar open time, Unix milliseconds (UTC).
        open:   Opening price.
        high:   Highest price during the bar.
        low:    Lowest price during the bar.
        close:  Closing price.
        volume: Traded volume (0 for sources without volume data).
    """

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self) -> None:
        if self.time <= 0:
            raise ValueError(f"time must be a positive unix timestamp, got {self.time}")
        for name in ("open", "high", "low", "close", "volume"):
            if not math.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be finite, got {getattr(self, name)}")
        if self.high < self.low:
            raise ValueError(f"high ({self.high}) must be >= low ({self.low})")
        for name in ("open", "close"):
            if not self.low <= getattr(self, name) <= self.high:
                raise ValueError(
                    f"{name} ({getattr(self, name)}) outside [{self.low}, {self.high}]"
                )


@dataclass(slots=True, frozen=True)
class DailyStats:
    """Rolling 24h statistics attached to a tick when the source has them.

    Any field may be ``None`` when the provider does not report it.
    """

    change: float | None = None
    change_percent: float | None = None
    high: float | None = None
    low: float | None = None
    volume: float | None = None
    session: MarketSession | None = None


@dataclass(slots=True, frozen=True)
class Tick:
    """One live price observation, not yet folded into a candle."""

    price: float
    time: int  # unix ms
    stats: DailyStats | None = None
    source: str = ""

    def __post_init__(self) -> None:
        if not math.isfinite(self.price) or self.price <= 0:
            raise ValueError(f"tick price must be a positive finite number, got {self.price}")


@dataclass(slots=True, frozen=True)
class Ticker:
    """Display snapshot derived from the latest tick."""

    symbol: str
    price: float
    change_24h: float = 0.0
    change_percent_24h: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    volume_24h: float = 0.0
    market_session: MarketSession | None = None


@dataclass(slots=True, frozen=True)
class Order:
    """A paper market order. Market orders fill immediately and completely."""

    id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    created_at: int  # unix ms
    type: OrderType = OrderType.MARKET
    status: OrderStatus = OrderStatus.FILLED
    filled_quantity: float = 0.0
    avg_fill_price: float = 0.0
    updated_at: int = 0


@dataclass(slots=True, frozen=True)
class Position:
    """Open exposure in one symbol. ``side`` BUY is long, SELL is short."""

    symbol: str
    side: OrderSide
    quantity: float
    avg_entry_price: float
    current_price: float
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0

    @property
    def market_value(self) -> float:
        return self.current_price * self.quantity


@dataclass(slots=True, frozen=True)
class TradeRecord:
    """Immutable ledger entry. ``pnl`` is the realized portion only."""

    id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    pnl: float
    timestamp: int  # unix ms


@dataclass(slots=True, frozen=True)
class Portfolio:
    balance: float
    equity: float
    buying_power: float
    positions: tuple[Position, ...] = field(default_factory=tuple)
    daily_pnl: float = 0.0
    total_pnl: float = 0.0

    def position(self, symbol: str) -> Position | None:
        for pos in self.positions:
            if pos.symbol == symbol:
                return pos
        return None
