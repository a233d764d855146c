"""tradesim: paper trading against live prices from multiple free providers."""

from .desk import TradingDesk
from .ledger import Ledger
from .models import Candle, OrderSide, Portfolio, Tick, Ticker
from .registry import fetch
from .slots import ChartGrid
from .store import StateStore

__all__ = [
    "Candle",
    "ChartGrid",
    "Ledger",
    "OrderSide",
    "Portfolio",
    "StateStore",
    "Tick",
    "Ticker",
    "TradingDesk",
    "fetch",
]
__version__ = "0.1.0"
