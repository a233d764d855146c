"""yfinance provider — stock, ETF, and index history plus a quote fallback."""

from __future__ import annotations

import asyncio
import datetime
import re

import aiohttp
import yfinance as yf
from loguru import logger

from tradesim import normalize
from tradesim.models import Candle, Tick
from tradesim.providers.base import OHLCVProvider, PriceSource, now_ms

# tradesim interval → yfinance interval
_INTERVAL_MAP: dict[str, str] = {
    "1m":  "1m",
    "5m":  "5m",
    "15m": "15m",
    "30m": "30m",
    "1h":  "1h",
    "1d":  "1d",
    "1w":  "1wk",
    "1M":  "1mo",
}

# How long each bar is: used to compute the download start date
_BAR_DURATION: dict[str, datetime.timedelta] = {
    "1m":  datetime.timedelta(minutes=1),
    "5m":  datetime.timedelta(minutes=5),
    "15m": datetime.timedelta(minutes=15),
    "30m": datetime.timedelta(minutes=30),
    "1h":  datetime.timedelta(hours=1),
    "1d":  datetime.timedelta(days=1),
    "1w":  datetime.timedelta(weeks=1),
    "1M":  datetime.timedelta(days=31),
}

_CRYPTO_RE     = re.compile(r"^[A-Z0-9]{2,}(USDT|USDC|BTC|ETH|BNB|BUSD|FDUSD)$")
_FOREX_RE      = re.compile(r"^[A-Z]{6}$")
_STOCK_RE      = re.compile(r"^(\^[A-Z]+|[A-Z]{1,5}(-[A-Z])?)$")
_INTL_STOCK_RE = re.compile(r"^[A-Z0-9]{1,7}\.[A-Z]{1,3}$")

_log = logger.bind(component="yfinance")


def _to_yf_symbol(symbol: str) -> str:
    """Map a normalised symbol to its yfinance ticker string.

    Rules:
    - Crypto  : strip quote currency, join with hyphen, USD-settle
                ``BTCUSDT`` → ``BTC-USD``, ``ETHBTC`` → ``ETH-BTC``
    - Forex   : append ``=X``  — ``EURUSD`` → ``EURUSD=X``
    - Stocks  : unchanged      — ``AAPL`` → ``AAPL``
    - Intl    : unchanged      — ``WM.TO`` → ``WM.TO``
    """
    up = symbol.upper()

    if _CRYPTO_RE.match(up):
        for quote in ("USDT", "USDC", "BUSD", "FDUSD", "BNB", "ETH", "BTC"):
            if up.endswith(quote):
                base = up[: -len(quote)]
                # USD-settled stablecoins → -USD; coin-settled → keep quote ticker
                yf_quote = "USD" if quote in ("USDT", "USDC", "BUSD", "FDUSD") else quote
                return f"{base}-{yf_quote}"

    # Forex: yfinance expects the six-letter pair followed by =X
    if _FOREX_RE.match(up):
        return f"{up}=X"

    return up


def _supported(symbol: str) -> bool:
    up = symbol.upper()
    return bool(
        _CRYPTO_RE.match(up)
        or _FOREX_RE.match(up)
        or _STOCK_RE.match(up)
        or _INTL_STOCK_RE.match(up)
    )


class YFinanceProvider(OHLCVProvider):
    """Fetches OHLCV data via yfinance.

    Covers stocks, ETFs, indices (^GSPC), crypto (BTC-USD), and forex (EURUSD=X).
    yfinance is synchronous; blocking calls run in a thread pool so the async
    interface stays non-blocking.

    Note: 3m and 4h bars are not natively supported by yfinance and return None.
    """

    name = "yfinance"

    def supports(self, symbol: str) -> bool:
        return _supported(symbol)

    async def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int,
        *,
        end: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> list[Candle] | None:
        yf_interval = _INTERVAL_MAP.get(interval)
        if yf_interval is None:
            return None  # unsupported interval (e.g. 4h)

        ticker = _to_yf_symbol(symbol)
        bar_delta = _BAR_DURATION[interval]
        end_dt = (
            datetime.datetime.fromtimestamp(end / 1000, tz=datetime.timezone.utc)
            if end is not None
            else None
        )
        # Add 20 % headroom for weekends / market holidays
        anchor = end_dt or datetime.datetime.now(datetime.timezone.utc)
        start = anchor - bar_delta * int(limit * 1.2 + 5)

        df = await asyncio.to_thread(self._download, ticker, yf_interval, start, end_dt)
        if df is None or df.empty:
            return None

        candles = normalize.yfinance_frame(df)
        if end is not None:
            candles = [c for c in candles if c.time < end]
        return candles[-limit:] or None

    @staticmethod
    def _download(
        ticker: str,
        interval: str,
        start: datetime.datetime,
        end: datetime.datetime | None,
    ):
        """Blocking yfinance fetch — called via asyncio.to_thread."""
        try:
            df = yf.Ticker(ticker).history(
                start=start,
                end=end,
                interval=interval,
                auto_adjust=True,
            )
            return df if not df.empty else None
        except Exception as exc:
            _log.debug(f"history({ticker}, {interval}) failed: {exc}")
            return None


class YFinanceQuoteSource(PriceSource):
    """Quote fallback through ``Ticker.fast_info``; no market session info."""

    name = "yfinance"

    def __init__(self, symbol: str) -> None:
        self.ticker = _to_yf_symbol(symbol)

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        info = await asyncio.to_thread(self._read, self.ticker)
        return normalize.yfinance_fast_info(info, now_ms())

    @staticmethod
    def _read(ticker: str) -> dict:
        """Blocking — fast_info fetches lazily on attribute access."""
        fi = yf.Ticker(ticker).fast_info
        return {
            key: getattr(fi, key, None)
            for key in ("last_price", "previous_close", "day_high", "day_low", "last_volume")
        }
