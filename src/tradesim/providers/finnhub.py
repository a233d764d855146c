"""Finnhub OHLCV provider — stock and forex candles.

Requires a free Finnhub API key: https://finnhub.io/dashboard
Set the ``FINNHUB_API_KEY`` environment variable before use.

Install the optional dep before use:
    pip install "tradesim[finnhub]"
"""

from __future__ import annotations

import asyncio
import os
import re
import time

import aiohttp
from loguru import logger

from tradesim import normalize
from tradesim.errors import ProviderError
from tradesim.models import Candle
from tradesim.providers.base import OHLCVProvider

# Finnhub resolution strings
_RESOLUTION_MAP: dict[str, str] = {
    "1m": "1",
    "5m": "5",
    "15m": "15",
    "30m": "30",
    "1h": "60",
    "1d": "D",
    "1w": "W",
    "1M": "M",
}

# Approximate bar duration in seconds: used to compute the from-timestamp
_BAR_SECONDS: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3_600,
    "1d": 86_400,
    "1w": 604_800,
    "1M": 2_678_400,
}

_STOCK_RE = re.compile(r"^(\^[A-Z]+|[A-Z]{1,5})$")
_INTL_STOCK_RE = re.compile(r"^[A-Z0-9]{1,7}\.[A-Z]{1,3}$")
_FOREX_RE = re.compile(r"^[A-Z]{6}$")

_log = logger.bind(component="finnhub")


def _to_forex_symbol(symbol: str) -> str:
    """Convert a 6-letter forex pair to Finnhub's OANDA format.

    Examples:
        ``EURUSD`` → ``OANDA:EUR_USD``
        ``GBPJPY`` → ``OANDA:GBP_JPY``
    """
    return f"OANDA:{symbol[:3]}_{symbol[3:]}"


class FinnhubProvider(OHLCVProvider):
    """Fetches OHLCV candles from Finnhub for US stocks and forex pairs.

    Second in the equity chain, behind yfinance. Without ``FINNHUB_API_KEY``
    it raises :class:`ProviderError`, which the chain logs and skips.
    """

    name = "finnhub"

    def supports(self, symbol: str) -> bool:
        up = symbol.upper()
        return bool(
            _STOCK_RE.match(up)
            or _INTL_STOCK_RE.match(up)
            or _FOREX_RE.match(up)
        )

    async def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int,
        *,
        end: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> list[Candle] | None:
        resolution = _RESOLUTION_MAP.get(interval)
        if resolution is None:
            # 3m, 4h and other unmapped intervals are not supported
            return None

        api_key = os.getenv("FINNHUB_API_KEY")
        if not api_key:
            raise ProviderError(self.name, "FINNHUB_API_KEY environment variable is not set")

        bar_sec = _BAR_SECONDS[interval]
        to_ts = (end // 1000 - 1) if end is not None else int(time.time())
        from_ts = to_ts - bar_sec * int(limit * 1.3 + 5)

        up = symbol.upper()
        if _FOREX_RE.match(up):
            raw = await asyncio.to_thread(
                self._fetch_forex, up, resolution, from_ts, to_ts, api_key
            )
        else:
            raw = await asyncio.to_thread(
                self._fetch_stock, up, resolution, from_ts, to_ts, api_key
            )
        if not raw:
            return None

        return normalize.finnhub_candles(raw)[-limit:] or None

    # ------------------------------------------------------------------
    # Private helpers (blocking: called via asyncio.to_thread)
    # ------------------------------------------------------------------

    @staticmethod
    def _fetch_stock(
        symbol: str,
        resolution: str,
        from_ts: int,
        to_ts: int,
        api_key: str,
    ) -> dict | None:
        try:
            import finnhub  # noqa: PLC0415

            data = finnhub.Client(api_key=api_key).stock_candles(
                symbol, resolution, from_ts, to_ts
            )
            return data if data and data.get("s") == "ok" else None
        except Exception as exc:
            _log.debug(f"stock_candles({symbol}) failed: {exc}")
            return None

    @staticmethod
    def _fetch_forex(
        symbol: str,
        resolution: str,
        from_ts: int,
        to_ts: int,
        api_key: str,
    ) -> dict | None:
        try:
            import finnhub  # noqa: PLC0415

            fx_sym = _to_forex_symbol(symbol)
            data = finnhub.Client(api_key=api_key).forex_candles(
                fx_sym, resolution, from_ts, to_ts
            )
            return data if data and data.get("s") == "ok" else None
        except Exception as exc:
            _log.debug(f"forex_candles({symbol}) failed: {exc}")
            return None
