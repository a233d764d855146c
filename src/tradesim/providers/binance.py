"""Binance provider — klines and 24h ticker from the Binance public REST API."""

from __future__ import annotations

import re

import aiohttp

from tradesim import normalize
from tradesim.models import Candle, Tick
from tradesim.providers.base import OHLCVProvider, PriceSource, get_json, now_ms

_KLINES_URL = "https://api.binance.com/api/v3/klines"
_TICKER_URL = "https://api.binance.com/api/v3/ticker/24hr"

# Intervals accepted by Binance that tradesim exposes
_VALID_INTERVALS = frozenset(
    {"1m", "3m", "5m", "15m", "30m", "1h", "4h", "1d", "1w", "1M"}
)

# Crypto quote currencies handled by this provider
_CRYPTO_RE = re.compile(r"^[A-Z0-9]{2,}(USDT|USDC|BTC|ETH|BNB|BUSD|FDUSD)$")


def _normalise(symbol: str) -> str:
    """Return a Binance-compatible symbol string.

    Strips slashes, hyphens, and whitespace then uppercases.
    Examples: ``BTC/USDT`` → ``BTCUSDT``, ``btc-usdt`` → ``BTCUSDT``.
    """
    return symbol.upper().replace("/", "").replace("-", "").strip()


class BinanceProvider(OHLCVProvider):
    """Fetches OHLCV klines from the Binance public REST API.

    No API key required. Covers any pair quoted in USDT, USDC, BTC, ETH,
    BNB, BUSD, or FDUSD. Returns up to 1 000 bars per request (Binance cap).
    Fallback behind Coinbase, which does not offer 3m/30m/4h/1w/1M bars.
    """

    name = "binance"

    def supports(self, symbol: str) -> bool:
        return bool(_CRYPTO_RE.match(_normalise(symbol)))

    async def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int,
        *,
        end: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> list[Candle] | None:
        if interval not in _VALID_INTERVALS:
            return None

        params = {
            "symbol": _normalise(symbol),
            "interval": interval,
            "limit": min(limit, 1000),
        }
        if end is not None:
            # endTime is inclusive on Binance
            params["endTime"] = end - 1

        data = await get_json(self.name, _KLINES_URL, params=params, session=session)
        return normalize.binance_klines(data) or None


class BinanceTickerSource(PriceSource):
    """Last price plus 24h stats from ``/api/v3/ticker/24hr``."""

    name = "binance"

    def __init__(self, symbol: str) -> None:
        self.symbol = _normalise(symbol)

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        data = await get_json(
            self.name, _TICKER_URL, params={"symbol": self.symbol}, session=session
        )
        return normalize.binance_ticker_24h(data, now_ms())
