"""Coinbase Exchange provider — candles, 24h stats, and the ticker WebSocket feed.

Public endpoints, no API key. The REST host blocks browser CORS but not
server-side clients, so it is called directly.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Callable

import aiohttp
import websockets
from loguru import logger

from tradesim import normalize
from tradesim.errors import PayloadError, ProviderError
from tradesim.models import Candle, Tick
from tradesim.providers.base import (
    OHLCVProvider,
    PriceSource,
    TickStream,
    get_json,
    now_ms,
)

_REST_URL = "https://api.exchange.coinbase.com"
_WS_URL = "wss://ws-feed.exchange.coinbase.com"

# Coinbase only serves these granularities (seconds); other timeframes fall
# through to the next provider in the chain.
_GRANULARITY: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3_600,
    "1d": 86_400,
}

# Coinbase caps a candle request at 300 bars
_MAX_BARS = 300

_CRYPTO_RE = re.compile(r"^[A-Z0-9]{2,}(USDT|USDC|BUSD|FDUSD|BTC|ETH)$")

_log = logger.bind(component="coinbase")


def product_id(symbol: str) -> str:
    """Map an exchange pair to a Coinbase product id.

    USD stablecoin quotes settle in USD; coin quotes keep the coin:
    ``BTCUSDT`` → ``BTC-USD``, ``ETHBTC`` → ``ETH-BTC``.
    """
    up = symbol.upper().replace("/", "").replace("-", "").strip()
    for quote in ("USDT", "USDC", "BUSD", "FDUSD", "BTC", "ETH"):
        if up.endswith(quote) and len(up) > len(quote):
            base = up[: -len(quote)]
            cb_quote = "USD" if quote in ("USDT", "USDC", "BUSD", "FDUSD") else quote
            return f"{base}-{cb_quote}"
    return up


class CoinbaseProvider(OHLCVProvider):
    """Historical candles from ``/products/{id}/candles``."""

    name = "coinbase"

    def supports(self, symbol: str) -> bool:
        return bool(_CRYPTO_RE.match(symbol.upper()))

    async def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int,
        *,
        end: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> list[Candle] | None:
        granularity = _GRANULARITY.get(interval)
        if granularity is None:
            return None

        bars = min(limit, _MAX_BARS)
        end_s = (end if end is not None else now_ms()) // 1000
        params = {
            "granularity": granularity,
            "start": end_s - granularity * bars,
            "end": end_s,
        }
        data = await get_json(
            self.name,
            f"{_REST_URL}/products/{product_id(symbol)}/candles",
            params=params,
            session=session,
        )
        candles = normalize.coinbase_candles(data)
        if end is not None:
            candles = [c for c in candles if c.time < end]
        return candles[-bars:] or None


class CoinbaseStatsSource(PriceSource):
    """Polled last price + 24h stats from ``/products/{id}/stats``."""

    name = "coinbase"

    def __init__(self, symbol: str) -> None:
        self.product = product_id(symbol)

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        data = await get_json(
            self.name, f"{_REST_URL}/products/{self.product}/stats", session=session
        )
        return normalize.coinbase_stats(data, now_ms())


class CoinbaseTickerStream(TickStream):
    """The ``ticker`` channel of the Coinbase Exchange WebSocket feed."""

    name = "coinbase-ws"

    def __init__(self, symbol: str, url: str = _WS_URL) -> None:
        self.product = product_id(symbol)
        self.url = url

    async def ticks(self, on_live: Callable[[], None]) -> AsyncIterator[Tick]:
        async with websockets.connect(self.url, close_timeout=5) as ws:
            await ws.send(json.dumps({
                "type": "subscribe",
                "product_ids": [self.product],
                "channels": ["ticker"],
            }))
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    continue
                kind = msg.get("type") if isinstance(msg, dict) else None

                if kind == "subscriptions":
                    _log.info(f"Subscribed to {self.product}")
                    on_live()
                elif kind == "error":
                    raise ProviderError(self.name, str(msg.get("message") or msg))
                elif kind == "ticker" and msg.get("product_id") == self.product:
                    try:
                        yield normalize.coinbase_ticker_message(msg, now_ms())
                    except PayloadError as exc:
                        _log.debug(f"Dropped ticker message: {exc}")
