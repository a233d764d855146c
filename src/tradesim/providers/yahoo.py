"""Yahoo Finance quote source — chart endpoint with extended-hours prices.

Yahoo rejects requests without a browser-like User-Agent.
"""

from __future__ import annotations

import time

import aiohttp

from tradesim import normalize
from tradesim.models import Tick
from tradesim.providers.base import PriceSource, get_json

_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}


class YahooQuoteSource(PriceSource):
    """Session-aware equity quote (pre / regular / post / closed)."""

    name = "yahoo"

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol.upper()

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        now_s = int(time.time())
        data = await get_json(
            self.name,
            _CHART_URL.format(symbol=self.symbol),
            params={
                "interval": "1m",
                "range": "1d",
                "includePrePost": "true",
                # defeats intermediary caching of the quote
                "_t": now_s,
            },
            headers=_HEADERS,
            session=session,
        )
        return normalize.yahoo_quote(data, now_s)
