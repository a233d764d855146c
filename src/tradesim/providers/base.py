"""Abstract base classes for candle providers, price sources, and tick streams."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import aiohttp

from tradesim.errors import ProviderError
from tradesim.models import Candle, Tick

#: Client-side timeout for one REST request, seconds. Short enough that a hung
#: upstream cannot stall a 1s polling loop for long.
DEFAULT_TIMEOUT = 4.0


def now_ms() -> int:
    return int(time.time() * 1000)


@asynccontextmanager
async def _client(session: aiohttp.ClientSession | None):
    if session is not None:
        yield session
    else:
        async with aiohttp.ClientSession() as own:
            yield own


async def get_json(
    provider: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    session: aiohttp.ClientSession | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    headers: dict[str, str] | None = None,
) -> Any:
    """GET *url* and decode JSON, raising :class:`ProviderError` on non-200.

    Uses *session* when given, otherwise a throwaway session for this call.
    """
    async with _client(session) as client:
        async with client.get(
            url,
            params=params,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            if resp.status != 200:
                raise ProviderError(provider, f"HTTP {resp.status}")
            return await resp.json(content_type=None)


class OHLCVProvider(ABC):
    """Base class every historical candle provider must implement.

    Providers are tried in order by the registry. The first one to return
    a non-empty list wins; the next provider is tried on None, empty, or error.
    """

    #: Human-readable provider name used in logs and error messages.
    name: str = ""

    @abstractmethod
    def supports(self, symbol: str) -> bool:
        """Return True if this provider can attempt to fetch *symbol*.

        Implementations should do a quick pattern check (e.g. regex) and
        return False fast for symbols they definitely cannot handle.
        """

    @abstractmethod
    async def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int,
        *,
        end: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> list[Candle] | None:
        """Fetch OHLCV candles for *symbol*.

        Args:
            symbol:   Ticker symbol (``BTCUSDT``, ``AAPL``, ``dex:solana:<mint>``).
            interval: Bar interval string — one of
                      :data:`tradesim.timeframes.TIMEFRAME_MS`.
            limit:    Maximum number of bars to return.
            end:      Exclusive upper bound on bar open time (unix ms). ``None``
                      means "up to now"; backward pagination passes the
                      oldest loaded bar's time.
            session:  Shared HTTP session, if the caller has one.

        Returns:
            Up to *limit* :class:`~tradesim.models.Candle` objects, oldest
            first, or ``None`` if the symbol/interval is not available here.
        """


class PriceSource(ABC):
    """One way of getting the current price of one symbol.

    Sources are bound to a symbol at construction; the failover chain only
    ever calls :meth:`poll`. Failures raise; :func:`tradesim.failover.attempt`
    turns them into results.
    """

    name: str = ""

    @abstractmethod
    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        """Return the latest price as a normalized :class:`Tick`."""


class TickStream(ABC):
    """A push subscription for one symbol."""

    name: str = ""

    @abstractmethod
    def ticks(self, on_live: Callable[[], None]) -> AsyncIterator[Tick]:
        """Connect, subscribe and yield ticks until the connection ends.

        *on_live* must be called once the upstream confirms the subscription.
        A clean server close ends the iteration; transport errors propagate.
        """
