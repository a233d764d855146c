"""Failover — tagged results, preferred-source chains, and the per-symbol
controller that picks between streaming and polling.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Union

import aiohttp
from loguru import logger

from tradesim import registry
from tradesim.config import Settings
from tradesim.errors import ProviderError
from tradesim.models import (
    Candle,
    ConnectionStatus,
    DailyStats,
    MarketClass,
    Tick,
    Ticker,
)
from tradesim.providers.base import DEFAULT_TIMEOUT, PriceSource

_log = logger.bind(component="failover")


@dataclass(frozen=True, slots=True)
class Ok:
    value: Tick
    source: str


@dataclass(frozen=True, slots=True)
class Err:
    error: BaseException
    source: str


Result = Union[Ok, Err]


async def attempt(
    source: PriceSource,
    session: aiohttp.ClientSession | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Result:
    """Poll *source* once. Every failure becomes an :class:`Err`;
    cancellation propagates."""
    try:
        tick = await asyncio.wait_for(source.poll(session), timeout)
    except asyncio.CancelledError:
        raise
    except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        return Err(exc, source.name)
    except Exception as exc:
        _log.warning(f"unexpected failure from {source.name}: {exc!r}")
        return Err(exc, source.name)
    return Ok(tick, source.name)


class SourceChain:
    """Ordered price sources with a cached "last good" preference.

    Each :meth:`next_tick` is one polling cycle: the preferred source is
    asked first; on failure the chain is walked in order and the first
    source to answer becomes the preference. Every *reset_every* cycles the
    preference is dropped so the head of the chain gets another chance.
    """

    def __init__(
        self,
        sources: Sequence[PriceSource],
        *,
        reset_every: int = 60,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not sources:
            raise ValueError("a source chain needs at least one source")
        self.sources = list(sources)
        self.reset_every = reset_every
        self.timeout = timeout
        self.preferred: str | None = None
        self.cycles = 0

    def _find(self, name: str | None) -> PriceSource | None:
        for src in self.sources:
            if src.name == name:
                return src
        return None

    async def next_tick(self, session: aiohttp.ClientSession | None = None) -> Result:
        self.cycles += 1
        if self.reset_every and self.cycles % self.reset_every == 0 and self.preferred:
            _log.debug(f"dropping preferred source {self.preferred}")
            self.preferred = None

        preferred = self._find(self.preferred)
        if preferred is not None:
            result = await attempt(preferred, session, self.timeout)
            if isinstance(result, Ok):
                return result
            _log.debug(f"preferred {preferred.name} failed: {result.error}")
            self.preferred = None

        last: Result = Err(ProviderError("chain", "no source answered"), "")
        for src in self.sources:
            if src is preferred:
                continue
            result = await attempt(src, session, self.timeout)
            if isinstance(result, Ok):
                if self.preferred != src.name:
                    _log.debug(f"preferring {src.name}")
                self.preferred = src.name
                return result
            last = result
        return last


def project_ticker(
    symbol: str, price: float, stats: DailyStats | None, market: MarketClass
) -> Ticker:
    """Build the display snapshot for *price* with the latest known stats."""
    if stats is None:
        return Ticker(symbol=symbol, price=price, high_24h=price, low_24h=price)

    if market is MarketClass.DEX and stats.change_percent is not None:
        # Token services report only a 24h percent; high/low are estimated from it
        pct = stats.change_percent
        return Ticker(
            symbol=symbol,
            price=price,
            change_24h=price * pct / 100,
            change_percent_24h=pct,
            high_24h=price * (1 + abs(pct) / 100),
            low_24h=price * (1 - abs(pct) / 100),
            volume_24h=stats.volume or 0.0,
        )

    return Ticker(
        symbol=symbol,
        price=price,
        change_24h=stats.change or 0.0,
        change_percent_24h=stats.change_percent or 0.0,
        high_24h=stats.high if stats.high is not None else price,
        low_24h=stats.low if stats.low is not None else price,
        volume_24h=stats.volume or 0.0,
        market_session=stats.session,
    )


class FailoverController:
    """Keeps one symbol's live feed running.

    Loads history, then for crypto tries the push stream and waits up to
    ``connect_timeout`` for it to go live; anything else (or a stream that
    times out or drops) runs a :class:`~tradesim.session.PollingSession`.
    Equities and tokens also get a periodic candle refresh.

    Status goes to ``error`` only while no price has ever been received;
    afterwards failed cycles are logged and retried.
    """

    def __init__(
        self,
        symbol: str,
        timeframe: str,
        settings: Settings,
        *,
        on_tick: Callable[[Tick, Ticker], None],
        on_candles: Callable[[list[Candle], bool], None],
        on_status: Callable[[ConnectionStatus], None],
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        self.symbol = symbol
        self.timeframe = timeframe
        self.settings = settings
        self.market = registry.classify(symbol)
        self.on_tick = on_tick
        self.on_candles = on_candles
        self.on_status = on_status
        self.http = http

        self.status = ConnectionStatus.DISCONNECTED
        self.history_provider: str | None = None
        self.transport: str | None = None
        self.chain: SourceChain | None = None
        self._has_price = False
        self._stats: DailyStats | None = None
        self._live = None
        self._tasks: list[asyncio.Task] = []
        self._cancelled = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._set_status(ConnectionStatus.CONNECTING)
        self._tasks.append(asyncio.create_task(self._run()))

    def cancel(self) -> None:
        """Stop everything now; no callback fires after this returns."""
        self._cancelled = True
        if self._live is not None:
            self._live.cancel()
        for task in self._tasks:
            task.cancel()

    async def wait_closed(self) -> None:
        if self._live is not None:
            await self._live.wait_closed()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self) -> None:
        self.cancel()
        await self.wait_closed()
        self.status = ConnectionStatus.DISCONNECTED

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def load_history(self) -> list[Candle]:
        found = await registry.fetch_history(
            self.symbol, self.timeframe, self.settings.history_limit, session=self.http
        )
        if found is None:
            _log.warning(f"No history for {self.symbol} {self.timeframe}")
            return []
        self.history_provider, candles = found
        _log.info(f"Loaded {len(candles)} {self.timeframe} candles for {self.symbol} from {self.history_provider}")
        return candles

    async def load_older(self, before: int, limit: int | None = None) -> list[Candle]:
        """One backward page ending before *before* (ms), from the provider
        that served the initial history."""
        if self.history_provider is None:
            return []
        found = await registry.fetch_history(
            self.symbol,
            self.timeframe,
            limit or self.settings.history_limit,
            end=before,
            prefer=self.history_provider,
            session=self.http,
        )
        return found[1] if found else []

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._connect()
        except Exception as exc:
            self._fail(exc)

    def _fail(self, exc: Exception) -> None:
        if self._cancelled:
            return
        _log.error(f"{self.symbol}: feed setup failed: {exc!r}")
        if not self._has_price:
            self._set_status(ConnectionStatus.ERROR)

    async def _connect(self) -> None:
        candles = await self.load_history()
        if self._cancelled:
            return
        if candles:
            self.on_candles(candles, True)

        refresh = self._refresh_interval()
        if refresh:
            self._tasks.append(asyncio.create_task(self._refresh_loop(refresh)))

        if self.market is MarketClass.CRYPTO and self.settings.stream_enabled:
            if await self._try_stream():
                return
        if not self._cancelled:
            self._start_polling()

    def _refresh_interval(self) -> float | None:
        if self.market is MarketClass.EQUITY:
            return self.settings.equity_candle_refresh
        if self.market is MarketClass.DEX:
            return self.settings.dex_candle_refresh
        return None

    async def _refresh_loop(self, interval: float) -> None:
        while not self._cancelled:
            await asyncio.sleep(interval)
            found = await registry.fetch_history(
                self.symbol,
                self.timeframe,
                self.settings.history_limit,
                prefer=self.history_provider,
                session=self.http,
            )
            if self._cancelled:
                return
            if found:
                self.history_provider = found[0]
                self.on_candles(found[1], False)

    async def _try_stream(self) -> bool:
        from tradesim.session import StreamSession  # noqa: PLC0415

        stream = registry.stream_for(self.symbol)
        if stream is None:
            return False
        session = StreamSession(stream, self._handle_tick, self._on_stream_closed)
        self._live = session
        session.start()
        if await session.wait_live(self.settings.connect_timeout):
            self._set_status(ConnectionStatus.CONNECTED)
            # a stream that already dropped has handed over to polling
            if self._live is session:
                self.transport = stream.name
                _log.info(f"{self.symbol} streaming via {stream.name}")
            return True

        _log.warning(
            f"{stream.name} not live within {self.settings.connect_timeout}s, "
            f"polling {self.symbol} instead"
        )
        self._live = None
        await session.close()
        return False

    def _on_stream_closed(self, error: BaseException | None) -> None:
        if self._cancelled:
            return
        live = self._live
        if live is None or live.cancelled or not live.is_live:
            return
        _log.warning(f"{self.symbol} stream dropped, falling back to polling")
        self._live = None
        try:
            self._start_polling()
        except Exception as exc:
            self._fail(exc)

    def _start_polling(self) -> None:
        from tradesim.session import PollingSession  # noqa: PLC0415

        self.chain = SourceChain(
            registry.price_sources(self.symbol),
            reset_every=self.settings.preference_reset_cycles,
            timeout=self.settings.request_timeout,
        )
        session = PollingSession(
            self.chain,
            self._handle_tick,
            interval=self._poll_interval(),
            on_error=self._handle_failure,
            stats_source=registry.stats_source(self.symbol),
            on_stats=self._handle_stats,
            stats_interval=self.settings.stats_poll_interval,
            timeout=self.settings.request_timeout,
            http=self.http,
        )
        self._live = session
        self.transport = "polling"
        session.start()

    def _poll_interval(self) -> float:
        if self.market is MarketClass.CRYPTO:
            return self.settings.crypto_poll_interval
        if self.market is MarketClass.DEX:
            return self.settings.dex_poll_interval
        return self.settings.equity_poll_interval

    def _set_status(self, status: ConnectionStatus) -> None:
        if self._cancelled or status is self.status:
            return
        self.status = status
        self.on_status(status)

    def _handle_tick(self, tick: Tick) -> None:
        if self._cancelled:
            return
        self._has_price = True
        if tick.stats is not None:
            self._stats = tick.stats
        self._set_status(ConnectionStatus.CONNECTED)
        self.on_tick(tick, project_ticker(self.symbol, tick.price, self._stats, self.market))

    def _handle_stats(self, tick: Tick) -> None:
        if self._cancelled or tick.stats is None:
            return
        self._stats = tick.stats

    def _handle_failure(self, err: Err) -> None:
        if self._cancelled:
            return
        _log.debug(f"{self.symbol}: no price this cycle ({err.error})")
        if not self._has_price:
            self._set_status(ConnectionStatus.ERROR)
