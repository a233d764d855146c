"""Source sessions — one live connection (push or poll) for one symbol.

A session is a set of asyncio tasks. ``cancel()`` is synchronous: it raises
the cancelled flag and cancels every task, so no callback fires after it
returns even if a task is still unwinding. ``wait_closed()`` awaits the
unwinding; ``close()`` does both.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Coroutine
from typing import Any

import aiohttp
from loguru import logger

from tradesim.failover import Err, Ok, Result, SourceChain, attempt
from tradesim.models import Tick
from tradesim.providers.base import DEFAULT_TIMEOUT, PriceSource, TickStream

_log = logger.bind(component="session")


class SourceSession:
    """Base class: task bookkeeping and stale-callback suppression."""

    name = "session"

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task] = []
        self._cancelled = False
        self._started = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._started and not self._cancelled and any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self._started:
            raise RuntimeError(f"{self.name} session already started")
        if self._cancelled:
            raise RuntimeError(f"{self.name} session was cancelled")
        self._started = True
        self._run()

    def _run(self) -> None:
        raise NotImplementedError

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.append(task)
        return task

    def cancel(self) -> None:
        self._cancelled = True
        for task in self._tasks:
            task.cancel()

    async def wait_closed(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        self.cancel()
        await self.wait_closed()


class StreamSession(SourceSession):
    """Runs a :class:`TickStream` until it ends, fails, or is cancelled.

    ``on_closed(error)`` fires once when the stream ends on its own
    (``error`` is ``None`` for a clean close), never after ``cancel()``.
    """

    def __init__(
        self,
        stream: TickStream,
        on_tick: Callable[[Tick], None],
        on_closed: Callable[[BaseException | None], None] | None = None,
    ) -> None:
        super().__init__()
        self.stream = stream
        self.name = stream.name
        self.on_tick = on_tick
        self.on_closed = on_closed
        self._live = asyncio.Event()
        self._main: asyncio.Task | None = None

    @property
    def is_live(self) -> bool:
        return self._live.is_set()

    def _run(self) -> None:
        self._main = self._spawn(self._consume())

    def _mark_live(self) -> None:
        if not self._cancelled:
            self._live.set()

    async def _consume(self) -> None:
        error: BaseException | None = None
        try:
            async with contextlib.aclosing(self.stream.ticks(self._mark_live)) as ticks:
                async for tick in ticks:
                    if self._cancelled:
                        return
                    self.on_tick(tick)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc

        if self._cancelled:
            return
        if error is not None:
            _log.warning(f"{self.name} stream failed: {error}")
        else:
            _log.info(f"{self.name} stream closed")
        if self.on_closed is not None:
            self.on_closed(error)

    async def wait_live(self, timeout: float) -> bool:
        """Wait until the upstream confirms the subscription.

        Returns ``False`` on timeout or if the stream ended first.
        """
        if self._main is None:
            raise RuntimeError("session not started")
        waiter = asyncio.ensure_future(self._live.wait())
        try:
            await asyncio.wait(
                {waiter, self._main},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
        return self._live.is_set() and not self._cancelled


class PollingSession(SourceSession):
    """A fast price loop over a :class:`SourceChain` and an optional slow
    stats loop. The loops are independent tasks; one failing never stalls
    the other.
    """

    name = "polling"

    def __init__(
        self,
        chain: SourceChain,
        on_tick: Callable[[Tick], None],
        *,
        interval: float,
        on_error: Callable[[Err], None] | None = None,
        stats_source: PriceSource | None = None,
        on_stats: Callable[[Tick], None] | None = None,
        stats_interval: float = 30.0,
        timeout: float = DEFAULT_TIMEOUT,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__()
        self.chain = chain
        self.on_tick = on_tick
        self.on_error = on_error
        self.interval = interval
        self.stats_source = stats_source
        self.on_stats = on_stats
        self.stats_interval = stats_interval
        self.timeout = timeout
        self.http = http

    def _run(self) -> None:
        self._spawn(self._price_loop())
        if self.stats_source is not None and self.on_stats is not None:
            self._spawn(self._stats_loop())

    async def _price_loop(self) -> None:
        while not self._cancelled:
            result: Result = await self.chain.next_tick(self.http)
            if self._cancelled:
                return
            if isinstance(result, Ok):
                self.on_tick(result.value)
            elif self.on_error is not None:
                self.on_error(result)
            await asyncio.sleep(self.interval)

    async def _stats_loop(self) -> None:
        while not self._cancelled:
            result = await attempt(self.stats_source, self.http, self.timeout)
            if self._cancelled:
                return
            if isinstance(result, Ok):
                self.on_stats(result.value)
            else:
                _log.debug(f"stats from {result.source} failed: {result.error}")
            await asyncio.sleep(self.stats_interval)
