"""Command line: ``python -m tradesim watch BTCUSDT --timeframe 1m``."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import aiohttp
from loguru import logger

from tradesim.config import load_settings
from tradesim.ledger import Ledger
from tradesim.log import setup_logging
from tradesim.slots import ChartGrid
from tradesim.store import STATUS, TICKER, StateChange, StateStore
from tradesim.timeframes import TIMEFRAME_MS

_log = logger.bind(component="cli")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tradesim", description="Paper trading market feeds")
    sub = parser.add_subparsers(dest="command", required=True)
    watch = sub.add_parser("watch", help="Stream a symbol's live ticker and candles")
    watch.add_argument("symbol", help="BTCUSDT, AAPL, dex:solana:<mint>, ...")
    watch.add_argument("--timeframe", "-t", default="1m", choices=sorted(TIMEFRAME_MS))
    watch.add_argument("--config", "-c", type=Path, default=None, help="YAML settings file")
    return parser.parse_args(argv)


def _print_change(store: StateStore, change: StateChange) -> None:
    state = store.slot(change.slot_id) if change.slot_id else None
    if state is None:
        return
    if change.topic == STATUS:
        _log.info(f"{state.symbol}: {state.status.value}")
    elif change.topic == TICKER and state.ticker is not None:
        t = state.ticker
        bar = state.candles[-1] if state.candles else None
        _log.info(
            f"{t.symbol} {t.price:,.6g} ({t.change_percent_24h:+.2f}%)"
            + (f" | bar O {bar.open:.6g} H {bar.high:.6g} L {bar.low:.6g} C {bar.close:.6g}" if bar else "")
        )


async def watch(symbol: str, timeframe: str, config: Path | None) -> None:
    settings = load_settings(config)
    setup_logging(settings.log_level, settings.log_file)
    ledger = Ledger.with_new_store(settings.initial_balance)
    store = ledger.store
    unsubscribe = store.subscribe(_print_change, topics=(TICKER, STATUS))

    async with aiohttp.ClientSession() as http:
        grid = ChartGrid(store, ledger, settings, http=http)
        grid.add(symbol, timeframe, activate=True)
        try:
            await asyncio.Event().wait()
        finally:
            await grid.close()
            unsubscribe()
            store.close()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    if args.command == "watch":
        try:
            asyncio.run(watch(args.symbol, args.timeframe, args.config))
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
