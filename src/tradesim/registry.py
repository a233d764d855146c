"""Provider registry — classifies symbols and routes them to provider chains.

Market class detection (from symbol syntax):
- DEX     : explicit ``dex:`` prefix  (e.g. ``dex:solana:<mint>``)
- Crypto  : exchange pair suffix USDT / USDC / BTC / ETH / BNB / BUSD / FDUSD
            (e.g. ``BTCUSDT``)
- Equity  : anything else  (e.g. ``AAPL``, ``^GSPC``, ``WM.TO``, ``BRK-B``)
"""

from __future__ import annotations

import asyncio
import re

import aiohttp
from loguru import logger

from tradesim.errors import ProviderError
from tradesim.models import Candle, MarketClass
from tradesim.providers.base import OHLCVProvider, PriceSource, TickStream
from tradesim.providers.dex import is_dex_symbol, parse_dex_symbol

# Lazy imports: providers are only loaded when first used
_coinbase: OHLCVProvider | None = None
_binance: OHLCVProvider | None = None
_yfinance: OHLCVProvider | None = None
_finnhub: OHLCVProvider | None = None
_gecko: OHLCVProvider | None = None

_CRYPTO_RE = re.compile(r"^[A-Z0-9]{2,}(USDT|USDC|BTC|ETH|BNB|BUSD|FDUSD)$")

_log = logger.bind(component="registry")


def classify(symbol: str) -> MarketClass:
    if is_dex_symbol(symbol):
        return MarketClass.DEX
    if _CRYPTO_RE.match(symbol.strip().upper()):
        return MarketClass.CRYPTO
    return MarketClass.EQUITY


def check_symbol(symbol: str) -> MarketClass:
    """Classify *symbol*, raising ``ValueError`` when no chain could serve it."""
    if not symbol or not symbol.strip():
        raise ValueError("empty symbol")
    market = classify(symbol)
    if market is MarketClass.DEX:
        parse_dex_symbol(symbol)
    return market


def _get_coinbase() -> OHLCVProvider:
    global _coinbase
    if _coinbase is None:
        from tradesim.providers.coinbase import CoinbaseProvider  # noqa: PLC0415
        _coinbase = CoinbaseProvider()
    return _coinbase


def _get_binance() -> OHLCVProvider:
    global _binance
    if _binance is None:
        from tradesim.providers.binance import BinanceProvider  # noqa: PLC0415
        _binance = BinanceProvider()
    return _binance


def _get_yfinance() -> OHLCVProvider:
    global _yfinance
    if _yfinance is None:
        from tradesim.providers.yfinance import YFinanceProvider  # noqa: PLC0415
        _yfinance = YFinanceProvider()
    return _yfinance


def _get_finnhub() -> OHLCVProvider:
    global _finnhub
    if _finnhub is None:
        from tradesim.providers.finnhub import FinnhubProvider  # noqa: PLC0415
        _finnhub = FinnhubProvider()
    return _finnhub


def _get_gecko() -> OHLCVProvider:
    global _gecko
    if _gecko is None:
        from tradesim.providers.dex import GeckoOHLCVProvider  # noqa: PLC0415
        _gecko = GeckoOHLCVProvider()
    return _gecko


def pick(symbol: str) -> list[OHLCVProvider]:
    """Return the ordered history provider chain for *symbol*.

    Routing rules:
    - Crypto → Coinbase (primary), Binance (fallback, all intervals)
    - Equity → yfinance (primary), Finnhub (fallback, needs API key)
    - DEX    → GeckoTerminal pool OHLCV
    """
    market = classify(symbol)
    if market is MarketClass.CRYPTO:
        return [_get_coinbase(), _get_binance()]
    if market is MarketClass.DEX:
        return [_get_gecko()]
    return [_get_yfinance(), _get_finnhub()]


def price_sources(symbol: str) -> list[PriceSource]:
    """Return the ordered polling chain for *symbol*'s live price.

    New instances every call; sources are bound to one symbol.
    """
    market = classify(symbol)
    if market is MarketClass.CRYPTO:
        from tradesim.providers.binance import BinanceTickerSource  # noqa: PLC0415
        from tradesim.providers.coinbase import CoinbaseStatsSource  # noqa: PLC0415
        return [CoinbaseStatsSource(symbol), BinanceTickerSource(symbol)]

    if market is MarketClass.DEX:
        from tradesim.providers import dex  # noqa: PLC0415
        token = dex.token_for(symbol)
        chain: list[PriceSource] = []
        if token.chain_id == "solana":
            chain += [dex.JupiterSource(token), dex.RaydiumSource(token)]
        if token.gecko_network is not None:
            chain.append(dex.GeckoPriceSource(token))
        chain.append(dex.DexScreenerSource(token))
        return chain

    from tradesim.providers.yahoo import YahooQuoteSource  # noqa: PLC0415
    from tradesim.providers.yfinance import YFinanceQuoteSource  # noqa: PLC0415
    return [YahooQuoteSource(symbol), YFinanceQuoteSource(symbol)]


def stats_source(symbol: str) -> PriceSource | None:
    """Slow-loop source for 24h statistics, where the price sources lack them."""
    if classify(symbol) is not MarketClass.DEX:
        return None
    from tradesim.providers import dex  # noqa: PLC0415
    return dex.DexScreenerSource(dex.token_for(symbol))


def stream_for(symbol: str) -> TickStream | None:
    """Push stream for *symbol*, or ``None`` when only polling is available."""
    if classify(symbol) is not MarketClass.CRYPTO:
        return None
    from tradesim.providers.coinbase import CoinbaseTickerStream  # noqa: PLC0415
    return CoinbaseTickerStream(symbol)


async def fetch_history(
    symbol: str,
    interval: str,
    limit: int,
    *,
    end: int | None = None,
    prefer: str | None = None,
    session: aiohttp.ClientSession | None = None,
) -> tuple[str, list[Candle]] | None:
    """Walk *symbol*'s chain and return ``(provider_name, candles)``.

    With *prefer*, only the provider of that name is asked; backward pages
    must come from the provider that served the initial history.
    Provider errors are logged and the next provider is tried.
    """
    chain = pick(symbol)
    if prefer is not None:
        chain = [p for p in chain if p.name == prefer]

    for provider in chain:
        if not provider.supports(symbol):
            continue
        try:
            result = await provider.fetch(symbol, interval, limit, end=end, session=session)
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            _log.debug(f"{provider.name} history for {symbol} failed: {exc}")
            continue
        except Exception as exc:
            _log.warning(f"{provider.name} history for {symbol} failed: {exc}")
            continue
        if result:
            return provider.name, result
    return None


async def fetch(
    symbol: str,
    interval: str = "1d",
    limit: int = 100,
) -> list[Candle] | None:
    """Fetch OHLCV data for *symbol*, trying providers in order.

    Returns the first successful result, or ``None`` if all providers fail.

    Args:
        symbol:   ``BTCUSDT``, ``AAPL``, ``WM.TO``, ``dex:solana:<mint>``.
        interval: Bar interval — ``1m``, ``5m``, ``15m``, ``1h``, ``4h``, ``1d``, ...
        limit:    Number of bars to return (most recent, oldest-first).
    """
    found = await fetch_history(symbol, interval, limit)
    return found[1] if found else None
