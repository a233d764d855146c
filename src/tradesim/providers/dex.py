"""On-chain token providers — Jupiter, Raydium, GeckoTerminal, DexScreener.

Token symbols look like ``dex:<chain>:<token_address>`` with an optional
fourth part naming the pool to chart (``dex:solana:<mint>:<pool>``).
Addresses are case-sensitive and never upper-cased.

No single service answers for every token, so several price sources exist
for the same symbol and the failover chain decides which one to ask.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass

import aiohttp
from loguru import logger

from tradesim import normalize
from tradesim.errors import PayloadError, ProviderError
from tradesim.models import Candle, Tick
from tradesim.providers.base import OHLCVProvider, PriceSource, get_json, now_ms

_JUPITER_URL = "https://api.jup.ag/price/v3"
_RAYDIUM_URL = "https://api-v3.raydium.io/mint/price"
_GECKO_URL = "https://api.geckoterminal.com/api/v2"
_DEXSCREENER_URL = "https://api.dexscreener.com/latest/dex"

# chain id → GeckoTerminal network slug
GECKO_NETWORKS: dict[str, str] = {
    "solana": "solana",
    "ethereum": "eth",
    "bsc": "bsc",
    "base": "base",
    "arbitrum": "arbitrum",
    "polygon": "polygon_pos",
    "avalanche": "avax",
    "optimism": "optimism",
}

# tradesim interval → (GeckoTerminal timeframe, aggregate)
_GECKO_TF: dict[str, tuple[str, int]] = {
    "1m": ("minute", 1),
    "5m": ("minute", 5),
    "15m": ("minute", 15),
    "1h": ("hour", 1),
    "4h": ("hour", 4),
    "1d": ("day", 1),
}

_GECKO_MAX_BARS = 1000

_log = logger.bind(component="dex")


@dataclass(slots=True)
class DexToken:
    """An on-chain token. ``pool_address`` is filled in once discovered."""

    chain_id: str
    address: str
    pool_address: str = ""

    @property
    def gecko_network(self) -> str | None:
        return GECKO_NETWORKS.get(self.chain_id.lower())


def is_dex_symbol(symbol: str) -> bool:
    return symbol.strip().lower().startswith("dex:")


def parse_dex_symbol(symbol: str) -> DexToken:
    """Split ``dex:<chain>:<address>[:<pool>]``; raises ``ValueError`` otherwise."""
    parts = symbol.strip().split(":")
    if len(parts) not in (3, 4) or parts[0].lower() != "dex" or not parts[1] or not parts[2]:
        raise ValueError(f"not a dex token symbol: {symbol!r}")
    pool = parts[3] if len(parts) == 4 else ""
    return DexToken(chain_id=parts[1].lower(), address=parts[2], pool_address=pool)


@functools.lru_cache(maxsize=256)
def token_for(symbol: str) -> DexToken:
    """Shared :class:`DexToken` per symbol, so a pool found by one source
    is reused by the others and by the chart provider."""
    return parse_dex_symbol(symbol)


class JupiterSource(PriceSource):
    """Solana only. Fastest single-request source when it knows the mint."""

    name = "jupiter"

    def __init__(self, token: DexToken) -> None:
        self.token = token

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        data = await get_json(
            self.name, _JUPITER_URL, params={"ids": self.token.address}, session=session
        )
        return normalize.jupiter_price(data, self.token.address, now_ms())


class RaydiumSource(PriceSource):
    """Solana only."""

    name = "raydium"

    def __init__(self, token: DexToken) -> None:
        self.token = token

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        data = await get_json(
            self.name, _RAYDIUM_URL, params={"mints": self.token.address}, session=session
        )
        return normalize.raydium_price(data, self.token.address, now_ms())


class GeckoPriceSource(PriceSource):
    name = "geckoterminal"

    def __init__(self, token: DexToken) -> None:
        self.token = token

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        network = self.token.gecko_network
        if network is None:
            raise ProviderError(self.name, f"unsupported chain {self.token.chain_id}")
        data = await get_json(
            self.name,
            f"{_GECKO_URL}/simple/networks/{network}/token_price/{self.token.address}",
            session=session,
        )
        return normalize.gecko_token_price(data, self.token.address, now_ms())


class DexScreenerSource(PriceSource):
    """Price plus 24h change/volume; also discovers the token's main pool.

    Also serves the slow stats loop, since it is the only source here that
    reports 24h volume.
    """

    name = "dexscreener"

    def __init__(self, token: DexToken) -> None:
        self.token = token

    async def poll(self, session: aiohttp.ClientSession | None = None) -> Tick:
        token = self.token
        if token.pool_address:
            try:
                data = await get_json(
                    self.name,
                    f"{_DEXSCREENER_URL}/pairs/{token.chain_id}/{token.pool_address}",
                    session=session,
                )
                return normalize.dexscreener_tick(
                    normalize.dexscreener_pair(data, token.chain_id), now_ms()
                )
            except (ProviderError, aiohttp.ClientError) as exc:
                _log.debug(f"pairs endpoint failed, trying tokens endpoint: {exc}")

        data = await get_json(
            self.name, f"{_DEXSCREENER_URL}/tokens/{token.address}", session=session
        )
        pair = normalize.dexscreener_pair(data, token.chain_id)
        if not token.pool_address and pair.get("pairAddress"):
            token.pool_address = str(pair["pairAddress"])
        return normalize.dexscreener_tick(pair, now_ms())


class GeckoOHLCVProvider(OHLCVProvider):
    """Pool candles from GeckoTerminal.

    Needs a pool address; when the symbol does not carry one it is looked up
    once through DexScreener (most liquid pair on the token's chain).
    """

    name = "geckoterminal"

    def supports(self, symbol: str) -> bool:
        try:
            return token_for(symbol).gecko_network is not None
        except ValueError:
            return False

    async def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int,
        *,
        end: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> list[Candle] | None:
        tf = _GECKO_TF.get(interval)
        if tf is None:
            return None

        token = token_for(symbol)
        if not token.pool_address:
            await self._discover_pool(token, session)

        timeframe, aggregate = tf
        params = {"aggregate": aggregate, "limit": min(limit, _GECKO_MAX_BARS)}
        if end is not None:
            params["before_timestamp"] = end // 1000
        data = await get_json(
            self.name,
            f"{_GECKO_URL}/networks/{token.gecko_network}/pools/{token.pool_address}/ohlcv/{timeframe}",
            params=params,
            session=session,
        )
        candles = normalize.gecko_ohlcv(data)
        if end is not None:
            candles = [c for c in candles if c.time < end]
        return candles[-limit:] or None

    async def _discover_pool(
        self, token: DexToken, session: aiohttp.ClientSession | None
    ) -> None:
        data = await get_json(
            "dexscreener", f"{_DEXSCREENER_URL}/tokens/{token.address}", session=session
        )
        pair = normalize.dexscreener_pair(data, token.chain_id)
        if not pair.get("pairAddress"):
            raise PayloadError("dexscreener", "pair has no address")
        token.pool_address = str(pair["pairAddress"])
        _log.info(f"Using pool {token.pool_address[:10]}... for {token.address[:8]}...")
