"""Unit tests for symbol classification and provider routing."""

import pytest

from tradesim import registry
from tradesim.models import MarketClass
from tradesim.providers.dex import parse_dex_symbol

MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


@pytest.mark.parametrize(
    "symbol, expected",
    [
        ("BTCUSDT", MarketClass.CRYPTO),
        ("ETHBTC", MarketClass.CRYPTO),
        ("AAPL", MarketClass.EQUITY),
        ("^GSPC", MarketClass.EQUITY),
        ("WM.TO", MarketClass.EQUITY),
        (f"dex:solana:{MINT}", MarketClass.DEX),
    ],
)
def test_classify(symbol, expected):
    assert registry.classify(symbol) is expected


def test_history_chains():
    assert [p.name for p in registry.pick("BTCUSDT")] == ["coinbase", "binance"]
    assert [p.name for p in registry.pick("AAPL")] == ["yfinance", "finnhub"]
    assert [p.name for p in registry.pick(f"dex:solana:{MINT}")] == ["geckoterminal"]


def test_price_chains():
    assert [s.name for s in registry.price_sources("BTCUSDT")] == ["coinbase", "binance"]
    assert [s.name for s in registry.price_sources("AAPL")] == ["yahoo", "yfinance"]
    assert [s.name for s in registry.price_sources(f"dex:solana:{MINT}")] == [
        "jupiter", "raydium", "geckoterminal", "dexscreener",
    ]
    assert [s.name for s in registry.price_sources("dex:base:0xabc")] == [
        "geckoterminal", "dexscreener",
    ]
    assert [s.name for s in registry.price_sources("dex:fantom:0xabc")] == ["dexscreener"]


def test_stream_only_for_crypto():
    assert registry.stream_for("BTCUSDT").name == "coinbase-ws"
    assert registry.stream_for("AAPL") is None


def test_parse_dex_symbol_keeps_address_case():
    token = parse_dex_symbol(f"dex:Solana:{MINT}:PoolAddr")
    assert token.chain_id == "solana"
    assert token.address == MINT
    assert token.pool_address == "PoolAddr"
    with pytest.raises(ValueError):
        parse_dex_symbol("dex:solana")


def test_check_symbol():
    assert registry.check_symbol("BTCUSDT") is MarketClass.CRYPTO
    assert registry.check_symbol(f" dex:solana:{MINT}") is MarketClass.DEX
    for bad in ("", "   ", "dex:solana", "dex::abc"):
        with pytest.raises(ValueError):
            registry.check_symbol(bad)


@pytest.mark.asyncio
async def test_fetch_history_skips_failing_provider(monkeypatch):
    from tradesim.errors import ProviderError
    from tradesim.models import Candle

    candles = [Candle(1_700_000_040_000, 1, 2, 0.5, 1.5, 1)]

    class Failing:
        name = "coinbase"

        def supports(self, symbol):
            return True

        async def fetch(self, *a, **kw):
            raise ProviderError("coinbase", "HTTP 429")

    class Working:
        name = "binance"

        def supports(self, symbol):
            return True

        async def fetch(self, *a, **kw):
            return candles

    monkeypatch.setattr(registry, "pick", lambda symbol: [Failing(), Working()])
    assert await registry.fetch_history("BTCUSDT", "1m", 10) == ("binance", candles)
    assert await registry.fetch_history("BTCUSDT", "1m", 10, prefer="coinbase") is None
