"""Unit tests for tradesim.normalize (literal provider payloads, no network)."""

import pytest

from tradesim import normalize
from tradesim.errors import PayloadError
from tradesim.models import Candle, MarketSession

NOW_MS = 1_700_000_000_000


def test_coinbase_candles_reorders_fields_and_sorts_ascending():
    rows = [
        [1_700_000_060, 9.0, 12.0, 10.0, 11.0, 5.5],  # newest first
        [1_700_000_000, 8.0, 10.5, 9.5, 10.0, 3.0],
    ]
    candles = normalize.coinbase_candles(rows)
    assert [c.time for c in candles] == [1_700_000_000_000, 1_700_000_060_000]
    assert candles[1] == Candle(1_700_000_060_000, 10.0, 12.0, 9.0, 11.0, 5.5)


def test_coinbase_candles_skips_bad_rows():
    rows = [[1_700_000_000, 8.0, 10.5, 9.5, 10.0, 3.0], [1_700_000_060, None], "junk"]
    assert len(normalize.coinbase_candles(rows)) == 1


def test_coinbase_candles_rejects_non_array():
    with pytest.raises(PayloadError):
        normalize.coinbase_candles({"message": "NotFound"})


def test_binance_klines_milliseconds_and_dedupe():
    rows = [
        [1_700_000_000_000, "1", "2", "0.5", "1.5", "10", 0, "0", 0, "0", "0", "0"],
        [1_700_000_060_000, "1.5", "3", "1", "2", "7"],
        [1_700_000_060_000, "1.5", "3.5", "1", "2.5", "8"],
    ]
    candles = normalize.binance_klines(rows)
    assert len(candles) == 2
    assert candles[0].time == 1_700_000_000_000
    assert candles[1].high == 3.5  # later duplicate wins


def test_candles_with_open_or_close_outside_range_are_skipped():
    rows = [
        [1_700_000_000_000, "1", "2", "0.5", "2.5", "10"],  # close above high
        [1_700_000_060_000, "0.4", "2", "0.5", "1.5", "10"],  # open below low
        [1_700_000_120_000, "1", "2", "0.5", "1.5", "10"],
    ]
    assert [c.time for c in normalize.binance_klines(rows)] == [1_700_000_120_000]
    with pytest.raises(ValueError):
        Candle(1_700_000_000_000, 1.0, 2.0, 0.5, 2.5, 0.0)


def test_gecko_ohlcv_seconds_descending():
    payload = {
        "data": {
            "attributes": {
                "ohlcv_list": [
                    [1_700_000_060, 2, 3, 1, 2.5, 100],
                    [1_700_000_000, 1, 2, 0.5, 2, 50],
                ]
            }
        }
    }
    candles = normalize.gecko_ohlcv(payload)
    assert [c.time for c in candles] == [1_700_000_000_000, 1_700_000_060_000]


def test_gecko_ohlcv_missing_wrapper():
    with pytest.raises(PayloadError):
        normalize.gecko_ohlcv({"errors": [{"status": "404"}]})


def test_finnhub_candles_object_of_arrays():
    payload = {
        "s": "ok",
        "t": [1_700_000_060, 1_700_000_000],
        "o": [2, 1],
        "h": [3, 2],
        "l": [1, 0.5],
        "c": [2.5, 1.5],
        "v": [10, 20],
    }
    candles = normalize.finnhub_candles(payload)
    assert [c.close for c in candles] == [1.5, 2.5]


def test_finnhub_no_data_status():
    with pytest.raises(PayloadError):
        normalize.finnhub_candles({"s": "no_data"})


def test_coinbase_ticker_message():
    msg = {
        "type": "ticker",
        "product_id": "BTC-USD",
        "price": "50500.00",
        "open_24h": "50000.00",
        "high_24h": "51000",
        "low_24h": "49000",
        "volume_24h": "1234.5",
        "time": "2023-11-14T22:13:20.000000Z",
    }
    tick = normalize.coinbase_ticker_message(msg, NOW_MS)
    assert tick.price == 50500.0
    assert tick.time == 1_700_000_000_000
    assert tick.stats.change == pytest.approx(500.0)
    assert tick.stats.change_percent == pytest.approx(1.0)
    assert tick.stats.volume == 1234.5


def test_coinbase_ticker_rejects_zero_price():
    with pytest.raises(PayloadError):
        normalize.coinbase_ticker_message({"type": "ticker", "price": "0"}, NOW_MS)


def test_binance_ticker_24h():
    payload = {
        "lastPrice": "101.5",
        "priceChange": "1.5",
        "priceChangePercent": "1.5",
        "highPrice": "102",
        "lowPrice": "99",
        "volume": "1000",
        "closeTime": 1_700_000_001_000,
    }
    tick = normalize.binance_ticker_24h(payload, NOW_MS)
    assert tick.price == 101.5
    assert tick.time == 1_700_000_001_000
    assert tick.stats.high == 102.0


def _yahoo(meta, closes=None):
    return {
        "chart": {
            "result": [
                {"meta": meta, "indicators": {"quote": [{"close": closes or []}]}}
            ]
        }
    }


def test_yahoo_quote_regular_session():
    now_s = 1_700_000_000
    meta = {
        "regularMarketPrice": 190.0,
        "previousClose": 188.0,
        "regularMarketDayHigh": 191.0,
        "regularMarketDayLow": 187.5,
        "regularMarketVolume": 5_000_000,
        "currentTradingPeriod": {
            "pre": {"start": now_s - 20_000, "end": now_s - 100},
            "regular": {"start": now_s - 100, "end": now_s + 100},
            "post": {"start": now_s + 100, "end": now_s + 10_000},
        },
    }
    tick = normalize.yahoo_quote(_yahoo(meta), now_s)
    assert tick.price == 190.0
    assert tick.stats.session is MarketSession.REGULAR
    assert tick.stats.change == pytest.approx(2.0)


def test_yahoo_quote_post_market_falls_back_to_last_bar():
    now_s = 1_700_000_000
    meta = {
        "regularMarketPrice": 190.0,
        "previousClose": 188.0,
        "currentTradingPeriod": {
            "pre": {"start": now_s - 30_000, "end": now_s - 20_000},
            "regular": {"start": now_s - 20_000, "end": now_s - 100},
            "post": {"start": now_s - 100, "end": now_s + 100},
        },
    }
    tick = normalize.yahoo_quote(_yahoo(meta, [189.0, 191.2, None]), now_s)
    assert tick.stats.session is MarketSession.POST
    assert tick.price == 191.2


def test_yahoo_quote_without_result():
    with pytest.raises(PayloadError):
        normalize.yahoo_quote({"chart": {"result": None}}, 0)


def test_jupiter_price():
    mint = "So11111111111111111111111111111111111111112"
    tick = normalize.jupiter_price({mint: {"usdPrice": 150.2, "priceChange24h": -3.0}}, mint, NOW_MS)
    assert tick.price == 150.2
    assert tick.stats.change_percent == -3.0


def test_gecko_token_price_lowercased_key():
    address = "0xAbCdEf"
    payload = {"data": {"attributes": {"token_prices": {"0xabcdef": "0.0042"}}}}
    assert normalize.gecko_token_price(payload, address, NOW_MS).price == 0.0042


def test_dexscreener_pair_prefers_most_liquid_on_chain():
    payload = {
        "pairs": [
            {"chainId": "ethereum", "pairAddress": "E", "priceUsd": "1", "liquidity": {"usd": 9e9}},
            {"chainId": "solana", "pairAddress": "S1", "priceUsd": "1.1", "liquidity": {"usd": 1000}},
            {"chainId": "solana", "pairAddress": "S2", "priceUsd": "1.2", "liquidity": {"usd": 5000}},
        ]
    }
    pair = normalize.dexscreener_pair(payload, "solana")
    assert pair["pairAddress"] == "S2"
    tick = normalize.dexscreener_tick(
        {"priceUsd": "1.2", "priceChange": {"h24": 12.5}, "volume": {"h24": 1e6}}, NOW_MS
    )
    assert tick.stats.change_percent == 12.5
    assert tick.stats.volume == 1e6


def test_dexscreener_no_pairs():
    with pytest.raises(PayloadError):
        normalize.dexscreener_pair({"pairs": None}, "solana")
