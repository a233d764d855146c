"""Payload normalizers — provider-native JSON into canonical candles and ticks.

Every function here is pure: no I/O, no clock reads (callers pass ``now``).
A payload whose overall shape is wrong raises :class:`PayloadError`; inside a
well-formed candle array, individual rows that fail to parse are skipped, the
same way a provider with occasional null bars is tolerated.

Candle outputs are always ascending by ``time`` with duplicates removed.
"""

from __future__ import annotations

import datetime
import math
from collections.abc import Iterable, Mapping
from typing import Any

from tradesim.errors import PayloadError
from tradesim.models import Candle, DailyStats, MarketSession, Tick


def _num(value: Any, provider: str, field: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise PayloadError(provider, f"{field} is not numeric: {value!r}") from None
    if not math.isfinite(out):
        raise PayloadError(provider, f"{field} is not finite: {value!r}")
    return out


def _opt_num(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _price(value: Any, provider: str) -> float:
    price = _num(value, provider, "price")
    if price <= 0:
        raise PayloadError(provider, f"non-positive price {price}")
    return price


def _require_list(payload: Any, provider: str) -> list:
    if not isinstance(payload, list):
        raise PayloadError(provider, f"expected a JSON array, got {type(payload).__name__}")
    return payload


def _require_mapping(payload: Any, provider: str) -> Mapping:
    if not isinstance(payload, Mapping):
        raise PayloadError(provider, f"expected a JSON object, got {type(payload).__name__}")
    return payload


def _percent_change(price: float, reference: float | None) -> tuple[float | None, float | None]:
    if not reference:
        return None, None
    change = price - reference
    return change, change / reference * 100


def sort_and_dedupe(candles: Iterable[Candle]) -> list[Candle]:
    """Ascending by time; for repeated open times the later entry wins."""
    by_time: dict[int, Candle] = {}
    for candle in candles:
        by_time[candle.time] = candle
    return [by_time[t] for t in sorted(by_time)]


# ---------------------------------------------------------------------------
# Historical candles
# ---------------------------------------------------------------------------


def coinbase_candles(rows: Any) -> list[Candle]:
    """Coinbase Exchange ``/products/{id}/candles``.

    Row layout: ``[time_s, low, high, open, close, volume]``, newest first.
    """
    out: list[Candle] = []
    for row in _require_list(rows, "coinbase"):
        try:
            out.append(
                Candle(
                    time=int(row[0]) * 1000,
                    low=float(row[1]),
                    high=float(row[2]),
                    open=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
            )
        except (IndexError, TypeError, ValueError):
            continue
    return sort_and_dedupe(out)


def binance_klines(rows: Any) -> list[Candle]:
    """Binance ``/api/v3/klines``.

    Row layout (positions 0–5): ``[open_time_ms, open, high, low, close, volume, ...]``,
    oldest first.
    """
    out: list[Candle] = []
    for row in _require_list(rows, "binance"):
        try:
            out.append(
                Candle(
                    time=int(row[0]),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
            )
        except (IndexError, TypeError, ValueError):
            continue
    return sort_and_dedupe(out)


def gecko_ohlcv(payload: Any) -> list[Candle]:
    """GeckoTerminal pool OHLCV.

    ``{"data": {"attributes": {"ohlcv_list": [[time_s, o, h, l, c, v], ...]}}}``,
    newest first.
    """
    try:
        rows = payload["data"]["attributes"]["ohlcv_list"]
    except (KeyError, TypeError):
        raise PayloadError("geckoterminal", "missing data.attributes.ohlcv_list") from None
    out: list[Candle] = []
    for row in _require_list(rows, "geckoterminal"):
        try:
            out.append(
                Candle(
                    time=int(row[0]) * 1000,
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
            )
        except (IndexError, TypeError, ValueError):
            continue
    return sort_and_dedupe(out)


def finnhub_candles(payload: Any) -> list[Candle]:
    """Finnhub stock/forex candles — an object of parallel arrays, seconds."""
    raw = _require_mapping(payload, "finnhub")
    if raw.get("s") != "ok":
        raise PayloadError("finnhub", f"status {raw.get('s')!r}")

    timestamps = raw.get("t") or []
    opens = raw.get("o") or []
    highs = raw.get("h") or []
    lows = raw.get("l") or []
    closes = raw.get("c") or []
    volumes = raw.get("v") or []

    out: list[Candle] = []
    for i in range(len(timestamps)):
        try:
            out.append(
                Candle(
                    time=int(timestamps[i]) * 1000,
                    open=float(opens[i]),
                    high=float(highs[i]),
                    low=float(lows[i]),
                    close=float(closes[i]),
                    volume=float(volumes[i]) if i < len(volumes) else 0.0,
                )
            )
        except (IndexError, TypeError, ValueError):
            continue
    return sort_and_dedupe(out)


def yfinance_frame(df: Any) -> list[Candle]:
    """A yfinance ``history()`` DataFrame indexed by timestamp."""
    out: list[Candle] = []
    for ts, row in df.iterrows():
        try:
            out.append(
                Candle(
                    time=int(ts.timestamp() * 1000),
                    open=float(row["Open"]),
                    high=float(row["High"]),
                    low=float(row["Low"]),
                    close=float(row["Close"]),
                    volume=float(row.get("Volume", 0.0) or 0.0),
                )
            )
        except (KeyError, TypeError, ValueError):
            continue
    return sort_and_dedupe(out)


# ---------------------------------------------------------------------------
# Live prices
# ---------------------------------------------------------------------------


def _iso_to_ms(value: str) -> int:
    # fromisoformat() on 3.10 rejects a trailing "Z"
    dt = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return int(dt.timestamp() * 1000)


def coinbase_ticker_message(msg: Any, now_ms: int) -> Tick:
    """A ``type: ticker`` message from the Coinbase Exchange WebSocket feed."""
    data = _require_mapping(msg, "coinbase")
    price = _price(data.get("price"), "coinbase")

    time_ms = now_ms
    if data.get("time"):
        try:
            time_ms = _iso_to_ms(str(data["time"]))
        except ValueError:
            raise PayloadError("coinbase", f"bad ticker time {data['time']!r}") from None

    change, pct = _percent_change(price, _opt_num(data.get("open_24h")))
    return Tick(
        price=price,
        time=time_ms,
        stats=DailyStats(
            change=change,
            change_percent=pct,
            high=_opt_num(data.get("high_24h")),
            low=_opt_num(data.get("low_24h")),
            volume=_opt_num(data.get("volume_24h")),
        ),
        source="coinbase",
    )


def coinbase_stats(payload: Any, now_ms: int) -> Tick:
    """Coinbase Exchange ``/products/{id}/stats``: open/high/low/last/volume strings."""
    data = _require_mapping(payload, "coinbase")
    price = _price(data.get("last"), "coinbase")
    change, pct = _percent_change(price, _opt_num(data.get("open")))
    return Tick(
        price=price,
        time=now_ms,
        stats=DailyStats(
            change=change,
            change_percent=pct,
            high=_opt_num(data.get("high")),
            low=_opt_num(data.get("low")),
            volume=_opt_num(data.get("volume")),
        ),
        source="coinbase",
    )


def binance_ticker_24h(payload: Any, now_ms: int) -> Tick:
    """Binance ``/api/v3/ticker/24hr`` for a single symbol."""
    data = _require_mapping(payload, "binance")
    price = _price(data.get("lastPrice"), "binance")
    return Tick(
        price=price,
        time=_opt_int(data.get("closeTime")) or now_ms,
        stats=DailyStats(
            change=_opt_num(data.get("priceChange")),
            change_percent=_opt_num(data.get("priceChangePercent")),
            high=_opt_num(data.get("highPrice")),
            low=_opt_num(data.get("lowPrice")),
            volume=_opt_num(data.get("volume")),
        ),
        source="binance",
    )


def _opt_int(value: Any) -> int | None:
    num = _opt_num(value)
    return int(num) if num is not None and num > 0 else None


def _session_at(period: Any, now_s: int) -> MarketSession:
    if not isinstance(period, Mapping):
        return MarketSession.REGULAR

    def within(name: str) -> bool:
        window = period.get(name)
        if not isinstance(window, Mapping):
            return False
        start, end = window.get("start"), window.get("end")
        return start is not None and end is not None and start <= now_s < end

    if within("pre"):
        return MarketSession.PRE
    if within("regular"):
        return MarketSession.REGULAR
    if within("post"):
        return MarketSession.POST
    return MarketSession.CLOSED


def yahoo_quote(payload: Any, now_s: int) -> Tick:
    """Yahoo ``/v8/finance/chart`` response (``interval=1m&includePrePost=true``).

    The displayed price follows the session: extended-hours fields during
    pre/post market, falling back to the last non-null 1m close, and the
    regular market price otherwise.
    """
    try:
        result = payload["chart"]["result"][0]
        meta = result["meta"]
    except (KeyError, IndexError, TypeError):
        raise PayloadError("yahoo", "missing chart.result[0].meta") from None
    if not isinstance(meta, Mapping):
        raise PayloadError("yahoo", "meta is not an object")

    regular = _opt_num(meta.get("regularMarketPrice")) or 0.0
    previous_close = _opt_num(meta.get("previousClose"))
    if previous_close is None:
        previous_close = _opt_num(meta.get("chartPreviousClose")) or regular

    session = _session_at(meta.get("currentTradingPeriod"), now_s)

    last_bar = regular
    closes = (((result.get("indicators") or {}).get("quote") or [{}])[0] or {}).get("close") or []
    for value in reversed(closes):
        if value is not None:
            last_bar = float(value)
            break

    if session is MarketSession.POST:
        price = _opt_num(meta.get("postMarketPrice")) or last_bar
        change = _opt_num(meta.get("postMarketChange"))
    elif session is MarketSession.PRE:
        price = _opt_num(meta.get("preMarketPrice")) or last_bar
        change = _opt_num(meta.get("preMarketChange"))
    else:
        price = regular
        change = None
    price = _price(price, "yahoo")
    if change is None:
        change = price - previous_close
    pct = change / previous_close * 100 if previous_close > 0 else 0.0

    return Tick(
        price=price,
        time=now_s * 1000,
        stats=DailyStats(
            change=change,
            change_percent=pct,
            high=_opt_num(meta.get("regularMarketDayHigh")),
            low=_opt_num(meta.get("regularMarketDayLow")),
            volume=_opt_num(meta.get("regularMarketVolume")),
            session=session,
        ),
        source="yahoo",
    )


def yfinance_fast_info(info: Any, now_ms: int) -> Tick:
    """Values read from yfinance ``Ticker.fast_info``, keyed by attribute name."""
    data = _require_mapping(info, "yfinance")
    price = _price(data.get("last_price"), "yfinance")
    change, pct = _percent_change(price, _opt_num(data.get("previous_close")))
    return Tick(
        price=price,
        time=now_ms,
        stats=DailyStats(
            change=change,
            change_percent=pct,
            high=_opt_num(data.get("day_high")),
            low=_opt_num(data.get("day_low")),
            volume=_opt_num(data.get("last_volume")),
        ),
        source="yfinance",
    )


def jupiter_price(payload: Any, address: str, now_ms: int) -> Tick:
    """Jupiter price v3: ``{address: {"usdPrice": ..., "priceChange24h": ...}}``."""
    data = _require_mapping(payload, "jupiter")
    token = data.get(address)
    if not isinstance(token, Mapping) or not token.get("usdPrice"):
        raise PayloadError("jupiter", "no price")
    pct = _opt_num(token.get("priceChange24h"))
    return Tick(
        price=_price(token["usdPrice"], "jupiter"),
        time=now_ms,
        stats=DailyStats(change_percent=pct) if pct is not None else None,
        source="jupiter",
    )


def raydium_price(payload: Any, address: str, now_ms: int) -> Tick:
    """Raydium v3 mint price: ``{"data": {address: "0.123"}}``."""
    data = _require_mapping(payload, "raydium").get("data")
    if not isinstance(data, Mapping) or not data.get(address):
        raise PayloadError("raydium", "no data")
    return Tick(price=_price(data[address], "raydium"), time=now_ms, source="raydium")


def gecko_token_price(payload: Any, address: str, now_ms: int) -> Tick:
    """GeckoTerminal simple token price; keys may be lower-cased by the API."""
    try:
        prices = payload["data"]["attributes"]["token_prices"]
    except (KeyError, TypeError):
        raise PayloadError("geckoterminal", "no data") from None
    if not isinstance(prices, Mapping):
        raise PayloadError("geckoterminal", "token_prices is not an object")
    raw = prices.get(address) or prices.get(address.lower())
    if not raw:
        raise PayloadError("geckoterminal", "token not found")
    return Tick(price=_price(raw, "geckoterminal"), time=now_ms, source="geckoterminal")


def dexscreener_pair(payload: Any, chain_id: str) -> Mapping:
    """Pick the pair to quote from a DexScreener ``pairs``/``tokens`` response.

    A single-pair response (``pair``) is taken as is; otherwise the most
    liquid pair on *chain_id*, or the first pair when none match the chain.
    """
    data = _require_mapping(payload, "dexscreener")
    pairs = data.get("pairs")
    if not pairs and isinstance(data.get("pair"), Mapping):
        return data["pair"]
    if not isinstance(pairs, list) or not pairs:
        raise PayloadError("dexscreener", "no pairs")

    chain = chain_id.lower()
    on_chain = [
        p for p in pairs
        if isinstance(p, Mapping) and str(p.get("chainId", "")).lower() == chain
    ]
    if on_chain:
        return max(on_chain, key=lambda p: _opt_num((p.get("liquidity") or {}).get("usd")) or 0.0)
    if not isinstance(pairs[0], Mapping):
        raise PayloadError("dexscreener", "pair is not an object")
    return pairs[0]


def dexscreener_tick(pair: Mapping, now_ms: int) -> Tick:
    price = _price(pair.get("priceUsd"), "dexscreener")
    return Tick(
        price=price,
        time=now_ms,
        stats=DailyStats(
            change_percent=_opt_num((pair.get("priceChange") or {}).get("h24")),
            volume=_opt_num((pair.get("volume") or {}).get("h24")),
        ),
        source="dexscreener",
    )
