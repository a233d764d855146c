"""Timeframe strings and candle bucket arithmetic."""

from __future__ import annotations

import datetime

_MINUTE_MS = 60_000
_DAY_MS = 24 * 60 * _MINUTE_MS

# 1970-01-05 00:00 UTC, the first Monday after the epoch
WEEK_ANCHOR_MS = 4 * _DAY_MS

# Supported chart timeframes → bar duration in milliseconds.
# "1M" is nominal here; its buckets follow calendar months (see bucket_for).
TIMEFRAME_MS: dict[str, int] = {
    "1m": _MINUTE_MS,
    "3m": 3 * _MINUTE_MS,
    "5m": 5 * _MINUTE_MS,
    "15m": 15 * _MINUTE_MS,
    "30m": 30 * _MINUTE_MS,
    "1h": 60 * _MINUTE_MS,
    "4h": 4 * 60 * _MINUTE_MS,
    "1d": _DAY_MS,
    "1w": 7 * _DAY_MS,
    "1M": 30 * _DAY_MS,
}


def timeframe_ms(timeframe: str) -> int:
    """Return the bar duration of *timeframe* in milliseconds.

    Raises ``ValueError`` for anything outside :data:`TIMEFRAME_MS`.
    """
    try:
        return TIMEFRAME_MS[timeframe.strip()]
    except KeyError:
        raise ValueError(f"Unsupported timeframe: {timeframe}") from None


def bucket_start(time_ms: int, interval_ms: int, anchor_ms: int = 0) -> int:
    """Open time of the fixed-length bar that *time_ms* falls into.

    Bars are laid out every *interval_ms* from *anchor_ms*, so a series whose
    bars open at 14:30 or at exchange-local midnight keeps that phase.
    """
    return anchor_ms + ((time_ms - anchor_ms) // interval_ms) * interval_ms


def _month_start(time_ms: int) -> datetime.datetime:
    dt = datetime.datetime.fromtimestamp(time_ms / 1000, tz=datetime.timezone.utc)
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _shift_months(dt: datetime.datetime, months: int) -> datetime.datetime:
    index = dt.year * 12 + dt.month - 1 + months
    return dt.replace(year=index // 12, month=index % 12 + 1)


def _to_ms(dt: datetime.datetime) -> int:
    return int(dt.timestamp() * 1000)


def bucket_for(time_ms: int, timeframe: str, anchor_ms: int | None = None) -> int:
    """Open time of the *timeframe* bar that *time_ms* falls into.

    *anchor_ms* is the open time of any bar already in the series; new
    buckets keep its phase. Without one, intraday and daily bars align to
    UTC, weekly bars to Monday 00:00 UTC and monthly bars to the first of
    the month.
    """
    if timeframe == "1M":
        offset = 0
        if anchor_ms is not None:
            offset = anchor_ms - _to_ms(_month_start(anchor_ms))
        month = _month_start(time_ms)
        bucket = _to_ms(month) + offset
        if bucket > time_ms:
            bucket = _to_ms(_shift_months(month, -1)) + offset
        return bucket

    if anchor_ms is None:
        anchor_ms = WEEK_ANCHOR_MS if timeframe == "1w" else 0
    return bucket_start(time_ms, timeframe_ms(timeframe), anchor_ms)


def next_bucket(open_ms: int, timeframe: str) -> int:
    """Open time of the bar after the one opening at *open_ms*."""
    if timeframe == "1M":
        month = _month_start(open_ms)
        return _to_ms(_shift_months(month, 1)) + (open_ms - _to_ms(month))
    return open_ms + timeframe_ms(timeframe)
