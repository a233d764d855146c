"""
Load settings from an optional YAML file and the environment (.env honoured).
Provider API keys are read from the environment only, never from YAML.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

LATE_TICK_POLICIES = ("discard", "rewrite")

_ENV_PREFIX = "TRADESIM_"


@dataclass
class Settings:
    # Account
    initial_balance: float = 100_000.0
    # Transport
    stream_enabled: bool = True
    connect_timeout: float = 5.0
    request_timeout: float = 4.0
    # Polling cadence, seconds
    crypto_poll_interval: float = 2.0
    equity_poll_interval: float = 2.0
    dex_poll_interval: float = 1.0
    stats_poll_interval: float = 30.0
    equity_candle_refresh: float = 30.0
    dex_candle_refresh: float = 15.0
    preference_reset_cycles: int = 60
    # Candles
    history_limit: int = 300
    max_candles: int = 5000
    late_tick_policy: str = "discard"
    fill_gaps: bool = False
    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        if self.late_tick_policy not in LATE_TICK_POLICIES:
            raise ValueError(
                f"late_tick_policy must be one of {LATE_TICK_POLICIES}, got {self.late_tick_policy!r}"
            )


def load_dotenv_if_exists(root: Optional[Path] = None) -> None:
    """Load .env from *root* (default: the working directory) if present."""
    path = (root or Path.cwd()) / ".env"
    if path.exists():
        load_dotenv(path)


def load_settings(config_path: Optional[Path] = None, root: Optional[Path] = None) -> Settings:
    """Read *config_path* (YAML, optional), then overlay ``TRADESIM_*`` env vars.

    YAML keys may sit at the top level or under ``account`` / ``feeds`` /
    ``candles`` / ``logging`` sections; all are flattened onto
    :class:`Settings`. Env values that do not parse keep the YAML/default value.
    """
    load_dotenv_if_exists(root)
    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

    flat: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value

    def env_bool(key: str, default: bool) -> bool:
        raw = os.getenv(key)
        if raw is None:
            return default
        return raw.strip().lower() in ("true", "1", "yes", "on")

    def env_int(key: str, default: int) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_str(key: str, default: Optional[str]) -> Optional[str]:
        raw = os.getenv(key)
        return raw.strip() if raw is not None and raw.strip() else default

    values: dict[str, Any] = {}
    for f in fields(Settings):
        default = flat.get(f.name, f.default)
        key = _ENV_PREFIX + f.name.upper()
        if f.type == "bool":
            values[f.name] = env_bool(key, bool(default))
        elif f.type == "int":
            values[f.name] = env_int(key, int(default))
        elif f.type == "float":
            values[f.name] = env_float(key, float(default))
        else:
            values[f.name] = env_str(key, default)

    return Settings(**values)
