import pytest

from tradesim.config import Settings
from tradesim.ledger import Ledger



@pytest.fixture
def ledger():
    return Ledger.with_new_store(100_000.0)


@pytest.fixture
def store(ledger):
    return ledger.store


@pytest.fixture
def fast_settings():
    return Settings(
        connect_timeout=0.2,
        request_timeout=0.2,
        crypto_poll_interval=0.01,
        equity_poll_interval=0.01,
        dex_poll_interval=0.01,
        stats_poll_interval=0.01,
        equity_candle_refresh=60.0,
        dex_candle_refresh=60.0,
        history_limit=10,
    )
