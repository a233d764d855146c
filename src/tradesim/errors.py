"""Exception types raised by providers and the order desk."""

from __future__ import annotations


class TradesimError(Exception):
    """Base class for every error this package raises on purpose."""


class ProviderError(TradesimError):
    """A provider could not answer: bad status, unsupported symbol, no data."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class PayloadError(ProviderError, ValueError):
    """A provider answered with a payload that does not have the expected shape."""


class OrderRejected(TradesimError):
    """An order intent failed validation and never reached the ledger."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
