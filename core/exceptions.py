"""Shared exception types for core trading logic."""

from typing import Optional


class TradingError(RuntimeError):
    """Base class for errors raised by the trading core."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        message = source if original is None else f"{source}: {original}"
        super().__init__(message)
        self.source = source
        self.original = original


class FetchError(TradingError):
    """Raised when candle data cannot be fetched safely. Aborts the cycle."""


class InsufficientData(FetchError):
    """Raised when the broker returns fewer candles than the configured minimum."""

    def __init__(self, symbol: str, received: int, required: int):
        super().__init__(f"not enough candles for {symbol}: got {received}, need {required}")
        self.symbol = symbol
        self.received = received
        self.required = required


class OracleError(TradingError):
    """Raised when the decision oracle fails. Aborts the cycle."""


class OrderError(TradingError):
    """Raised when the broker rejects or fails an order. Non-fatal to the cycle."""


class CycleCancelled(TradingError):
    """Raised when a cycle deadline expires or is cancelled before a blocking call."""
