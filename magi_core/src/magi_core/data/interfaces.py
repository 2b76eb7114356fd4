"""Market data protocols and interfaces.

This module defines the contracts the tool layer depends on. Protocol
(structural subtyping) is used instead of ABC: any object with the right
async methods is accepted, which keeps test fakes free of inheritance.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import polars as pl
from pydantic import Field

from magi_core.common.types import WireModel


# ==============================================================================
# OHLCV Schema Definition
# ==============================================================================
# Canonical schema for daily bars. All sources must conform to this.
OHLCV_SCHEMA: dict[str, pl.DataType] = {
    "timestamp": pl.Datetime("ms", "UTC"),
    "open": pl.Float64,
    "high": pl.Float64,
    "low": pl.Float64,
    "close": pl.Float64,
    "volume": pl.Float64,
}


# ==============================================================================
# Quote Model
# ==============================================================================
class Quote(WireModel):
    """Latest price snapshot for one symbol."""

    symbol: str
    name: str | None = None
    price: float
    previous_close: float | None = None
    change: float | None = None
    change_percent: float | None = None
    volume: float | None = None
    market_cap: float | None = None
    fifty_two_week_high: float | None = None
    fifty_two_week_low: float | None = None
    pe: float | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ==============================================================================
# Market Data Protocol
# ==============================================================================
@runtime_checkable
class MarketDataSource(Protocol):
    """Protocol for async market data access.

    Implementations:
        - YahooFinanceSource: Yahoo Finance via yfinance (worker thread)
    """

    async def get_quote(self, symbol: str) -> Quote:
        """Fetch the latest quote.

        Raises:
            DataLoadError: If the symbol cannot be resolved.
        """
        ...

    async def get_history(self, symbol: str, period: str = "3mo") -> pl.DataFrame:
        """Fetch daily OHLCV bars.

        Args:
            symbol: Ticker symbol (e.g., "AAPL").
            period: Lookback window in Yahoo notation ("1mo", "3mo", "1y").

        Returns:
            DataFrame conforming to OHLCV_SCHEMA, oldest bar first.

        Raises:
            DataLoadError: If data cannot be fetched.
        """
        ...


# ==============================================================================
# Custom Exceptions
# ==============================================================================
class DataLoadError(Exception):
    """Raised when data loading fails."""

    def __init__(self, message: str, source: str | None = None) -> None:
        """Initialize DataLoadError.

        Args:
            message: Error description.
            source: Data source that failed (optional).
        """
        self.source = source
        super().__init__(f"{message}" + (f" [source={source}]" if source else ""))


class InsufficientHistoryError(Exception):
    """Raised when a series is shorter than the longest indicator lookback."""

    def __init__(self, symbol: str, available: int, required: int) -> None:
        self.symbol = symbol
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient history for {symbol}: {available} closes, need {required}"
        )
