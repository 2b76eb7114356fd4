"""Market data layer: interfaces, Yahoo Finance source, indicators."""

from magi_core.data.interfaces import (
    OHLCV_SCHEMA,
    DataLoadError,
    InsufficientHistoryError,
    MarketDataSource,
    Quote,
)
from magi_core.data.loaders import YahooFinanceSource
from magi_core.data.transform import (
    MIN_HISTORY,
    TechnicalSnapshot,
    bollinger_bands,
    compute_technical_snapshot,
    macd,
    rsi,
    score_to_signal,
    sma,
)

__all__ = [
    "DataLoadError",
    "InsufficientHistoryError",
    "MIN_HISTORY",
    "MarketDataSource",
    "OHLCV_SCHEMA",
    "Quote",
    "TechnicalSnapshot",
    "YahooFinanceSource",
    "bollinger_bands",
    "compute_technical_snapshot",
    "macd",
    "rsi",
    "score_to_signal",
    "sma",
]
