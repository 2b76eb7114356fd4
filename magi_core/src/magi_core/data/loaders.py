"""Market data source implementations.

Yahoo Finance is the only live source. yfinance is synchronous, so every call
runs in a worker thread to keep the event loop free while the agents are
in flight.

All history frames conform to OHLCV_SCHEMA.
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Final

import polars as pl
import structlog

from magi_core.data.interfaces import OHLCV_SCHEMA, DataLoadError, Quote

log = structlog.get_logger()

# ==============================================================================
# Constants
# ==============================================================================
YAHOO_COLUMNS: Final[dict[str, str]] = {
    "Open": "open",
    "High": "high",
    "Low": "low",
    "Close": "close",
    "Volume": "volume",
}


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def _to_utc(ts: Any) -> datetime:
    dt = ts.to_pydatetime() if hasattr(ts, "to_pydatetime") else ts
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ==============================================================================
# Yahoo Finance Source
# ==============================================================================
class YahooFinanceSource:
    """Quotes and daily bars from Yahoo Finance.

    Attributes:
        interval: Bar interval requested from Yahoo (daily by default).
    """

    def __init__(self, interval: str = "1d") -> None:
        self.interval = interval

    @staticmethod
    def _ticker(symbol: str) -> Any:
        import yfinance as yf

        return yf.Ticker(symbol)

    def _fetch_quote(self, symbol: str) -> Quote:
        info = self._ticker(symbol).info or {}
        price = _optional_float(info.get("regularMarketPrice") or info.get("currentPrice"))
        if price is None:
            msg = f"No quote available for {symbol}"
            raise DataLoadError(msg, source="yahoo")

        previous_close = _optional_float(
            info.get("regularMarketPreviousClose") or info.get("previousClose")
        )
        change = price - previous_close if previous_close is not None else None
        change_percent = (
            change / previous_close * 100
            if change is not None and previous_close
            else None
        )

        return Quote(
            symbol=str(info.get("symbol") or symbol),
            name=info.get("shortName") or info.get("longName"),
            price=price,
            previous_close=previous_close,
            change=change,
            change_percent=change_percent,
            volume=_optional_float(info.get("regularMarketVolume") or info.get("volume")),
            market_cap=_optional_float(info.get("marketCap")),
            fifty_two_week_high=_optional_float(info.get("fiftyTwoWeekHigh")),
            fifty_two_week_low=_optional_float(info.get("fiftyTwoWeekLow")),
            pe=_optional_float(info.get("trailingPE")),
        )

    def _fetch_history(self, symbol: str, period: str) -> pl.DataFrame:
        pdf = self._ticker(symbol).history(period=period, interval=self.interval)
        if pdf is None or pdf.empty:
            return pl.DataFrame(schema=OHLCV_SCHEMA)

        data: dict[str, list[Any]] = {"timestamp": [_to_utc(ts) for ts in pdf.index]}
        for source_col, target_col in YAHOO_COLUMNS.items():
            data[target_col] = [_optional_float(v) for v in pdf[source_col].tolist()]

        return pl.DataFrame(data).with_columns(
            pl.col("timestamp").cast(OHLCV_SCHEMA["timestamp"]),
            *[pl.col(c).cast(pl.Float64) for c in YAHOO_COLUMNS.values()],
        )

    async def get_quote(self, symbol: str) -> Quote:
        """Fetch the latest quote for ``symbol``."""
        try:
            return await asyncio.to_thread(self._fetch_quote, symbol)
        except DataLoadError:
            raise
        except Exception as e:
            log.error("Quote fetch failed", symbol=symbol, error=str(e))
            raise DataLoadError(f"Quote fetch failed for {symbol}: {e}", source="yahoo") from e

    async def get_history(self, symbol: str, period: str = "3mo") -> pl.DataFrame:
        """Fetch daily bars for ``symbol`` over ``period``."""
        try:
            df = await asyncio.to_thread(self._fetch_history, symbol, period)
        except Exception as e:
            log.error("History fetch failed", symbol=symbol, period=period, error=str(e))
            raise DataLoadError(
                f"History fetch failed for {symbol}: {e}", source="yahoo"
            ) from e

        log.debug("History loaded", symbol=symbol, period=period, rows=df.height)
        return df
