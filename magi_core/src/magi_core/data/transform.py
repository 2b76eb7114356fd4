"""Technical indicator expressions and the indicator snapshot.

Indicators are Polars expressions evaluated over a daily close series.
``compute_technical_snapshot`` evaluates them once and reduces the latest
values into three directional sub-signals and an overall score.

Design Principles:
- Pure functions (no side effects, no I/O)
- Vectorized operations (no Python loops over bars)
- Too little history is an error, never a partially computed snapshot
"""

from __future__ import annotations

from typing import Final

import polars as pl
import structlog

from magi_core.common.types import TradeAction, WireModel
from magi_core.data.interfaces import InsufficientHistoryError

log = structlog.get_logger()

# ==============================================================================
# Constants
# ==============================================================================
RSI_PERIOD: Final[int] = 14
RSI_OVERBOUGHT: Final[float] = 70.0
RSI_OVERSOLD: Final[float] = 30.0
MACD_FAST: Final[int] = 12
MACD_SLOW: Final[int] = 26
MACD_SIGNAL: Final[int] = 9
SMA_SHORT: Final[int] = 20
SMA_LONG: Final[int] = 50
BB_PERIOD: Final[int] = 20
BB_STDDEV: Final[float] = 2.0

MIN_HISTORY: Final[int] = max(SMA_LONG, MACD_SLOW + MACD_SIGNAL, BB_PERIOD, RSI_PERIOD + 1)


# ==============================================================================
# Feature Expressions
# ==============================================================================
def sma(column: str = "close", window: int = SMA_SHORT) -> pl.Expr:
    """Simple moving average.

    Args:
        column: Price column name.
        window: Rolling window size.

    Returns:
        Polars expression aliased ``sma_<window>``.
    """
    return pl.col(column).rolling_mean(window_size=window).alias(f"sma_{window}")


def rsi(column: str = "close", window: int = RSI_PERIOD) -> pl.Expr:
    """Relative Strength Index with Wilder smoothing.

    RSI = 100 - (100 / (1 + RS)), RS = avg_gain / avg_loss, where both
    averages are exponential with alpha = 1 / window.

    Args:
        column: Price column.
        window: Lookback period (typically 14).

    Returns:
        Polars expression for RSI in [0, 100].
    """
    delta = pl.col(column).diff().fill_null(0.0)
    avg_gain = delta.clip(lower_bound=0).ewm_mean(alpha=1 / window, adjust=False)
    avg_loss = (-delta.clip(upper_bound=0)).ewm_mean(alpha=1 / window, adjust=False)

    return (
        pl.when(avg_loss == 0)
        .then(pl.when(avg_gain == 0).then(50.0).otherwise(100.0))
        .otherwise(100 - (100 / (1 + avg_gain / avg_loss)))
        .alias("rsi")
    )


def macd(
    column: str = "close",
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> list[pl.Expr]:
    """Moving Average Convergence Divergence.

    Args:
        column: Price column.
        fast: Fast EMA span.
        slow: Slow EMA span.
        signal: Signal line EMA span.

    Returns:
        List of expressions: [macd_line, macd_signal, macd_histogram].
    """
    line = pl.col(column).ewm_mean(span=fast, adjust=False) - pl.col(column).ewm_mean(
        span=slow, adjust=False
    )
    signal_line = line.ewm_mean(span=signal, adjust=False)

    return [
        line.alias("macd_line"),
        signal_line.alias("macd_signal"),
        (line - signal_line).alias("macd_histogram"),
    ]


def bollinger_bands(
    column: str = "close",
    window: int = BB_PERIOD,
    num_std: float = BB_STDDEV,
) -> list[pl.Expr]:
    """Bollinger Bands over the population standard deviation.

    Args:
        column: Price column.
        window: Moving average window.
        num_std: Number of standard deviations for bands.

    Returns:
        List of expressions: [middle_band, upper_band, lower_band].
    """
    ma = pl.col(column).rolling_mean(window_size=window)
    std = pl.col(column).rolling_std(window_size=window, ddof=0)

    return [
        ma.alias("bb_middle"),
        (ma + num_std * std).alias("bb_upper"),
        (ma - num_std * std).alias("bb_lower"),
    ]


# ==============================================================================
# Snapshot Models
# ==============================================================================
class RSIReading(WireModel):
    value: float
    signal: str


class MACDReading(WireModel):
    macd: float
    signal: float
    histogram: float
    trend: str


class SMAReading(WireModel):
    short: float
    long: float
    signal: str


class BollingerReading(WireModel):
    upper: float
    middle: float
    lower: float


class TechnicalSnapshot(WireModel):
    """Latest indicator values for one symbol plus the derived signal.

    ``sub_signals`` holds the RSI, MACD and SMA votes in that order; ``score``
    is BUY votes minus SELL votes.
    """

    symbol: str
    current_price: float
    rsi: RSIReading
    macd: MACDReading
    sma: SMAReading
    bollinger: BollingerReading
    sub_signals: list[TradeAction]
    score: int
    overall_signal: str


# ==============================================================================
# Signal Derivation
# ==============================================================================
def score_to_signal(score: int) -> str:
    """Map a sub-signal score in [-3, 3] to an overall label."""
    if score >= 2:
        return "STRONG_BUY"
    if score == 1:
        return "BUY"
    if score <= -2:
        return "STRONG_SELL"
    if score == -1:
        return "SELL"
    return "NEUTRAL"


def _rsi_state(value: float) -> tuple[str, TradeAction]:
    if value >= RSI_OVERBOUGHT:
        return "OVERBOUGHT", TradeAction.SELL
    if value <= RSI_OVERSOLD:
        return "OVERSOLD", TradeAction.BUY
    return "NEUTRAL", TradeAction.HOLD


def _cross_state(
    upper: float, lower: float, labels: tuple[str, str]
) -> tuple[str, TradeAction]:
    if upper > lower:
        return labels[0], TradeAction.BUY
    if upper < lower:
        return labels[1], TradeAction.SELL
    return "NEUTRAL", TradeAction.HOLD


def compute_technical_snapshot(df: pl.DataFrame, symbol: str) -> TechnicalSnapshot:
    """Evaluate all indicators on ``df`` and summarize the latest bar.

    Args:
        df: Frame with a ``close`` column, oldest bar first.
        symbol: Symbol echoed in the snapshot.

    Returns:
        TechnicalSnapshot for the latest bar.

    Raises:
        InsufficientHistoryError: Fewer than MIN_HISTORY non-null closes.
    """
    closes = df.select(pl.col("close").cast(pl.Float64)).drop_nulls()
    if closes.height < MIN_HISTORY:
        raise InsufficientHistoryError(symbol, closes.height, MIN_HISTORY)

    frame = closes.select(
        pl.col("close"),
        rsi(),
        *macd(),
        sma(window=SMA_SHORT).alias("sma_short"),
        sma(window=SMA_LONG).alias("sma_long"),
        *bollinger_bands(),
    )
    last = frame.row(-1, named=True)

    rsi_label, rsi_vote = _rsi_state(last["rsi"])
    macd_label, macd_vote = _cross_state(
        last["macd_line"], last["macd_signal"], ("BULLISH_TREND", "BEARISH_TREND")
    )
    sma_label, sma_vote = _cross_state(
        last["sma_short"], last["sma_long"], ("GOLDEN_CROSS", "DEAD_CROSS")
    )

    sub_signals = [rsi_vote, macd_vote, sma_vote]
    score = sub_signals.count(TradeAction.BUY) - sub_signals.count(TradeAction.SELL)

    snapshot = TechnicalSnapshot(
        symbol=symbol,
        current_price=last["close"],
        rsi=RSIReading(value=last["rsi"], signal=rsi_label),
        macd=MACDReading(
            macd=last["macd_line"],
            signal=last["macd_signal"],
            histogram=last["macd_histogram"],
            trend=macd_label,
        ),
        sma=SMAReading(short=last["sma_short"], long=last["sma_long"], signal=sma_label),
        bollinger=BollingerReading(
            upper=last["bb_upper"], middle=last["bb_middle"], lower=last["bb_lower"]
        ),
        sub_signals=sub_signals,
        score=score,
        overall_signal=score_to_signal(score),
    )
    log.debug("Technical snapshot", symbol=symbol, score=score, signal=snapshot.overall_signal)
    return snapshot
