"""
Squeeze Miner — Indicator Library

Pure, stateless indicator functions over close prices or OHLCV bars.
Every function is total over non-empty input: short series fall back to a
documented value instead of raising, and zero denominators are replaced by
a small floor.

Uses the `ta` library for Bollinger Bands and rate of change on pandas
Series; everything else is plain numpy.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
import pandas as pd
from ta.momentum import ROCIndicator
from ta.volatility import BollingerBands

from squeeze_miner.models import BandTriple, OHLCV


def safe_div(numerator: float, denominator: float, floor: float = 1e-9) -> float:
    """Divide, substituting `floor` (signed) for a near-zero denominator."""
    if abs(denominator) < floor:
        denominator = -floor if denominator < 0 else floor
    return numerator / denominator


# ──────────────────────────────────────────────
# Moving Averages
# ──────────────────────────────────────────────

def sma(prices: Sequence[float], period: int) -> float:
    """Trailing simple mean of the last `period` values (all when shorter)."""
    window = list(prices[-period:]) if period > 0 else list(prices)
    if not window:
        return 0.0
    return sum(window) / len(window)


def ema(prices: Sequence[float], period: int) -> list[float]:
    """Exponential Moving Average seeded with the SMA of the first `period` values.

    Returns len(prices) - period + 1 values, or [] when the input is shorter
    than `period`.
    """
    if period <= 0 or len(prices) < period:
        return []

    multiplier = 2 / (period + 1)
    result = [sum(prices[:period]) / period]
    for price in prices[period:]:
        result.append(price * multiplier + result[-1] * (1 - multiplier))
    return result


def ema_slope(ema_values: Sequence[float], lookback: int = 5) -> float:
    """Percent change across the last `lookback` EMA values."""
    recent = list(ema_values[-lookback:])
    if len(recent) < 2:
        return 0.0
    return safe_div(recent[-1] - recent[0], recent[0], 0.01) * 100


# ──────────────────────────────────────────────
# Momentum
# ──────────────────────────────────────────────

def rsi(prices: Sequence[float], period: int = 14) -> float:
    """Relative Strength Index over the last `period` price changes.

    50 when there is no complete window of changes or the window is flat,
    100 when the window has gains and no losses. Always within [0, 100].
    """
    if len(prices) < period + 1 or period <= 0:
        return 50.0

    changes = np.diff(np.asarray(prices[-(period + 1):], dtype=float))
    avg_gain = float(np.clip(changes, 0, None).sum()) / period
    avg_loss = float(np.clip(-changes, 0, None).sum()) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0

    rs = avg_gain / avg_loss
    value = 100 - 100 / (1 + rs)
    return min(100.0, max(0.0, value))


def momentum_oscillator(prices: Sequence[float], period: int = 10) -> float:
    """Percent rate of change over `period` bars (0 when data is short)."""
    if len(prices) < period + 1 or period <= 0:
        return 0.0
    roc = ROCIndicator(close=pd.Series(list(prices), dtype=float), window=period).roc()
    value = float(roc.iloc[-1])
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


# ──────────────────────────────────────────────
# Volatility
# ──────────────────────────────────────────────

def atr(bars: Sequence[OHLCV], period: int = 14) -> float:
    """Mean true range over the most recent min(period, len - 1) bars.

    Degenerate input (fewer than 2 bars) returns 1.0.
    """
    if len(bars) < 2:
        return 1.0

    count = max(1, min(period, len(bars) - 1))
    recent = bars[-(count + 1):]
    true_ranges = []
    for prev, cur in zip(recent, recent[1:]):
        true_ranges.append(max(
            cur.high - cur.low,
            abs(cur.high - prev.close),
            abs(cur.low - prev.close),
        ))
    return sum(true_ranges) / len(true_ranges)


def bollinger_bands(prices: Sequence[float], period: int = 20, std_dev: float = 2) -> BandTriple:
    """Bollinger Bands on the last `period` closes (population std).

    With fewer than `period` closes, returns the all-data average with
    bands at ±2%.
    """
    if len(prices) < period:
        avg = sum(prices) / len(prices) if prices else 0.0
        return BandTriple(upper=avg * 1.02, middle=avg, lower=avg * 0.98)

    bb = BollingerBands(
        close=pd.Series(list(prices[-period:]), dtype=float),
        window=period,
        window_dev=std_dev,
    )
    return BandTriple(
        upper=float(bb.bollinger_hband().iloc[-1]),
        middle=float(bb.bollinger_mavg().iloc[-1]),
        lower=float(bb.bollinger_lband().iloc[-1]),
    )


def keltner_channels(bars: Sequence[OHLCV], period: int = 20, multiplier: float = 1.5) -> BandTriple:
    """Keltner Channels: mean close of the last `period` bars ± multiplier × ATR."""
    if not bars:
        return BandTriple(upper=0.0, middle=0.0, lower=0.0)

    if len(bars) < period:
        middle = sum(b.close for b in bars) / len(bars)
        band = atr(bars, min(period, len(bars))) * multiplier
    else:
        recent = bars[-period:]
        middle = sum(b.close for b in recent) / period
        band = atr(recent, period) * multiplier
    return BandTriple(upper=middle + band, middle=middle, lower=middle - band)


def annualized_volatility(prices: Sequence[float]) -> float:
    """Standard deviation of log returns scaled by √252."""
    arr = np.asarray(prices, dtype=float)
    arr = arr[arr > 0]
    if len(arr) < 2:
        return 0.0
    log_returns = np.diff(np.log(arr))
    return float(np.std(log_returns) * math.sqrt(252))


# ──────────────────────────────────────────────
# Statistics
# ──────────────────────────────────────────────

def linear_regression_slope(values: Sequence[float]) -> float:
    """Closed-form least-squares slope of values against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    x = np.arange(n, dtype=float)
    y = np.asarray(values, dtype=float)
    denom = n * float(np.sum(x * x)) - float(np.sum(x)) ** 2
    return safe_div(n * float(np.sum(x * y)) - float(np.sum(x)) * float(np.sum(y)), denom)


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation, 0 for degenerate input."""
    n = min(len(xs), len(ys))
    if n < 2:
        return 0.0
    x = np.asarray(xs[:n], dtype=float)
    y = np.asarray(ys[:n], dtype=float)
    if np.std(x) == 0 or np.std(y) == 0:
        return 0.0
    value = float(np.corrcoef(x, y)[0, 1])
    return 0.0 if math.isnan(value) else value


def price_volume_correlation(bars: Sequence[OHLCV]) -> float:
    """Pearson correlation of bar-to-bar price and volume changes."""
    if len(bars) < 3:
        return 0.0
    price_changes = np.diff([b.close for b in bars])
    volume_changes = np.diff([float(b.volume) for b in bars])
    return pearson(price_changes, volume_changes)


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def bars_to_dataframe(bars: Sequence[OHLCV]) -> pd.DataFrame:
    """Convert OHLCV bars to a timestamp-indexed DataFrame."""
    data = {
        "timestamp": [b.timestamp for b in bars],
        "open": [b.open for b in bars],
        "high": [b.high for b in bars],
        "low": [b.low for b in bars],
        "close": [b.close for b in bars],
        "volume": [float(b.volume) for b in bars],
    }
    df = pd.DataFrame(data)
    df.set_index("timestamp", inplace=True)
    return df
