"""
Indicator Library Tests

Moving averages, RSI, ATR, Bollinger / Keltner bands and the statistics
helpers, including every short-input fallback.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

import pytest


def _make_bars(closes: list[float], spread: float = 0.01, volume: int = 1_000_000):
    """Helper: OHLCV bars around the given closes."""
    from squeeze_miner.models import OHLCV

    base = datetime(2024, 1, 1)
    return [
        OHLCV(
            timestamp=base + timedelta(days=i),
            open=c,
            high=c * (1 + spread),
            low=c * (1 - spread),
            close=c,
            volume=volume,
        )
        for i, c in enumerate(closes)
    ]


# ──────────────────────────────────────────────
# Moving Averages
# ──────────────────────────────────────────────

class TestMovingAverages:
    def test_ema_seeded_with_sma(self):
        from squeeze_miner.engines.indicators import ema
        values = ema([1, 2, 3, 4, 5, 6, 7, 8, 9, 10], 5)
        assert values[0] == pytest.approx(3.0)
        assert len(values) == 6

    def test_ema_short_input(self):
        from squeeze_miner.engines.indicators import ema
        assert ema([1, 2, 3], 5) == []

    def test_ema_tracks_rising_series(self):
        from squeeze_miner.engines.indicators import ema
        values = ema([float(i) for i in range(1, 31)], 10)
        assert all(b > a for a, b in zip(values, values[1:]))

    def test_sma_uses_trailing_window(self):
        from squeeze_miner.engines.indicators import sma
        assert sma([1, 2, 3, 4, 5], 2) == pytest.approx(4.5)
        assert sma([], 5) == 0.0

    def test_ema_slope(self):
        from squeeze_miner.engines.indicators import ema_slope
        assert ema_slope([100, 101, 102, 103, 110], 5) == pytest.approx(10.0)
        assert ema_slope([100], 5) == 0.0


# ──────────────────────────────────────────────
# Momentum
# ──────────────────────────────────────────────

class TestRSI:
    def test_short_sequence_is_neutral(self):
        from squeeze_miner.engines.indicators import rsi
        assert rsi([100, 101, 102], 14) == 50.0

    def test_all_gains(self):
        from squeeze_miner.engines.indicators import rsi
        assert rsi([float(i) for i in range(100, 120)], 14) == 100.0

    def test_flat_is_neutral(self):
        from squeeze_miner.engines.indicators import rsi
        assert rsi([100.0] * 20, 14) == 50.0

    def test_all_losses(self):
        from squeeze_miner.engines.indicators import rsi
        assert rsi([float(i) for i in range(120, 100, -1)], 14) == pytest.approx(0.0)

    def test_bounds_on_oscillating_series(self):
        from squeeze_miner.engines.indicators import rsi
        closes = [100 + math.sin(i * 0.7) * 5 + i * 0.1 for i in range(60)]
        for end in range(2, len(closes)):
            value = rsi(closes[:end], 14)
            assert 0.0 <= value <= 100.0

    def test_momentum_oscillator(self):
        from squeeze_miner.engines.indicators import momentum_oscillator
        closes = [100.0] * 5 + [110.0] * 6
        assert momentum_oscillator(closes, 10) == pytest.approx(10.0)
        assert momentum_oscillator([100.0, 101.0], 10) == 0.0


# ──────────────────────────────────────────────
# Volatility
# ──────────────────────────────────────────────

class TestVolatility:
    def test_atr_degenerate(self):
        from squeeze_miner.engines.indicators import atr
        assert atr([], 14) == 1.0
        assert atr(_make_bars([100.0]), 14) == 1.0

    def test_atr_constant_range(self):
        from squeeze_miner.engines.indicators import atr
        bars = _make_bars([100.0] * 30, spread=0.01)
        assert atr(bars, 14) == pytest.approx(2.0)

    def test_bollinger_short_fallback(self):
        from squeeze_miner.engines.indicators import bollinger_bands
        bb = bollinger_bands([100.0, 100.0, 100.0], 20)
        assert bb.middle == pytest.approx(100.0)
        assert bb.upper == pytest.approx(102.0)
        assert bb.lower == pytest.approx(98.0)

    def test_bollinger_population_std(self):
        from squeeze_miner.engines.indicators import bollinger_bands
        closes = [float(i) for i in range(1, 11)]
        bb = bollinger_bands(closes, 10, 2)
        std = math.sqrt(sum((c - 5.5) ** 2 for c in closes) / 10)
        assert bb.middle == pytest.approx(5.5)
        assert bb.upper - bb.middle == pytest.approx(2 * std)

    def test_keltner_width(self):
        from squeeze_miner.engines.indicators import keltner_channels
        bars = _make_bars([100.0] * 25, spread=0.01)
        kc = keltner_channels(bars, 20, 1.5)
        assert kc.middle == pytest.approx(100.0)
        assert kc.width == pytest.approx(2 * 1.5 * 2.0)

    def test_keltner_empty(self):
        from squeeze_miner.engines.indicators import keltner_channels
        assert keltner_channels([], 20).width == 0.0

    def test_annualized_volatility_flat(self):
        from squeeze_miner.engines.indicators import annualized_volatility
        assert annualized_volatility([100.0] * 10) == 0.0
        assert annualized_volatility([100.0]) == 0.0


# ──────────────────────────────────────────────
# Statistics Helpers
# ──────────────────────────────────────────────

class TestStatistics:
    def test_safe_div_floor(self):
        from squeeze_miner.engines.indicators import safe_div
        assert safe_div(1.0, 0.0, 0.5) == pytest.approx(2.0)
        assert safe_div(1.0, -0.0001, 0.5) == pytest.approx(-2.0)
        assert safe_div(6.0, 3.0) == pytest.approx(2.0)

    def test_regression_slope(self):
        from squeeze_miner.engines.indicators import linear_regression_slope
        assert linear_regression_slope([1.0, 3.0, 5.0, 7.0]) == pytest.approx(2.0)
        assert linear_regression_slope([1.0]) == 0.0

    def test_pearson(self):
        from squeeze_miner.engines.indicators import pearson
        assert pearson([1, 2, 3, 4], [2, 4, 6, 8]) == pytest.approx(1.0)
        assert pearson([1, 2, 3, 4], [8, 6, 4, 2]) == pytest.approx(-1.0)
        assert pearson([1, 1, 1], [1, 2, 3]) == 0.0

    def test_price_volume_correlation(self):
        from squeeze_miner.engines.indicators import price_volume_correlation
        from squeeze_miner.models import OHLCV

        base = datetime(2024, 1, 1)
        rows = [(100.0, 1_000_000), (101.0, 2_000_000), (103.0, 4_000_000), (106.0, 7_000_000)]
        bars = [
            OHLCV(timestamp=base + timedelta(days=i), open=c, high=c, low=c, close=c, volume=v)
            for i, (c, v) in enumerate(rows)
        ]
        assert price_volume_correlation(bars) == pytest.approx(1.0)
        assert price_volume_correlation(bars[:2]) == 0.0

    def test_median(self):
        from squeeze_miner.engines.indicators import median
        assert median([3.0, 1.0, 2.0]) == 2.0
        assert median([1.0, 2.0, 3.0, 4.0]) == 2.5
        assert median([]) == 0.0

    def test_bars_to_dataframe(self):
        from squeeze_miner.engines.indicators import bars_to_dataframe
        df = bars_to_dataframe(_make_bars([100.0, 101.0, 102.0]))
        assert list(df.columns) == ["open", "high", "low", "close", "volume"]
        assert len(df) == 3
