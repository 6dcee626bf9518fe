"""
Squeeze Miner — Consolidation Detector

Finds bounded price ranges by scanning every fixed-length window of bars.
Overlapping windows are all reported; the most recent one is last.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import structlog

from squeeze_miner.config import Settings, get_settings
from squeeze_miner.engines.indicators import bars_to_dataframe, safe_div
from squeeze_miner.models import (
    ConsolidationPeriod,
    OHLCV,
    PriceRange,
    StockQuote,
    VolumeProfile,
    VolumeTrend,
)

log = structlog.get_logger(__name__)

# Each percent of range costs 12.5 strength points (8% range → 0).
STRENGTH_PER_PCT = 12.5


class ConsolidationEngine:
    """Sliding-window consolidation detector."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def detect(
        self,
        bars: list[OHLCV],
        min_duration: Optional[int] = None,
        max_range_pct: Optional[float] = None,
    ) -> list[ConsolidationPeriod]:
        """Emit a period for every `min_duration` window whose range is tight.

        percent_range = (high - low) / low × 100 over the window; windows
        under `max_range_pct` are kept with strength
        max(0, 100 - percent_range × 12.5).
        """
        duration = min_duration or self.settings.min_consolidation_duration
        max_range = max_range_pct if max_range_pct is not None else self.settings.max_consolidation_range_pct

        if duration <= 0 or len(bars) < duration:
            return []

        df = bars_to_dataframe(bars)
        window_high = df["high"].rolling(duration).max().to_numpy()
        window_low = df["low"].rolling(duration).min().to_numpy()
        window_vol = df["volume"].rolling(duration).mean().to_numpy()

        periods: list[ConsolidationPeriod] = []
        for end in range(duration - 1, len(bars)):
            high = float(window_high[end])
            low = float(window_low[end])
            pct_range = safe_div(high - low, low, 0.01) * 100
            if pct_range >= max_range:
                continue

            start = end - duration + 1
            periods.append(ConsolidationPeriod(
                start_date=bars[start].timestamp,
                end_date=bars[end].timestamp,
                start_index=start,
                end_index=end,
                duration=duration,
                price_range=PriceRange(high=high, low=low, percent_range=round(pct_range, 4)),
                volume=VolumeProfile(
                    average=float(window_vol[end]),
                    trend=self._volume_trend(bars[start:end + 1]),
                ),
                strength=min(100.0, max(0.0, 100 - pct_range * STRENGTH_PER_PCT)),
            ))

        log.debug("consolidation.detected", bars=len(bars), duration=duration, periods=len(periods))
        return periods

    def most_recent(self, bars: list[OHLCV], min_duration: Optional[int] = None) -> Optional[ConsolidationPeriod]:
        """The latest consolidation window, or None."""
        periods = self.detect(bars, min_duration)
        return periods[-1] if periods else None

    def ranked(self, bars: list[OHLCV], min_duration: Optional[int] = None) -> list[ConsolidationPeriod]:
        """All periods sorted by strength, then recency (strongest first)."""
        periods = self.detect(bars, min_duration)
        return sorted(periods, key=lambda p: (p.strength, p.end_index), reverse=True)

    @staticmethod
    def fallback_period(quote: StockQuote, duration: int = 20) -> ConsolidationPeriod:
        """Synthetic ±4% range ending at the quote, used when nothing was detected."""
        high = quote.price * 1.04
        low = quote.price * 0.96
        return ConsolidationPeriod(
            start_date=quote.timestamp - timedelta(days=duration),
            end_date=quote.timestamp,
            start_index=0,
            end_index=max(0, duration - 1),
            duration=duration,
            price_range=PriceRange(
                high=high,
                low=low,
                percent_range=round(safe_div(high - low, low, 0.01) * 100, 4),
            ),
            volume=VolumeProfile(average=float(quote.volume)),
            strength=75.0,
        )

    @staticmethod
    def _volume_trend(window: list[OHLCV]) -> VolumeTrend:
        """Last three bars vs first three: ±10% decides the trend."""
        if len(window) < 6:
            return VolumeTrend.STABLE
        first = sum(b.volume for b in window[:3]) / 3
        last = sum(b.volume for b in window[-3:]) / 3
        ratio = safe_div(last, first, 1.0)
        if ratio > 1.1:
            return VolumeTrend.INCREASING
        if ratio < 0.9:
            return VolumeTrend.DECREASING
        return VolumeTrend.STABLE
