"""
Squeeze Miner — Transition Miner

Mines an instrument's own history for consolidation → breakout transitions:
for every detected consolidation, did price break out within the forward
window, which way, how far did it follow through, and what volume and
squeeze conditions preceded it.

The learned corpus is then used to rate the current consolidation by
similarity to past successful ones.
"""

from __future__ import annotations

from typing import Optional

import structlog

from squeeze_miner.config import Settings, get_settings
from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
from squeeze_miner.engines.indicators import atr, safe_div
from squeeze_miner.engines.squeeze_engine import SqueezeEngine
from squeeze_miner.models import (
    BreakoutDirection,
    ConsolidationPeriod,
    CurrentPatternAnalysis,
    OHLCV,
    TransitionLearning,
    TransitionPattern,
    TransitionPremiumSample,
    TransitionVolumeSample,
)

log = structlog.get_logger(__name__)

INSUFFICIENT_VOLUME = 0.2       # volume increase below 20%
WEAK_CONSOLIDATION_PCT = 10.0   # range above 10%
PRE_BREAKOUT_BARS = 5


class TransitionEngine:
    """Historical consolidation-to-breakout transition miner."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        consolidation_engine: Optional[ConsolidationEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.consolidation = consolidation_engine or ConsolidationEngine(self.settings)

    # ──────────────────────────────────────────────
    # Mining
    # ──────────────────────────────────────────────

    def learn(self, ticker: str, bars: list[OHLCV]) -> TransitionLearning:
        """Mine every consolidation in `bars` and summarize what followed."""
        periods = self.consolidation.detect(bars, self.settings.min_consolidation_duration)

        patterns: list[TransitionPattern] = []
        volume_samples: list[TransitionVolumeSample] = []
        premium_samples: list[TransitionPremiumSample] = []

        for period in periods:
            pattern = self.analyze_transition(period, bars)
            if pattern is None:
                continue
            patterns.append(pattern)
            volume_samples.append(TransitionVolumeSample(
                volume_ratio=pattern.volume_ratio,
                success=pattern.was_successful,
                duration=period.duration,
                range_pct=period.price_range.percent_range,
            ))
            if pattern.breakout_occurred:
                premium_samples.append(TransitionPremiumSample(
                    atr=atr(bars[:period.end_index + 1], 14),
                    premium_move=pattern.max_move,
                    success=pattern.was_successful,
                    direction=pattern.direction,
                ))

        breakouts = [p for p in patterns if p.breakout_occurred]
        successes = [p for p in breakouts if p.was_successful]
        failures = [p for p in breakouts if not p.was_successful]

        learning = TransitionLearning(
            ticker=ticker,
            patterns=patterns,
            volume_samples=volume_samples,
            premium_samples=premium_samples,
            total_breakouts=len(breakouts),
            successful=len(successes),
            success_rate=len(successes) / len(breakouts) if breakouts else 0.0,
            success_factors=self._tally(successes, "success_factors"),
            failure_warnings=self._tally(failures, "failure_reasons"),
            key_insights=self.key_insights(successes, failures),
        )
        log.info(
            "transitions.learned",
            ticker=ticker,
            consolidations=len(periods),
            patterns=len(patterns),
            breakouts=len(breakouts),
            successful=len(successes),
        )
        return learning

    def analyze_transition(
        self,
        period: ConsolidationPeriod,
        bars: list[OHLCV],
    ) -> Optional[TransitionPattern]:
        """What happened after one consolidation. None when no forward data exists."""
        s = self.settings
        window = bars[period.start_index:period.end_index + 1]
        forward = bars[period.end_index + 1:period.end_index + 1 + s.transition_forward_bars]
        if not window or not forward:
            return None

        high = period.price_range.high
        low = period.price_range.low
        last_close = window[-1].close

        direction = BreakoutDirection.NONE
        days_to_breakout: Optional[int] = None
        max_move = 0.0

        for i, bar in enumerate(forward):
            follow = forward[i:i + s.transition_followthrough_bars]
            if bar.high > high * (1 + s.breakout_fraction):
                direction = BreakoutDirection.BULLISH
                peak = max(b.high for b in follow)
                max_move = safe_div(peak - last_close, last_close, 0.01) * 100
            elif bar.low < low * (1 - s.breakout_fraction):
                direction = BreakoutDirection.BEARISH
                trough = min(b.low for b in follow)
                max_move = safe_div(last_close - trough, last_close, 0.01) * 100
            else:
                continue
            days_to_breakout = i + 1
            break

        breakout = direction != BreakoutDirection.NONE
        successful = breakout and max_move >= s.success_move_pct

        pre_volume = sum(b.volume for b in window[-PRE_BREAKOUT_BARS:]) / PRE_BREAKOUT_BARS
        avg_volume = sum(b.volume for b in window) / len(window)
        volume_ratio = safe_div(pre_volume, avg_volume, 1.0)
        volume_increase = volume_ratio - 1

        squeeze = SqueezeEngine.conditions_at(window)
        range_pct = period.price_range.percent_range

        success_factors: list[str] = []
        failure_reasons: list[str] = []
        if successful:
            if volume_increase >= INSUFFICIENT_VOLUME:
                success_factors.append("volume_expansion")
            if range_pct <= WEAK_CONSOLIDATION_PCT:
                success_factors.append("tight_consolidation")
            if squeeze.had_squeeze:
                success_factors.append("squeeze_present")
        elif breakout:
            if volume_increase < INSUFFICIENT_VOLUME:
                failure_reasons.append("insufficient_volume")
            if range_pct > WEAK_CONSOLIDATION_PCT:
                failure_reasons.append("weak_consolidation")
            if not squeeze.had_squeeze:
                failure_reasons.append("no_squeeze_support")

        return TransitionPattern(
            consolidation=period,
            breakout_occurred=breakout,
            direction=direction,
            days_to_breakout=days_to_breakout,
            max_move=round(max_move, 4),
            was_successful=successful,
            volume_increase=round(volume_increase, 6),
            volume_ratio=round(volume_ratio, 6),
            squeeze=squeeze,
            success_factors=success_factors,
            failure_reasons=failure_reasons,
        )

    @staticmethod
    def _tally(patterns: list[TransitionPattern], attr: str) -> list[str]:
        """'<tag>: k/n' lines, most common first."""
        if not patterns:
            return []
        counts: dict[str, int] = {}
        for p in patterns:
            for tag in getattr(p, attr):
                counts[tag] = counts.get(tag, 0) + 1
        ordered = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
        return [f"{tag}: {count}/{len(patterns)}" for tag, count in ordered]

    @staticmethod
    def key_insights(
        successes: list[TransitionPattern],
        failures: list[TransitionPattern],
    ) -> list[str]:
        insights: list[str] = []
        if successes:
            avg_volume = sum(p.volume_increase for p in successes) / len(successes)
            insights.append(f"Successful breakouts typically show {avg_volume * 100:.0f}% volume increase")
            avg_duration = sum(p.consolidation.duration for p in successes) / len(successes)
            insights.append(f"Optimal consolidation duration: {avg_duration:.0f} bars")
        if failures:
            weak_volume = [p for p in failures if "insufficient_volume" in p.failure_reasons]
            if len(weak_volume) > len(failures) * 0.5:
                insights.append(
                    f"Warning: {len(weak_volume) / len(failures) * 100:.0f}% of failures "
                    f"due to insufficient volume"
                )
        return insights

    # ──────────────────────────────────────────────
    # Applying the Corpus
    # ──────────────────────────────────────────────

    @staticmethod
    def consolidation_similarity(current: ConsolidationPeriod, historical: ConsolidationPeriod) -> float:
        """Weighted similarity in [0, 1]: range 0.5, duration 0.3, strength 0.2."""
        duration_sim = 1 - abs(current.duration - historical.duration) / max(
            current.duration, historical.duration, 1
        )
        cur_range = current.price_range.percent_range
        hist_range = historical.price_range.percent_range
        range_sim = 1 - abs(cur_range - hist_range) / max(cur_range, hist_range, 1)
        strength_sim = 1 - abs(current.strength - historical.strength) / 100

        similarity = range_sim * 0.5 + duration_sim * 0.3 + strength_sim * 0.2
        return max(0.0, min(1.0, similarity))

    def analyze_current_pattern(
        self,
        current: ConsolidationPeriod,
        learning: TransitionLearning,
        bars: list[OHLCV],
    ) -> CurrentPatternAnalysis:
        """Best match among past successful transitions, plus the latest candle shape."""
        best: Optional[TransitionPattern] = None
        best_similarity = 0.0
        for pattern in learning.patterns:
            if not pattern.was_successful:
                continue
            similarity = self.consolidation_similarity(current, pattern.consolidation)
            if similarity > best_similarity:
                best, best_similarity = pattern, similarity

        if best_similarity > 0.7:
            label = "High"
        elif best_similarity > 0.4:
            label = "Medium"
        else:
            label = "Low"

        return CurrentPatternAnalysis(
            best_match=best,
            similarity=round(best_similarity, 6),
            learning_confidence=label,
            historical_success_rate=learning.success_rate,
            candlestick=candlestick_pattern(bars),
        )


def candlestick_pattern(bars: list[OHLCV]) -> str:
    """Shape of the latest candle against the one before it."""
    if len(bars) < 3:
        return "insufficient_data"

    prev, cur = bars[-2], bars[-1]
    body_ratio = safe_div(abs(cur.close - cur.open), cur.high - cur.low)

    if prev.close < prev.open and cur.close > cur.open and cur.close > prev.open and cur.open < prev.close:
        return "bullish_engulfing"
    if prev.close > prev.open and cur.close < cur.open and cur.close < prev.open and cur.open > prev.close:
        return "bearish_engulfing"
    if body_ratio < 0.1:
        return "doji"
    if cur.close > cur.open and body_ratio > 0.7:
        return "strong_bullish"
    if cur.close < cur.open and body_ratio > 0.7:
        return "strong_bearish"
    return "neutral"
