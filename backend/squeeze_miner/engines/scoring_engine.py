"""
Squeeze Miner — Probability & Confidence Scorer

Fuses independently computed signals (pattern similarity, volume, squeeze
breadth, historical success, cross-validated learning) into 0-100 confidence
scores. Each sub-score is computed on its own; a missing signal contributes
zero (intelligent) or its documented default (cross-validated), never an
exception.

Pure domain logic, no I/O.
"""

from __future__ import annotations

from typing import Optional

import structlog

from squeeze_miner.engines.indicators import median, price_volume_correlation, safe_div
from squeeze_miner.models import (
    OHLCV,
    BacktestResult,
    ConfidenceAssessment,
    ConfidenceComponent,
    ConfidenceRating,
    CurrentPatternAnalysis,
    HistoricalVolumeIntelligence,
    MultiTimeframeSqueezeAnalysis,
    PatternMatch,
    TransitionLearning,
    VolumeAnalysis,
    VolumePremiumLearning,
    VolumeProgression,
    VolumeStage,
)

log = structlog.get_logger(__name__)

VOLUME_CONFIRMATION = 1.2
STRONG_VOLUME = 1.5
TOTAL_TIMEFRAMES = 7
INTELLIGENT_CAP = 95

# Cross-validated blend: (weight, default when the signal is missing)
CROSS_WEIGHTS = {
    "squeeze": (0.25, 0.65),
    "volume": (0.30, 0.75),
    "premium": (0.25, 0.72),
    "levels": (0.20, 0.7),
}

NEXT_STAGE = {
    VolumeStage.ACCUMULATION: "building",
    VolumeStage.BUILDING: "confirmation",
    VolumeStage.CONFIRMATION: "breakout",
    VolumeStage.BREAKOUT: "follow_through",
}


def rating_for(score: float) -> ConfidenceRating:
    if score >= 80:
        return ConfidenceRating.VERY_HIGH
    if score >= 65:
        return ConfidenceRating.HIGH
    if score >= 50:
        return ConfidenceRating.MODERATE
    if score >= 35:
        return ConfidenceRating.LOW
    return ConfidenceRating.VERY_LOW


class ScoringEngine:
    """Confidence scoring and volume intelligence."""

    # ──────────────────────────────────────────────
    # Volume Analysis
    # ──────────────────────────────────────────────

    def analyze_volume(self, bars: list[OHLCV], learning: Optional[TransitionLearning] = None) -> VolumeAnalysis:
        """Current 5-bar volume against the whole window, enriched by history."""
        if not bars:
            return VolumeAnalysis(recent_average=0.0, overall_average=0.0, current_ratio=1.0, is_confirmed=False)

        recent = bars[-5:]
        recent_avg = sum(b.volume for b in recent) / len(recent)
        overall_avg = sum(b.volume for b in bars) / len(bars)
        ratio = safe_div(recent_avg, overall_avg, 1.0) if overall_avg else 1.0

        return VolumeAnalysis(
            recent_average=recent_avg,
            overall_average=overall_avg,
            current_ratio=ratio,
            is_confirmed=ratio > VOLUME_CONFIRMATION,
            historical=self.volume_intelligence(ratio, learning),
            progression=self.volume_progression(bars),
        )

    @staticmethod
    def volume_intelligence(
        ratio: float,
        learning: Optional[TransitionLearning],
    ) -> HistoricalVolumeIntelligence:
        """Compare the current ratio with the pre-breakout ratios of past transitions."""
        samples = learning.volume_samples if learning else []
        if not samples:
            return HistoricalVolumeIntelligence(
                median_success_ratio=ratio,
                confidence=0.7 if ratio > VOLUME_CONFIRMATION else 0.4,
                supporting_factors=["Above average volume"] if ratio > VOLUME_CONFIRMATION else [],
                cautionary_flags=["Below average volume"] if ratio < 1.0 else [],
            )

        wins = [s.volume_ratio for s in samples if s.success]
        losses = [s.volume_ratio for s in samples if not s.success]

        optimal = sum(wins) / len(wins) if wins else 1.5
        median_win = median(wins) if wins else 1.5
        min_win = min(wins) if wins else 0.0
        failure_threshold = sum(losses) / len(losses) if losses else 1.0

        best_match: Optional[float] = None
        best_similarity = 0.0
        for w in wins:
            similarity = 1 - abs(ratio - w) / max(ratio, w, 1e-9)
            if similarity > best_similarity:
                best_match, best_similarity = w, similarity

        confidence = 0.5
        supporting: list[str] = []
        if wins and ratio >= optimal:
            confidence += 0.2
            supporting.append("Volume matches historical success patterns")
        if wins and ratio >= median_win:
            confidence += 0.1
            supporting.append("Volume above median successful breakout level")
        if ratio > failure_threshold:
            confidence += 0.1
        if wins and ratio >= min_win:
            confidence += 0.1
            supporting.append("Volume exceeds minimum success threshold")

        cautionary: list[str] = []
        if ratio <= failure_threshold:
            cautionary.append("Volume similar to historical failures")
        if ratio < 1.0:
            cautionary.append("Below average volume may indicate weak momentum")
        if ratio < 0.8:
            cautionary.append("Low volume suggests limited institutional interest")

        return HistoricalVolumeIntelligence(
            optimal_ratio=optimal,
            median_success_ratio=median_win,
            min_success_ratio=min_win,
            max_success_ratio=max(wins) if wins else 0.0,
            failure_threshold=failure_threshold,
            best_match_ratio=best_match,
            accuracy=len(wins) / len(samples),
            confidence=min(confidence, 0.95),
            supporting_factors=supporting,
            cautionary_flags=cautionary,
        )

    @staticmethod
    def volume_progression(bars: list[OHLCV]) -> VolumeProgression:
        """Four 5-bar stages over the last 20 bars, each relative to the 20-bar mean."""
        recent = bars[-20:]
        if len(recent) < 20:
            return VolumeProgression(insights=["Not enough bars for volume progression"])

        baseline = sum(b.volume for b in recent) / len(recent)
        blocks = [recent[i:i + 5] for i in range(0, 20, 5)]
        ratios = [safe_div(sum(b.volume for b in blk) / 5, baseline, 1.0) if baseline else 1.0 for blk in blocks]

        last_block = blocks[-1]
        rising = last_block[-1].volume > last_block[0].volume * 1.1
        latest = ratios[-1]
        if latest > STRONG_VOLUME:
            stage = VolumeStage.BREAKOUT
        elif latest > VOLUME_CONFIRMATION:
            stage = VolumeStage.CONFIRMATION
        elif rising:
            stage = VolumeStage.BUILDING
        else:
            stage = VolumeStage.ACCUMULATION

        healthy = all(i == 0 or r >= ratios[i - 1] * 0.9 for i, r in enumerate(ratios))
        mean = sum(ratios) / len(ratios)
        variance = sum((r - mean) ** 2 for r in ratios) / len(ratios)

        progressing = ratios[-1] > ratios[0]
        if progressing and any(r > STRONG_VOLUME for r in ratios):
            health = "excellent"
        elif progressing:
            health = "good"
        else:
            health = "poor"

        correlation = price_volume_correlation(bars[-5:])
        if health == "excellent":
            risk = "low"
        elif health == "good" or stage in (VolumeStage.CONFIRMATION, VolumeStage.BREAKOUT):
            risk = "medium"
        else:
            risk = "high"

        insights = []
        if health == "excellent":
            insights.append("Excellent volume progression into the breakout window")
        elif stage == VolumeStage.CONFIRMATION:
            insights.append("Confirmation stage reached, watch for breakout volume")
        elif stage == VolumeStage.ACCUMULATION:
            insights.append("Early stage volume accumulation, monitor for building phase")
        else:
            insights.append("Volume pattern requires additional confirmation")
        insights.append(
            "Price and volume moving in sync" if correlation > 0.3 else "Price-volume divergence detected"
        )

        return VolumeProgression(
            stage_ratios=[round(r, 6) for r in ratios],
            current_stage=stage,
            next_stage=NEXT_STAGE[stage],
            buildup_healthy=healthy,
            consistency=1 / (1 + variance),
            health=health,
            price_volume_correlation=correlation,
            risk_level=risk,
            insights=insights,
        )

    # ──────────────────────────────────────────────
    # Intelligent Confidence
    # ──────────────────────────────────────────────

    def intelligent(
        self,
        pattern: Optional[CurrentPatternAnalysis] = None,
        volume: Optional[VolumeAnalysis] = None,
        squeeze: Optional[MultiTimeframeSqueezeAnalysis] = None,
        learning: Optional[TransitionLearning] = None,
    ) -> ConfidenceAssessment:
        """Additive confidence, clipped to [0, 95].

        Scoring Rubric:
        | Component           | Max Points |
        |---------------------|------------|
        | Baseline            | 30         |
        | Pattern Similarity  | 25         |
        | Volume Confirmation | 20         |
        | Squeeze Breadth     | 15         |
        | Historical Success  | 10         |
        | TOTAL               | 100        |
        """
        insights: list[str] = []
        components = [ConfidenceComponent(name="baseline", points=30, max_points=30)]

        # Pattern Similarity (0-25)
        similarity_pts = 0
        if pattern is not None:
            if pattern.similarity > 0.7:
                similarity_pts = 25
                insights.append(
                    f"High similarity ({pattern.similarity * 100:.0f}%) to historically successful pattern"
                )
            elif pattern.similarity > 0.4:
                similarity_pts = 15
                insights.append("Moderate similarity to successful patterns")
        components.append(ConfidenceComponent(
            name="pattern_similarity", points=similarity_pts, max_points=25,
            detail=f"{pattern.similarity:.2f}" if pattern is not None else "no pattern",
        ))

        # Volume Confirmation (0-20)
        volume_pts = 0
        if volume is not None and volume.is_confirmed:
            if volume.current_ratio > STRONG_VOLUME:
                volume_pts = 20
                insights.append(f"Strong volume confirmation ({volume.current_ratio:.1f}x average)")
            else:
                volume_pts = 10
                insights.append(f"Volume confirmed ({volume.current_ratio:.1f}x average)")
        components.append(ConfidenceComponent(
            name="volume_confirmation", points=volume_pts, max_points=20,
            detail=f"{volume.current_ratio:.2f}x" if volume is not None else "no volume",
        ))

        # Squeeze Breadth (0-15)
        squeeze_pts = 0
        squeezed = 0
        if squeeze is not None:
            squeezed = sum(1 for s in squeeze.all_states() if s.is_squeezed)
            if squeezed >= 5:
                squeeze_pts = 15
                insights.append(f"Multiple timeframe squeeze compression ({squeezed}/{TOTAL_TIMEFRAMES} timeframes)")
            elif squeezed >= 3:
                squeeze_pts = 8
        components.append(ConfidenceComponent(
            name="squeeze_breadth", points=squeeze_pts, max_points=15,
            detail=f"{squeezed}/{TOTAL_TIMEFRAMES}",
        ))

        # Historical Success (0-10)
        history_pts = 0
        if learning is not None and learning.total_breakouts:
            if learning.success_rate > 0.6:
                history_pts = 10
                insights.append(f"Strong historical success rate ({learning.success_rate * 100:.0f}%)")
            elif learning.success_rate > 0.4:
                history_pts = 5
        components.append(ConfidenceComponent(
            name="historical_success", points=history_pts, max_points=10,
            detail=f"{learning.success_rate:.2f}" if learning is not None else "no history",
        ))

        total = sum(c.points for c in components)
        score = float(max(0, min(INTELLIGENT_CAP, total)))
        return ConfidenceAssessment(
            variant="intelligent",
            score=score,
            rating=rating_for(score),
            components=components,
            insights=insights,
        )

    # ──────────────────────────────────────────────
    # Cross-Validated Confidence
    # ──────────────────────────────────────────────

    def cross_validated(
        self,
        learning: Optional[TransitionLearning] = None,
        volume_premium: Optional[VolumePremiumLearning] = None,
    ) -> ConfidenceAssessment:
        """Weighted blend of the learning systems, clipped to [0, 100]."""
        signals: dict[str, Optional[float]] = {
            "squeeze": learning.success_rate if learning is not None and learning.total_breakouts else None,
            "volume": None,
            "premium": None,
            "levels": None,
        }
        if volume_premium is not None:
            cv = volume_premium.cross_validation
            signals["volume"] = cv.volume_premium_correlation
            signals["premium"] = cv.squeeze_premium_correlation
            if volume_premium.levels:
                signals["levels"] = volume_premium.levels[0].strength

        components = []
        for name, (weight, default) in CROSS_WEIGHTS.items():
            value = signals[name]
            used = default if value is None else value
            components.append(ConfidenceComponent(
                name=name,
                points=round(used * weight * 100, 4),
                max_points=weight * 100,
                detail="default" if value is None else f"{value:.2f}",
            ))

        score = float(max(0, min(100, round(sum(c.points for c in components)))))

        insights: list[str] = []
        if volume_premium is not None:
            cv = volume_premium.cross_validation
            insights.append(f"Volume & Premium Cross-Validation: {cv.overall:.1f}%")
            insights.append(f"Triple Confirmation Signals: {cv.triple_confirmations}")
            top = volume_premium.levels[0] if volume_premium.levels else None
            insights.append(f"Most Reliable Level: ${top.price:.2f}" if top else "Most Reliable Level: N/A")
            reversals = sum(lv.role_reversals for lv in volume_premium.levels)
            insights.append(f"Support/Resistance Role Reversals: {reversals}")
        else:
            insights.append("Cross-validation unavailable, using default learning weights")

        return ConfidenceAssessment(
            variant="cross_validated",
            score=score,
            rating=rating_for(score),
            components=components,
            insights=insights,
        )

    # ──────────────────────────────────────────────
    # Historical Pattern Match
    # ──────────────────────────────────────────────

    @staticmethod
    def match_historical_pattern(
        volume_ratio: float,
        consolidation_strength: float,
        backtest: BacktestResult,
    ) -> PatternMatch:
        """Similarity (0-100) of the current setup to the best backtested pattern."""
        reference = backtest.best_pattern
        if reference is None:
            return PatternMatch(similarity=0.0, recommendation="No historical reference pattern available")

        volume_sim = max(0.0, 100 - abs(volume_ratio - reference.volume.volume_ratio) * 50)
        strength_sim = max(0.0, 100 - abs(consolidation_strength - reference.consolidation.strength))
        similarity = (volume_sim + strength_sim) / 2

        if similarity > 70:
            recommendation = (
                f"HIGH CONFIDENCE: Pattern matches {similarity:.1f}% similar to historically "
                f"successful setups ({backtest.success_rate:.1f}% success rate)"
            )
        else:
            recommendation = (
                f"MODERATE CONFIDENCE: Pattern {similarity:.1f}% similar to historical data. "
                f"Proceed with caution."
            )
        log.debug("scoring.pattern_match", ticker=backtest.ticker, similarity=round(similarity, 2))
        return PatternMatch(similarity=similarity, best_pattern=reference, recommendation=recommendation)
