"""
Squeeze Miner — Backtest Simulator

Replays an instrument's history: every consolidation of at least 15 bars is
followed forward to see whether it broke out, how far it ran, what the
squeeze/volume picture looked like going in, and what a simple trade would
have returned. The per-pattern results are then aggregated into success
statistics and recurring-pattern tables.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Optional

import structlog

from squeeze_miner.cache import cached
from squeeze_miner.config import Settings, get_settings
from squeeze_miner.data.market_data import BarSource, YFinanceBarSource
from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
from squeeze_miner.engines.indicators import linear_regression_slope, safe_div
from squeeze_miner.engines.mtf_squeeze_engine import timeframe_views
from squeeze_miner.engines.squeeze_engine import SqueezeEngine
from squeeze_miner.errors import InsufficientHistory
from squeeze_miner.models import (
    BacktestResult,
    BreakoutDirection,
    ConsolidationPeriod,
    HistoricalBreakoutPattern,
    KeyLevelBehavior,
    OHLCV,
    PatternClassification,
    PatternConfidence,
    PatternStats,
    PremiumBehavior,
    PremiumInsights,
    PriceMovement,
    RecurringPatternAnalysis,
    SqueezeSnapshot,
    TimeFrame,
    TimeframeEffectiveness,
    TradingOutcome,
    VolumeConfirmation,
    VolumeInsights,
    YearlyEvolution,
)

log = structlog.get_logger(__name__)

PRE_BREAKOUT_BARS = 5           # ~one trading week
VOLUME_CONFIRMATION = 1.5
CALL_MULTIPLIER = 2.5
PUT_MULTIPLIER = 2.0
PREMIUM_WIN = 0.5
SNAPSHOT_TAIL = 40              # enough history for every lagged timeframe view

# Effectiveness is reported longest timeframe first
EFFECTIVENESS_ORDER = [
    TimeFrame.DAILY, TimeFrame.H4, TimeFrame.H1, TimeFrame.M30,
    TimeFrame.M15, TimeFrame.M5, TimeFrame.M1,
]

CLASSIFICATION_TIERS = [
    (PatternClassification.LEGENDARY, 90, 20),
    (PatternClassification.ELITE, 80, 15),
    (PatternClassification.EXCELLENT, 70, 12),
    (PatternClassification.GOOD, 60, 10),
    (PatternClassification.AVERAGE, 50, 8),
]


def classify_pattern(success_rate: float, avg_return: float) -> PatternClassification:
    """Tier by success rate (%) and average return (%)."""
    for tier, min_rate, min_return in CLASSIFICATION_TIERS:
        if success_rate >= min_rate and avg_return >= min_return:
            return tier
    return PatternClassification.POOR


def pattern_confidence(frequency: int, success_rate: float) -> PatternConfidence:
    if frequency >= 10 and success_rate >= 70:
        return PatternConfidence.HIGH
    if frequency >= 5 and success_rate >= 60:
        return PatternConfidence.MEDIUM
    return PatternConfidence.LOW


class BacktestEngine:
    """Historical consolidation → breakout replay."""

    def __init__(
        self,
        source: Optional[BarSource] = None,
        settings: Optional[Settings] = None,
        consolidation_engine: Optional[ConsolidationEngine] = None,
        squeeze_engine: Optional[SqueezeEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.source = source or YFinanceBarSource()
        self.consolidation = consolidation_engine or ConsolidationEngine(self.settings)
        self.squeeze = squeeze_engine or SqueezeEngine()

    # ──────────────────────────────────────────────
    # Entry Points
    # ──────────────────────────────────────────────

    @cached("backtest", BacktestResult, window_arg="lookback_years")
    def perform_historical_backtest(self, ticker: str, lookback_years: Optional[int] = None) -> BacktestResult:
        """Fetch ~lookback_years × 252 bars and replay them."""
        lookback = lookback_years * 252 if lookback_years else self.settings.backtest_lookback_bars
        bars = self.source.get_bars(ticker, lookback)
        return self.backtest_bars(ticker, bars, requested=lookback)

    def backtest_bars(self, ticker: str, bars: list[OHLCV], requested: Optional[int] = None) -> BacktestResult:
        """Replay an already-fetched bar series."""
        s = self.settings
        requested = requested or len(bars)
        if len(bars) < s.backtest_min_bars:
            log.error("backtest.insufficient_bars", ticker=ticker, bars=len(bars), minimum=s.backtest_min_bars)
            raise InsufficientHistory(ticker, requested, len(bars), s.backtest_min_bars)

        consolidations = self.consolidation.detect(bars, s.backtest_min_duration)
        log.info("backtest.start", ticker=ticker, bars=len(bars), consolidations=len(consolidations))

        patterns: list[HistoricalBreakoutPattern] = []
        for period in consolidations:
            lo = max(0, period.start_index - s.backtest_pre_bars)
            hi = min(len(bars), period.end_index + 1 + s.backtest_post_bars)
            if hi - lo < s.backtest_min_window:
                continue
            pattern = self.analyze_historical_pattern(period, bars[:hi])
            if pattern is not None:
                patterns.append(pattern)

        if not patterns:
            log.error("backtest.no_patterns", ticker=ticker, consolidations=len(consolidations))
            raise InsufficientHistory(
                ticker, requested, len(bars), s.backtest_min_bars,
                reason="no completed breakout patterns in history",
            )

        result = self.generate_results(ticker, patterns)
        log.info(
            "backtest.complete",
            ticker=ticker,
            patterns=result.total_patterns,
            successful=result.successful_patterns,
            success_rate=round(result.success_rate, 2),
        )
        return result

    # ──────────────────────────────────────────────
    # Per-Pattern Replay
    # ──────────────────────────────────────────────

    def analyze_historical_pattern(
        self,
        period: ConsolidationPeriod,
        bars: list[OHLCV],
    ) -> Optional[HistoricalBreakoutPattern]:
        """Replay one consolidation. None when no breakout followed it."""
        s = self.settings
        window = bars[period.start_index:period.end_index + 1]
        post = bars[period.end_index + 1:period.end_index + 1 + s.backtest_forward_bars]
        if not window or not post:
            return None

        high = period.price_range.high
        low = period.price_range.low
        last_close = window[-1].close

        direction = BreakoutDirection.NONE
        breakout_at = -1
        for i, bar in enumerate(post):
            if bar.high > high * (1 + s.breakout_fraction):
                direction = BreakoutDirection.BULLISH
            elif bar.low < low * (1 - s.breakout_fraction):
                direction = BreakoutDirection.BEARISH
            else:
                continue
            breakout_at = i
            break

        if direction == BreakoutDirection.NONE:
            return None

        bullish = direction == BreakoutDirection.BULLISH
        breakout_bar = post[breakout_at]
        follow = post[breakout_at:breakout_at + s.backtest_followthrough_bars]

        if bullish:
            peak = max(b.high for b in follow)
            move = safe_div(peak - last_close, last_close, 0.01) * 100
            days = next(i for i, b in enumerate(follow) if b.high >= peak) + 1
            success = peak > high * (1 + s.backtest_success_pct / 100)
        else:
            peak = min(b.low for b in follow)
            move = safe_div(last_close - peak, last_close, 0.01) * 100
            days = next(i for i, b in enumerate(follow) if b.low <= peak) + 1
            success = peak < low * (1 - s.backtest_success_pct / 100)

        pre_breakout = window[-PRE_BREAKOUT_BARS:]
        avg_volume = sum(b.volume for b in window) / len(window)
        volume_ratio = safe_div(breakout_bar.volume, avg_volume, 1.0)

        return HistoricalBreakoutPattern(
            consolidation=period,
            breakout_date=breakout_bar.timestamp,
            breakout_type=direction,
            price_movement=PriceMovement(
                pre_breakout_price=last_close,
                breakout_price=breakout_bar.close,
                peak_price=peak,
                percent_move=round(move, 4),
                days_to_target=days,
            ),
            squeeze=self.squeeze_snapshot(bars[:period.end_index + 1], window),
            volume=VolumeConfirmation(
                pre_breakout_volume=sum(b.volume for b in pre_breakout) / len(pre_breakout),
                breakout_volume=float(breakout_bar.volume),
                volume_ratio=round(volume_ratio, 6),
                confirmed=volume_ratio > VOLUME_CONFIRMATION,
            ),
            premium=self.premium_behavior(last_close, breakout_bar.close, peak, direction),
            key_levels=self.key_level_behavior(period, follow, direction),
            pattern_success=success,
            outcome=self.trading_outcome(last_close, follow, direction),
        )

    def squeeze_snapshot(self, history: list[OHLCV], window: list[OHLCV]) -> SqueezeSnapshot:
        """Classify every timeframe view as of the consolidation's last bar."""
        colors = {}
        momentum = {}
        active = []
        for tf, (view, _) in timeframe_views(history[-SNAPSHOT_TAIL:]).items():
            state = self.squeeze.classify(view, tf)
            if state is None:
                continue
            colors[tf] = state.color
            momentum[tf] = state.momentum.direction
            if state.is_squeezed:
                active.append(tf)

        closes = [b.close for b in window]
        drift = SqueezeEngine.momentum(closes)
        return SqueezeSnapshot(
            active_timeframes=active,
            colors=colors,
            momentum=momentum,
            momentum_direction=BreakoutDirection.BULLISH if drift.value > 0 else BreakoutDirection.BEARISH,
            momentum_strength=abs(drift.value),
            # slope per bar as a fraction of the first close
            trend_slope=round(safe_div(linear_regression_slope(closes), closes[0], 0.01), 6),
        )

    @staticmethod
    def premium_behavior(
        pre_price: float,
        breakout_price: float,
        peak: float,
        direction: BreakoutDirection,
    ) -> PremiumBehavior:
        """Illustrative option-premium proxy (no options data is consulted)."""
        bullish = direction == BreakoutDirection.BULLISH
        move = safe_div(abs(peak - pre_price), pre_price, 0.01)
        multiplier = CALL_MULTIPLIER if bullish else PUT_MULTIPLIER
        return PremiumBehavior(
            post_breakout_premium=100 * (1 + move * multiplier),
            optimal_strike=breakout_price * (1.02 if bullish else 0.98),
            profitability=move * multiplier,
        )

    @staticmethod
    def key_level_behavior(
        period: ConsolidationPeriod,
        follow: list[OHLCV],
        direction: BreakoutDirection,
    ) -> KeyLevelBehavior:
        """Did the far edge hold, did the near edge break, and was it retested."""
        high = period.price_range.high
        low = period.price_range.low
        respected, breached, retest = True, False, False
        for bar in follow:
            if direction == BreakoutDirection.BULLISH:
                if bar.low < low:
                    respected = False
                if bar.high > high * 1.02:
                    breached = True
                if bar.low <= high * 1.01 and bar.close > high:
                    retest = True
            else:
                if bar.high > high:
                    respected = False
                if bar.low < low * 0.98:
                    breached = True
                if bar.high >= low * 0.99 and bar.close < low:
                    retest = True
        return KeyLevelBehavior(
            support_respected=respected,
            resistance_breached=breached,
            retest_successful=retest,
        )

    @staticmethod
    def trading_outcome(entry: float, follow: list[OHLCV], direction: BreakoutDirection) -> TradingOutcome:
        """Enter at the last consolidation close, mark to each following close."""
        if not follow:
            return TradingOutcome(max_gain=0.0, max_drawdown=0.0, final_return=0.0, holding_period=0)

        sign = 1 if direction == BreakoutDirection.BULLISH else -1
        returns = [sign * safe_div(b.close - entry, entry, 0.01) * 100 for b in follow]
        return TradingOutcome(
            max_gain=max(0.0, max(returns)),
            max_drawdown=min(0.0, min(returns)),
            final_return=returns[-1],
            holding_period=len(follow),
        )

    # ──────────────────────────────────────────────
    # Aggregation
    # ──────────────────────────────────────────────

    def generate_results(self, ticker: str, patterns: list[HistoricalBreakoutPattern]) -> BacktestResult:
        """Roll per-pattern outcomes into a BacktestResult. Requires ≥ 1 pattern."""
        total = len(patterns)
        successful = [p for p in patterns if p.pattern_success]
        by_return = sorted(patterns, key=lambda p: p.outcome.final_return, reverse=True)

        confirmed = [p for p in patterns if p.volume.confirmed]
        volume_insights = VolumeInsights(
            optimal_volume_ratio=sum(p.volume.volume_ratio for p in patterns) / total,
            volume_threshold=VOLUME_CONFIRMATION,
            volume_breakout_success=(
                sum(1 for p in confirmed if p.pattern_success) / len(confirmed) * 100 if confirmed else 0.0
            ),
        )
        premium_insights = PremiumInsights(
            best_strikes=[round(p.premium.optimal_strike, 4) for p in patterns],
            avg_premium_return=sum(p.premium.profitability for p in patterns) / total,
            premium_success_rate=sum(1 for p in patterns if p.premium.profitability > PREMIUM_WIN) / total * 100,
        )

        return BacktestResult(
            ticker=ticker,
            total_patterns=total,
            successful_patterns=len(successful),
            success_rate=len(successful) / total * 100,
            avg_return=sum(p.outcome.final_return for p in patterns) / total,
            best_pattern=by_return[0],
            worst_pattern=by_return[-1],
            common_patterns=_group(patterns, color_key),
            timeframe_effectiveness=self.timeframe_effectiveness(patterns),
            volume_insights=volume_insights,
            premium_insights=premium_insights,
            recurring=self.recurring_patterns(patterns),
            patterns=patterns,
        )

    @staticmethod
    def timeframe_effectiveness(patterns: list[HistoricalBreakoutPattern]) -> list[TimeframeEffectiveness]:
        rows = []
        for tf in EFFECTIVENESS_ORDER:
            relevant = [p for p in patterns if tf in p.squeeze.active_timeframes]
            if not relevant:
                continue
            rows.append(TimeframeEffectiveness(
                timeframe=tf,
                accuracy=sum(1 for p in relevant if p.pattern_success) / len(relevant) * 100,
                avg_return=sum(p.outcome.final_return for p in relevant) / len(relevant),
                total_signals=len(relevant),
            ))
        return rows

    # ──────────────────────────────────────────────
    # Recurring Patterns
    # ──────────────────────────────────────────────

    def recurring_patterns(self, patterns: list[HistoricalBreakoutPattern]) -> RecurringPatternAnalysis:
        """Signature, bucket and combined tables over every replayed pattern."""
        combined = _group(patterns, combined_key, annotate=True)
        repeated = [row for row in combined if row.frequency >= 2]

        return RecurringPatternAnalysis(
            timeframe_squeeze=_group(patterns, timeframe_squeeze_key),
            volume_buckets=_group(patterns, lambda p: volume_bucket(p.volume.volume_ratio)),
            premium_buckets=_group(patterns, lambda p: premium_bucket(p.premium.profitability)),
            combined=combined,
            most_reliable=max(repeated, key=lambda r: r.success_rate, default=None),
            most_frequent=max(combined, key=lambda r: r.frequency, default=None),
            highest_return=max(repeated, key=lambda r: r.avg_return, default=None),
            evolution=self.evolution(patterns),
        )

    @staticmethod
    def evolution(patterns: list[HistoricalBreakoutPattern]) -> list[YearlyEvolution]:
        by_year: dict[int, list[HistoricalBreakoutPattern]] = defaultdict(list)
        for p in patterns:
            by_year[p.breakout_date.year].append(p)
        return [
            YearlyEvolution(
                year=year,
                frequency=len(group),
                success_rate=sum(1 for p in group if p.pattern_success) / len(group) * 100,
                avg_return=sum(p.outcome.final_return for p in group) / len(group),
            )
            for year, group in sorted(by_year.items())
        ]


# ──────────────────────────────────────────────
# Pattern Keys
# ──────────────────────────────────────────────


def color_key(p: HistoricalBreakoutPattern) -> str:
    return "-".join(sorted(c.value for c in p.squeeze.colors.values())) or "none"


def timeframe_squeeze_key(p: HistoricalBreakoutPattern) -> str:
    active = p.squeeze.active_timeframes
    if not active:
        return "none"
    tfs = "-".join(tf.value for tf in active)
    colors = "-".join(p.squeeze.colors[tf].value for tf in active)
    return f"{tfs}:{colors}"


def volume_bucket(ratio: float) -> str:
    if ratio >= 3:
        return "extreme"
    if ratio >= 2:
        return "high"
    if ratio >= 1.5:
        return "moderate"
    if ratio >= 1:
        return "normal"
    return "low"


def premium_bucket(profitability: float) -> str:
    if profitability >= 1.0:
        return "explosive"
    if profitability >= 0.5:
        return "strong"
    if profitability >= 0.25:
        return "moderate"
    if profitability >= 0:
        return "weak"
    return "loss"


def combined_key(p: HistoricalBreakoutPattern) -> str:
    count = len(p.squeeze.active_timeframes)
    tf_part = "multi" if count >= 3 else "dual" if count == 2 else "single" if count == 1 else "no"

    ratio = p.volume.volume_ratio
    vol_part = "high" if ratio >= 2 else "moderate" if ratio >= 1.5 else "low"

    prof = p.premium.profitability
    prem_part = "strong" if prof >= 0.5 else "moderate" if prof >= 0.25 else "weak"

    return f"{tf_part}_timeframe+{vol_part}_volume+{prem_part}_premium"


def _group(
    patterns: list[HistoricalBreakoutPattern],
    key_fn: Callable[[HistoricalBreakoutPattern], str],
    annotate: bool = False,
) -> list[PatternStats]:
    """Frequency / success / return per key, most frequent first."""
    groups: dict[str, list[HistoricalBreakoutPattern]] = defaultdict(list)
    for p in patterns:
        groups[key_fn(p)].append(p)

    rows = []
    for key, group in groups.items():
        successes = sum(1 for p in group if p.pattern_success)
        rate = successes / len(group) * 100
        avg_return = sum(p.outcome.final_return for p in group) / len(group)
        rows.append(PatternStats(
            key=key,
            frequency=len(group),
            successes=successes,
            success_rate=rate,
            avg_return=avg_return,
            classification=classify_pattern(rate, avg_return) if annotate else None,
            confidence=pattern_confidence(len(group), rate) if annotate else None,
        ))
    rows.sort(key=lambda r: (r.frequency, r.success_rate), reverse=True)
    return rows
