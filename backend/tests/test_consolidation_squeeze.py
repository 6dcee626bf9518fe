"""
Consolidation Detector & Squeeze Classifier Tests

Range detection invariants, single-timeframe squeeze classification,
momentum tagging and the seven-timeframe consensus.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

import pytest


def _make_bars(closes: list[float], spread: float = 0.01, volume: int = 1_000_000):
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


def _wave_bars(n: int = 120):
    closes = [100 + math.sin(i * 0.15) * 6 + math.sin(i * 0.9) * 1.5 for i in range(n)]
    return _make_bars(closes, spread=0.005)


def _scenario_a_bars():
    """20 flat bars (0.6% range) followed by 5 bars 3% above the high."""
    from squeeze_miner.models import OHLCV

    base = datetime(2024, 1, 1)
    bars = [
        OHLCV(timestamp=base + timedelta(days=i), open=100.0, high=100.4, low=99.8, close=100.0, volume=1_000_000)
        for i in range(20)
    ]
    bars += [
        OHLCV(timestamp=base + timedelta(days=20 + i), open=103.0, high=103.5, low=102.5, close=103.2, volume=1_000_000)
        for i in range(5)
    ]
    return bars


def _trend_bars(n: int = 30):
    """Zero intrabar range, constant volume, steadily rising closes."""
    from squeeze_miner.models import OHLCV

    base = datetime(2024, 1, 1)
    return [
        OHLCV(timestamp=base + timedelta(days=i), open=100.0 + i, high=100.0 + i, low=100.0 + i,
              close=100.0 + i, volume=500_000)
        for i in range(n)
    ]


# ──────────────────────────────────────────────
# Consolidation Detector
# ──────────────────────────────────────────────

class TestConsolidationDetector:
    def test_period_invariants(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        engine = ConsolidationEngine()
        periods = engine.detect(_wave_bars(), min_duration=10)
        assert periods
        for p in periods:
            assert p.price_range.percent_range < 8
            assert 0 <= p.strength <= 100
            assert p.duration == 10
            assert p.end_index - p.start_index + 1 == p.duration
            assert p.price_range.low <= p.price_range.high

    def test_most_recent_is_last(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        engine = ConsolidationEngine()
        bars = _wave_bars()
        periods = engine.detect(bars, 10)
        latest = engine.most_recent(bars, 10)
        assert latest == periods[-1]
        assert all(p.end_index <= latest.end_index for p in periods)

    def test_ranked_by_strength(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        ranked = ConsolidationEngine().ranked(_wave_bars(), 10)
        strengths = [p.strength for p in ranked]
        assert strengths == sorted(strengths, reverse=True)

    def test_too_few_bars(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        engine = ConsolidationEngine()
        assert engine.detect(_wave_bars(5), 10) == []
        assert engine.most_recent(_wave_bars(5), 10) is None

    def test_wide_range_not_consolidation(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        closes = [100 * 1.02 ** i for i in range(40)]
        assert ConsolidationEngine().detect(_make_bars(closes), 10) == []

    def test_scenario_a_single_tight_period(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        periods = ConsolidationEngine().detect(_scenario_a_bars(), min_duration=20)
        tight = [p for p in periods if p.strength > 85]
        assert len(tight) == 1
        assert tight[0].start_index == 0
        assert tight[0].end_index == 19

    def test_volume_trend(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        from squeeze_miner.models import OHLCV, VolumeTrend
        base = datetime(2024, 1, 1)
        bars = [
            OHLCV(timestamp=base + timedelta(days=i), open=100, high=100.5, low=99.5, close=100,
                  volume=1_000_000 + i * 100_000)
            for i in range(12)
        ]
        period = ConsolidationEngine().detect(bars, 12)[0]
        assert period.volume.trend == VolumeTrend.INCREASING

    def test_fallback_period(self):
        from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
        from squeeze_miner.models import StockQuote
        period = ConsolidationEngine.fallback_period(StockQuote(ticker="X", price=100.0, volume=5000))
        assert period.price_range.high == pytest.approx(104.0)
        assert period.price_range.low == pytest.approx(96.0)
        assert period.strength == 75.0
        assert period.duration == 20


# ──────────────────────────────────────────────
# Squeeze Classifier
# ──────────────────────────────────────────────

class TestSqueezeClassifier:
    def test_short_view_is_none(self):
        from squeeze_miner.engines.squeeze_engine import SqueezeEngine
        assert SqueezeEngine().classify(_trend_bars(9)) is None

    def test_scenario_b_firing(self):
        from squeeze_miner.engines.squeeze_engine import SqueezeEngine
        from squeeze_miner.models import MomentumColor, MomentumDirection, SqueezeColor, SqueezeStatus
        state = SqueezeEngine().classify(_trend_bars(30))
        assert state.status == SqueezeStatus.FIRING
        assert state.bollinger.width > 1.5 * state.keltner.width
        assert state.color == SqueezeColor.GREEN
        assert not state.is_squeezed
        assert state.momentum.color == MomentumColor.LIGHT_BLUE
        assert state.momentum.direction == MomentumDirection.BULLISH_ACCELERATION

    def test_flat_series_is_squeezed(self):
        from squeeze_miner.engines.squeeze_engine import SqueezeEngine
        from squeeze_miner.models import SqueezeStatus
        state = SqueezeEngine().classify(_make_bars([100.0] * 20))
        assert state.is_squeezed
        assert state.status == SqueezeStatus.BUILDING

    def test_squeeze_consistency(self):
        from squeeze_miner.engines.squeeze_engine import SqueezeEngine
        engine = SqueezeEngine()
        bars = _wave_bars()
        for end in range(10, len(bars), 3):
            state = engine.classify(bars[:end])
            assert state.is_squeezed == (state.bollinger.width < state.keltner.width)

    def test_squeeze_colors(self):
        from squeeze_miner.engines.squeeze_engine import SqueezeEngine
        from squeeze_miner.models import SqueezeColor, SqueezeStatus
        assert SqueezeEngine.squeeze_color(SqueezeStatus.FIRING, 0.9) == SqueezeColor.GREEN
        assert SqueezeEngine.squeeze_color(SqueezeStatus.BUILDING, 0.9) == SqueezeColor.RED
        assert SqueezeEngine.squeeze_color(SqueezeStatus.BUILDING, 0.7) == SqueezeColor.BLACK
        assert SqueezeEngine.squeeze_color(SqueezeStatus.COOLING, 0.5) == SqueezeColor.YELLOW

    @pytest.mark.parametrize("closes, expected", [
        ([float(i) for i in range(10)], "bullish-acceleration"),
        ([10, 0, 0, 0, 0, 0, 0, 0, 20, 11], "bullish-deceleration"),
        ([float(i) for i in range(9, -1, -1)], "bearish-acceleration"),
        ([10, 20, 0, 0, 0, 0, 0, 0, 0, 5], "bearish-deceleration"),
        ([1.0, 2.0], "bullish-acceleration"),
        ([2.0, 1.0], "bearish-acceleration"),
    ])
    def test_momentum_table(self, closes, expected):
        from squeeze_miner.engines.squeeze_engine import SqueezeEngine
        assert SqueezeEngine.momentum(closes).direction.value == expected

    def test_conditions_at(self):
        from squeeze_miner.engines.squeeze_engine import SqueezeEngine
        cond = SqueezeEngine.conditions_at(_make_bars([100.0] * 15))
        assert cond.had_squeeze
        assert cond.confidence == pytest.approx(1.0)
        assert not SqueezeEngine.conditions_at(_make_bars([100.0] * 5)).had_squeeze


# ──────────────────────────────────────────────
# Multi-Timeframe Aggregator
# ──────────────────────────────────────────────

class TestMultiTimeframe:
    def test_all_views_approximated(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        analysis = MultiTimeframeSqueezeEngine().analyze(_trend_bars(30))
        assert len(analysis.all_states()) == 7
        assert len(analysis.approximated_timeframes) == 7
        assert all(s.approximated for s in analysis.all_states())

    def test_firing_consensus(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        consensus = MultiTimeframeSqueezeEngine().analyze(_trend_bars(30)).consensus
        assert consensus.overall_status == "Active squeeze momentum release"
        assert consensus.firing_pct == pytest.approx(100.0)
        assert consensus.total_timeframes == 7
        assert consensus.reasoning
        assert consensus.probability is None
        assert consensus.backtest_required

    def test_supplied_timeframe_not_approximated(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import TimeFrame
        bars = _trend_bars(30)
        analysis = MultiTimeframeSqueezeEngine().analyze(bars, {TimeFrame.DAILY: bars})
        assert TimeFrame.DAILY not in analysis.approximated_timeframes
        assert len(analysis.approximated_timeframes) == 6
        assert analysis.by_timeframe()[TimeFrame.DAILY].approximated is False

    def test_short_views_skipped(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import TimeFrame
        analysis = MultiTimeframeSqueezeEngine().analyze(_trend_bars(12))
        assert set(analysis.by_timeframe()) == {TimeFrame.M1, TimeFrame.M5, TimeFrame.M15}

    def test_empty_consensus(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        analysis = MultiTimeframeSqueezeEngine().analyze(_trend_bars(5))
        assert analysis.all_states() == []
        assert analysis.consensus.overall_status == "No timeframe data available"
        assert analysis.consensus.total_timeframes == 0

    def test_views_drop_oldest_bars(self):
        from squeeze_miner.engines.mtf_squeeze_engine import timeframe_views
        from squeeze_miner.models import TimeFrame
        bars = _trend_bars(30)
        views = timeframe_views(bars)
        assert views[TimeFrame.M1][0] == bars
        assert views[TimeFrame.DAILY][0] == bars[6:]
        assert all(view[-1] == bars[-1] for view, _ in views.values())
        assert all(flag for _, flag in views.values())

    def test_daily_view_sees_latest_breakout(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import SqueezeStatus, TimeFrame
        bars = _make_bars([100.0] * 40 + [104.0 + 4 * i for i in range(6)])
        states = MultiTimeframeSqueezeEngine().analyze(bars).by_timeframe()
        assert states[TimeFrame.DAILY].status == states[TimeFrame.M1].status
        assert states[TimeFrame.DAILY].status == SqueezeStatus.FIRING
        assert not states[TimeFrame.DAILY].is_squeezed


# ──────────────────────────────────────────────
# Momentum Cascade & Historical Signatures
# ──────────────────────────────────────────────

def _state(tf, status, color, direction):
    """SqueezeState built directly; squeezed exactly when building."""
    from squeeze_miner.models import (
        BandTriple, Momentum, MomentumColor, SqueezeState, SqueezeStatus,
    )

    value = 1.0 if direction.is_bullish else -1.0
    return SqueezeState(
        timeframe=tf,
        status=status,
        color=color,
        bollinger=BandTriple(upper=101.0, middle=100.0, lower=99.0),
        keltner=BandTriple(upper=102.0, middle=100.0, lower=98.0),
        is_squeezed=status == SqueezeStatus.BUILDING,
        compression_level=0.5,
        momentum=Momentum(
            value=value,
            color=MomentumColor.LIGHT_BLUE if value > 0 else MomentumColor.RED,
            direction=direction,
        ),
    )


def _states(spec: dict):
    """Map of TimeFrame → (status, color, direction) to a list in timeframe order."""
    from squeeze_miner.models import TIMEFRAME_ORDER
    return [_state(tf, *spec[tf]) for tf in TIMEFRAME_ORDER if tf in spec]


class TestMomentumCascade:
    def test_bullish_cascade(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import (
            BreakoutDirection, MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame,
        )
        cascade = MultiTimeframeSqueezeEngine.momentum_cascade(
            ultra_short=[_state(TimeFrame.M1, S.FIRING, C.GREEN, D.BULLISH_ACCELERATION)],
            short=[_state(TimeFrame.M15, S.FIRING, C.GREEN, D.BULLISH_ACCELERATION)],
            medium=[_state(TimeFrame.H1, S.BUILDING, C.RED, D.BULLISH_DECELERATION)],
            long=[_state(TimeFrame.DAILY, S.BUILDING, C.RED, D.BULLISH_DECELERATION)],
        )
        assert cascade.detected
        assert cascade.kind == "momentum"
        assert cascade.direction == BreakoutDirection.BULLISH

    def test_bearish_cascade(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import (
            BreakoutDirection, MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame,
        )
        cascade = MultiTimeframeSqueezeEngine.momentum_cascade(
            ultra_short=[_state(TimeFrame.M1, S.COOLING, C.YELLOW, D.BEARISH_DECELERATION)],
            short=[_state(TimeFrame.M15, S.FIRING, C.GREEN, D.BEARISH_ACCELERATION)],
            medium=[],
            long=[_state(TimeFrame.DAILY, S.COOLING, C.YELLOW, D.BULLISH_DECELERATION)],
        )
        assert cascade.detected
        assert cascade.kind == "momentum"
        assert cascade.direction == BreakoutDirection.BEARISH

    def test_layered_squeeze_cascade(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import (
            BreakoutDirection, MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame,
        )
        cascade = MultiTimeframeSqueezeEngine.momentum_cascade(
            ultra_short=[],
            short=[_state(TimeFrame.M15, S.BUILDING, C.RED, D.BEARISH_DECELERATION)],
            medium=[_state(TimeFrame.H4, S.BUILDING, C.RED, D.BULLISH_ACCELERATION)],
            long=[_state(TimeFrame.DAILY, S.BUILDING, C.RED, D.BULLISH_ACCELERATION)],
        )
        assert cascade.detected
        assert cascade.kind == "squeeze"
        assert cascade.direction == BreakoutDirection.BEARISH

    def test_no_cascade(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame
        cascade = MultiTimeframeSqueezeEngine.momentum_cascade(
            ultra_short=[_state(TimeFrame.M1, S.FIRING, C.GREEN, D.BULLISH_ACCELERATION)],
            short=[_state(TimeFrame.M15, S.FIRING, C.GREEN, D.BULLISH_ACCELERATION)],
            medium=[_state(TimeFrame.H4, S.FIRING, C.GREEN, D.BULLISH_ACCELERATION)],
            long=[_state(TimeFrame.DAILY, S.FIRING, C.GREEN, D.BULLISH_ACCELERATION)],
        )
        assert not cascade.detected
        assert cascade.kind is None
        assert cascade.direction is None

    def test_flat_series_reports_layered_squeeze(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        consensus = MultiTimeframeSqueezeEngine().analyze(_make_bars([100.0] * 30)).consensus
        assert consensus.cascade.detected
        assert consensus.cascade.kind == "squeeze"
        assert any(r.startswith("MOMENTUM CASCADE:") for r in consensus.reasoning)


class TestHistoricalSignature:
    def test_perfect_storm_wins_over_compression_build(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import TIMEFRAME_ORDER, MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S
        states = _states({tf: (S.BUILDING, C.RED, D.BULLISH_ACCELERATION) for tf in TIMEFRAME_ORDER})
        match = MultiTimeframeSqueezeEngine.historical_signature(states)
        assert match.name == "Perfect Storm"
        assert match.success_rate == 78

    def test_cascade_trigger(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import (
            TIMEFRAME_ORDER, MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame,
        )
        spec = {tf: (S.FIRING, C.GREEN, D.BULLISH_ACCELERATION) for tf in TIMEFRAME_ORDER}
        spec[TimeFrame.DAILY] = (S.BUILDING, C.YELLOW, D.BULLISH_DECELERATION)
        match = MultiTimeframeSqueezeEngine.historical_signature(_states(spec))
        assert match.name == "Cascade Trigger"
        assert match.success_rate == 71

    def test_compression_build_wins_over_divergence(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame
        building = (S.BUILDING, C.RED, D.BEARISH_DECELERATION)
        cooling = (S.COOLING, C.YELLOW, D.BULLISH_DECELERATION)
        states = _states({
            TimeFrame.M1: building, TimeFrame.M5: building, TimeFrame.M15: building, TimeFrame.M30: building,
            TimeFrame.H1: cooling, TimeFrame.H4: cooling, TimeFrame.DAILY: cooling,
        })
        match = MultiTimeframeSqueezeEngine.historical_signature(states)
        assert match.name == "Compression Build"
        assert match.success_rate == 65

    def test_false_breakout(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame
        firing = (S.FIRING, C.GREEN, D.BULLISH_ACCELERATION)
        cooling = (S.COOLING, C.YELLOW, D.BULLISH_DECELERATION)
        states = _states({
            TimeFrame.M1: firing, TimeFrame.M5: firing, TimeFrame.M15: firing, TimeFrame.M30: firing,
            TimeFrame.H1: cooling, TimeFrame.H4: cooling, TimeFrame.DAILY: cooling,
        })
        match = MultiTimeframeSqueezeEngine.historical_signature(states)
        assert match.name == "False Breakout"
        assert match.success_rate == 32

    def test_momentum_divergence(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S, TimeFrame
        building = (S.BUILDING, C.YELLOW, D.BEARISH_ACCELERATION)
        states = _states({
            TimeFrame.M1: building, TimeFrame.M5: building, TimeFrame.M15: building,
            TimeFrame.M30: (S.COOLING, C.YELLOW, D.BEARISH_DECELERATION),
            TimeFrame.H1: (S.COOLING, C.YELLOW, D.BULLISH_DECELERATION),
            TimeFrame.H4: (S.COOLING, C.YELLOW, D.BULLISH_DECELERATION),
            TimeFrame.DAILY: (S.COOLING, C.YELLOW, D.BULLISH_DECELERATION),
        })
        match = MultiTimeframeSqueezeEngine.historical_signature(states)
        assert match.name == "Momentum Divergence"
        assert match.success_rate == 58

    def test_no_match(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        from squeeze_miner.models import TIMEFRAME_ORDER, MomentumDirection as D, SqueezeColor as C, SqueezeStatus as S
        states = _states({tf: (S.COOLING, C.YELLOW, D.BULLISH_DECELERATION) for tf in TIMEFRAME_ORDER})
        assert MultiTimeframeSqueezeEngine.historical_signature(states) is None
        assert MultiTimeframeSqueezeEngine.historical_signature([]) is None

    def test_match_reported_in_consensus(self):
        from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
        consensus = MultiTimeframeSqueezeEngine().analyze(_make_bars([100.0] * 30)).consensus
        assert consensus.historical_match.name == "Momentum Divergence"
        assert any(r.startswith("HISTORICAL PATTERN: Momentum Divergence") for r in consensus.reasoning)
