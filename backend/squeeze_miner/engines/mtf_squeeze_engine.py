"""
Squeeze Miner — Multi-Timeframe Squeeze Aggregator

Runs the squeeze classifier across the seven fixed timeframes
(1m, 5m | 15m, 30m | 1h, 4h | daily) and folds the results into a consensus
with a reasoning trace, a momentum-cascade check, and a historical
signature match.

Each timeframe is its own bar source. When a caller cannot supply genuine
bars for a timeframe, the view falls back to the single series with its
oldest bars dropped, one per position in the fixed order (1m sees the full
series, daily loses the first six bars). Every view still ends at the newest
bar. Those views are flagged as approximated.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional

import structlog

from squeeze_miner.engines.squeeze_engine import SqueezeEngine
from squeeze_miner.models import (
    BreakoutDirection,
    HistoricalSignatureMatch,
    MomentumCascade,
    MomentumDirection,
    MultiTimeframeSqueezeAnalysis,
    OHLCV,
    SqueezeConsensus,
    SqueezeState,
    SqueezeStatus,
    SqueezeColor,
    TIMEFRAME_GROUPS,
    TIMEFRAME_ORDER,
    TimeFrame,
)

log = structlog.get_logger(__name__)


# ──────────────────────────────────────────────
# Historical Signatures (checked in order, first match wins)
# ──────────────────────────────────────────────

SIGNATURES = {
    "Perfect Storm": (
        78,
        "3+ red squeezes, 5+ bullish momentum, 5+ compressed. Historically 78% "
        "successful breakouts with average 12% moves.",
    ),
    "Cascade Trigger": (
        71,
        "Daily squeezed + short-term firing + bullish momentum. Moves typically "
        "last 3-7 days.",
    ),
    "Compression Build": (
        65,
        "4+ building, 2+ red, 3+ squeezed. Typically takes 2-5 days to trigger.",
    ),
    "False Breakout": (
        32,
        "3+ firing, at most 2 squeezed, no red squeezes. Historically fails 68% "
        "of the time.",
    ),
    "Momentum Divergence": (
        58,
        "Compression building but bearish momentum. 58% probability of a bearish "
        "breakout when the squeeze fires.",
    ),
}


def timeframe_views(
    bars: list[OHLCV],
    bars_by_timeframe: Optional[dict[TimeFrame, list[OHLCV]]] = None,
) -> dict[TimeFrame, tuple[list[OHLCV], bool]]:
    """Bars per timeframe plus a flag telling whether the view was approximated."""
    supplied = bars_by_timeframe or {}
    views: dict[TimeFrame, tuple[list[OHLCV], bool]] = {}
    for offset, tf in enumerate(TIMEFRAME_ORDER):
        if supplied.get(tf):
            views[tf] = (supplied[tf], False)
        else:
            views[tf] = (bars[offset:] if offset else list(bars), True)
    return views


class MultiTimeframeSqueezeEngine:
    """Seven-timeframe squeeze aggregation."""

    def __init__(self, squeeze_engine: Optional[SqueezeEngine] = None):
        self.squeeze = squeeze_engine or SqueezeEngine()

    def analyze(
        self,
        bars: list[OHLCV],
        bars_by_timeframe: Optional[dict[TimeFrame, list[OHLCV]]] = None,
    ) -> MultiTimeframeSqueezeAnalysis:
        """Classify every timeframe and build the consensus.

        Views with fewer than 10 bars are skipped.
        """
        states: dict[TimeFrame, SqueezeState] = {}
        approximated: list[TimeFrame] = []
        for tf, (view, is_approx) in timeframe_views(bars, bars_by_timeframe).items():
            state = self.squeeze.classify(view, tf, approximated=is_approx)
            if state is None:
                continue
            states[tf] = state
            if is_approx:
                approximated.append(tf)

        groups = {
            name: [states[tf] for tf in tfs if tf in states]
            for name, tfs in TIMEFRAME_GROUPS.items()
        }
        consensus = self.consensus(**groups)

        log.debug(
            "mtf_squeeze.analyzed",
            timeframes=len(states),
            approximated=len(approximated),
            status=consensus.overall_status,
        )
        return MultiTimeframeSqueezeAnalysis(
            **groups,
            consensus=consensus,
            approximated_timeframes=approximated,
        )

    # ──────────────────────────────────────────────
    # Consensus
    # ──────────────────────────────────────────────

    def consensus(
        self,
        ultra_short: list[SqueezeState],
        short: list[SqueezeState],
        medium: list[SqueezeState],
        long: list[SqueezeState],
    ) -> SqueezeConsensus:
        """Fold per-timeframe states into a status and a reasoning trace."""
        states = [*ultra_short, *short, *medium, *long]
        if not states:
            return SqueezeConsensus(
                overall_status="No timeframe data available",
                reasoning=["Insufficient bars for any timeframe view."],
            )

        n = len(states)
        squeezed = [s for s in states if s.is_squeezed]
        firing = [s for s in states if s.status == SqueezeStatus.FIRING]
        building = [s for s in states if s.status == SqueezeStatus.BUILDING]
        cooling = [s for s in states if s.status == SqueezeStatus.COOLING]
        bullish = [s for s in states if s.momentum.direction.is_bullish]
        bearish = [s for s in states if not s.momentum.direction.is_bullish]
        bull_accel = [s for s in states if s.momentum.direction == MomentumDirection.BULLISH_ACCELERATION]
        bear_accel = [s for s in states if s.momentum.direction == MomentumDirection.BEARISH_ACCELERATION]
        colors = Counter(s.color.value for s in states)
        avg_strength = sum(abs(s.momentum.value) for s in states) / n

        squeezed_pct = len(squeezed) / n * 100
        firing_pct = len(firing) / n * 100
        building_pct = len(building) / n * 100
        cooling_pct = len(cooling) / n * 100

        reasoning: list[str] = []
        if squeezed_pct >= 60:
            status = "High-probability squeeze setup developing"
            reasoning.append(
                f"Strong multi-timeframe compression: {len(squeezed)}/{n} timeframes "
                f"({squeezed_pct:.0f}%) squeezed."
            )
            if building_pct >= 40:
                reasoning.append(f"Compression actively building across {len(building)} timeframes.")
            if len(bullish) > len(bearish) * 1.5:
                reasoning.append(f"Bullish momentum dominates ({len(bullish)}/{n}), upward bias on release.")
                if bull_accel:
                    reasoning.append(f"{len(bull_accel)} timeframe(s) showing bullish acceleration.")
            elif len(bearish) > len(bullish) * 1.5:
                reasoning.append(f"Bearish momentum dominates ({len(bearish)}/{n}), downward bias on release.")
                if bear_accel:
                    reasoning.append(f"{len(bear_accel)} timeframe(s) showing bearish acceleration.")
            else:
                reasoning.append(
                    f"Momentum mixed ({len(bullish)} bullish vs {len(bearish)} bearish), "
                    f"direction uncertain."
                )
            if colors[SqueezeColor.RED.value] >= 2:
                reasoning.append("Multiple red squeeze dots indicate very tight compression.")
            elif colors[SqueezeColor.BLACK.value] >= 2:
                reasoning.append("Black squeeze dots suggest moderate compression.")

        elif firing_pct >= 30:
            status = "Active squeeze momentum release"
            reasoning.append(
                f"Squeeze firing across {len(firing)}/{n} timeframes ({firing_pct:.0f}%), "
                f"volatility expanding."
            )
            firing_bull = sum(1 for s in firing if s.momentum.direction.is_bullish)
            firing_bear = len(firing) - firing_bull
            if firing_bull > firing_bear:
                reasoning.append(f"Bullish firing dominates ({firing_bull}/{len(firing)}).")
                if avg_strength > 0.5:
                    reasoning.append(f"Strong momentum strength ({avg_strength:.2f}) supports upward movement.")
            elif firing_bear > firing_bull:
                reasoning.append(f"Bearish firing dominates ({firing_bear}/{len(firing)}).")
                if avg_strength > 0.5:
                    reasoning.append(f"Strong momentum strength ({avg_strength:.2f}) supports downward movement.")
            else:
                reasoning.append("Mixed firing signals, unclear directional bias.")
            if squeezed:
                reasoning.append(f"{len(squeezed)} timeframe(s) still compressed.")

        elif building_pct >= 40:
            status = "Squeeze compression accumulating"
            reasoning.append(
                f"Compression building across {len(building)}/{n} timeframes ({building_pct:.0f}%)."
            )
            if squeezed_pct >= 30:
                reasoning.append(f"{len(squeezed)} timeframe(s) already compressed, multi-layered setup.")
            if len(bullish) > len(bearish):
                reasoning.append(f"Bullish momentum building during compression ({len(bullish)}/{n}).")
            elif len(bearish) > len(bullish):
                reasoning.append(f"Bearish momentum building during compression ({len(bearish)}/{n}).")
            else:
                reasoning.append("Balanced momentum during compression, neutral bias.")

        elif cooling:
            status = "Post-squeeze cooling phase"
            reasoning.append(f"{len(cooling)}/{n} timeframes cooling after squeeze activity.")
            if firing:
                reasoning.append(f"{len(firing)} timeframe(s) still firing, staggered release.")
            else:
                reasoning.append("Momentum release appears complete.")
            if building:
                reasoning.append(f"{len(building)} timeframe(s) beginning a new compression cycle.")

        else:
            status = "No significant squeeze pattern detected"
            reasoning.append(
                f"{squeezed_pct:.0f}% compressed, {firing_pct:.0f}% firing, "
                f"{building_pct:.0f}% building."
            )
            if avg_strength < 0.2:
                reasoning.append(f"Low momentum strength ({avg_strength:.2f}) suggests a ranging phase.")
            else:
                reasoning.append(f"Moderate momentum strength ({avg_strength:.2f}).")

        cascade = self.momentum_cascade(ultra_short, short, medium, long)
        if cascade.detected:
            reasoning.append(f"MOMENTUM CASCADE: {cascade.description}")

        signature = self.historical_signature(states)
        if signature is not None:
            reasoning.append(
                f"HISTORICAL PATTERN: {signature.name}. {signature.description} "
                f"Success rate: {signature.success_rate:.0f}%."
            )

        long_squeezed = any(s.is_squeezed for s in long)
        short_firing = any(s.status == SqueezeStatus.FIRING for s in [*ultra_short, *short])
        if long_squeezed and short_firing:
            reasoning.append("Long-term compression with short-term firing suggests a sustained directional move.")
        elif long_squeezed:
            reasoning.append("Long-term timeframes compressed; watch for a short-term catalyst.")

        return SqueezeConsensus(
            overall_status=status,
            total_timeframes=n,
            squeezed_pct=round(squeezed_pct, 2),
            firing_pct=round(firing_pct, 2),
            building_pct=round(building_pct, 2),
            cooling_pct=round(cooling_pct, 2),
            bullish_count=len(bullish),
            bearish_count=len(bearish),
            color_distribution=dict(colors),
            avg_momentum_strength=round(avg_strength, 6),
            reasoning=reasoning,
            cascade=cascade,
            historical_match=signature,
        )

    # ──────────────────────────────────────────────
    # Pattern Matchers
    # ──────────────────────────────────────────────

    @staticmethod
    def momentum_cascade(
        ultra_short: list[SqueezeState],
        short: list[SqueezeState],
        medium: list[SqueezeState],
        long: list[SqueezeState],
    ) -> MomentumCascade:
        """Longer timeframes decelerating while shorter ones accelerate."""
        long_decel = any(not s.momentum.direction.is_acceleration for s in long)
        short_accel = [s for s in short if s.momentum.direction.is_acceleration]
        ultra_accel = any(s.momentum.direction.is_acceleration for s in ultra_short)

        if long_decel and short_accel and ultra_accel:
            medium_squeezed = any(s.is_squeezed for s in medium)
            if medium_squeezed and short_accel[0].momentum.direction.is_bullish:
                return MomentumCascade(
                    detected=True,
                    kind="momentum",
                    direction=BreakoutDirection.BULLISH,
                    description=(
                        "Long-term momentum declining while short-term timeframes show "
                        "bullish acceleration with the medium group squeezed."
                    ),
                )

        if long_decel and any(
            s.momentum.direction == MomentumDirection.BEARISH_ACCELERATION for s in short
        ):
            return MomentumCascade(
                detected=True,
                kind="momentum",
                direction=BreakoutDirection.BEARISH,
                description="Long-term momentum declining with short-term bearish acceleration.",
            )

        daily_squeezed = any(s.is_squeezed for s in long)
        four_hour_squeezed = any(s.timeframe == TimeFrame.H4 and s.is_squeezed for s in medium)
        short_squeezed = [s for s in short if s.is_squeezed]
        if daily_squeezed and four_hour_squeezed and short_squeezed:
            lead = short_squeezed[0].momentum.direction
            return MomentumCascade(
                detected=True,
                kind="squeeze",
                direction=BreakoutDirection.BULLISH if lead.is_bullish else BreakoutDirection.BEARISH,
                description=(
                    "Layered squeeze: daily, 4h and shorter timeframes all compressed; "
                    "a daily release should cascade down."
                ),
            )

        return MomentumCascade()

    @staticmethod
    def historical_signature(states: list[SqueezeState]) -> Optional[HistoricalSignatureMatch]:
        """First matching named reference pattern, or None."""
        n = len(states)
        squeezed = sum(1 for s in states if s.is_squeezed)
        firing = sum(1 for s in states if s.status == SqueezeStatus.FIRING)
        building = sum(1 for s in states if s.status == SqueezeStatus.BUILDING)
        red = sum(1 for s in states if s.color == SqueezeColor.RED)
        bullish = sum(1 for s in states if s.momentum.direction.is_bullish)
        bearish = n - bullish

        daily_squeezed = any(s.timeframe == TimeFrame.DAILY and s.is_squeezed for s in states)
        short_firing = any(
            s.timeframe in (TimeFrame.M1, TimeFrame.M5, TimeFrame.M15)
            and s.status == SqueezeStatus.FIRING
            for s in states
        )

        checks = [
            ("Perfect Storm", red >= 3 and bullish >= 5 and squeezed >= 5),
            ("Cascade Trigger", daily_squeezed and short_firing and bullish > n * 0.6),
            ("Compression Build", building >= 4 and red >= 2 and squeezed >= 3),
            ("False Breakout", firing >= 3 and squeezed <= 2 and red == 0),
            ("Momentum Divergence", building >= 3 and bearish >= 4),
        ]
        for name, matched in checks:
            if matched:
                rate, description = SIGNATURES[name]
                return HistoricalSignatureMatch(name=name, success_rate=rate, description=description)
        return None
