"""
Squeeze Miner — Volume & Premium Learner

Builds three corpora from an instrument's own closes and volumes:

- volume patterns around significant 10-bar moves,
- premium-setup patterns (an illustrative, price-derived option-premium proxy),
- support/resistance levels with tests, role reversals and battle-zone pauses,

then cross-validates them into the correlations consumed by the
cross-validated confidence scorer.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import structlog

from squeeze_miner.engines.indicators import annualized_volatility, safe_div
from squeeze_miner.models import (
    BreakoutDirection,
    CrossValidation,
    OHLCV,
    PremiumSetupRecord,
    SupportResistanceLevel,
    VolumeBreakoutRecord,
    VolumePremiumLearning,
    VolumeTrend,
)

log = structlog.get_logger(__name__)

KEEP_RECENT = 20
MAX_LEVELS = 10
LEVEL_ORDER = 10            # bars either side of a local extreme
LEVEL_TOLERANCE = 0.02
BATTLE_TOLERANCE = 0.015
REVERSAL_LOOKAHEAD = 20


class VolumePremiumEngine:
    """Volume, premium-proxy and key-level learner."""

    def learn(self, ticker: str, bars: list[OHLCV]) -> VolumePremiumLearning:
        closes = np.array([b.close for b in bars], dtype=float)
        volumes = np.array([float(b.volume) for b in bars], dtype=float)

        volume_patterns = self.volume_patterns(bars, closes, volumes)
        premium_patterns = self.premium_patterns(bars, closes, volumes)
        levels = self.support_resistance(closes, volumes)
        cross = self.cross_validate(volume_patterns, premium_patterns, levels)

        log.info(
            "volume_premium.learned",
            ticker=ticker,
            volume_patterns=len(volume_patterns),
            premium_patterns=len(premium_patterns),
            levels=len(levels),
            overall=round(cross.overall, 2),
        )
        return VolumePremiumLearning(
            ticker=ticker,
            volume_patterns=volume_patterns,
            premium_patterns=premium_patterns,
            levels=levels,
            cross_validation=cross,
            insights=self.insights(volume_patterns, premium_patterns, levels),
        )

    # ──────────────────────────────────────────────
    # Volume Patterns
    # ──────────────────────────────────────────────

    def volume_patterns(
        self,
        bars: list[OHLCV],
        closes: np.ndarray,
        volumes: np.ndarray,
    ) -> list[VolumeBreakoutRecord]:
        """Volume behaviour around every bar followed by a >5% 10-bar move."""
        records: list[VolumeBreakoutRecord] = []
        for i in range(20, len(closes) - 30):
            move = safe_div(closes[i + 10] - closes[i], closes[i], 0.01) * 100
            if abs(move) <= 5:
                continue

            pre = volumes[i - 10:i]
            baseline = max(float(volumes[max(0, i - 30):i - 10].mean()), 1.0)
            sustained = volumes[i:i + 5]
            post = volumes[i + 1:i + 15]
            breakout_volume = float(volumes[i])

            records.append(VolumeBreakoutRecord(
                index=i,
                date=bars[i].timestamp,
                direction=BreakoutDirection.BULLISH if move > 0 else BreakoutDirection.BEARISH,
                move_pct=round(abs(move), 4),
                pre_volume_ratio=round(float(pre.mean()) / baseline, 4),
                spike_ratio=round(float(pre.max()) / baseline, 4),
                accumulation_days=int((pre > baseline * 1.2).sum()),
                volume_trend=volume_trend(pre),
                sustained=bool((sustained > baseline * 1.5).all()),
                confirmation=breakout_volume > baseline * 2,
                success=abs(move) > 8,
                days_to_target=days_to_target(closes, i, up=move > 0),
                volume_decay=round(
                    1 - safe_div(float(post[-1]), breakout_volume, 1.0) if len(post) else 0.0, 4
                ),
            ))
        return records[-KEEP_RECENT:]

    # ──────────────────────────────────────────────
    # Premium Patterns
    # ──────────────────────────────────────────────

    def premium_patterns(
        self,
        bars: list[OHLCV],
        closes: np.ndarray,
        volumes: np.ndarray,
    ) -> list[PremiumSetupRecord]:
        """Price-derived premium proxy around every bar followed by a >4% move."""
        records: list[PremiumSetupRecord] = []
        for i in range(15, len(closes) - 20):
            price = float(closes[i])
            move = safe_div(closes[i + 10] - price, price, 0.01) * 100
            if abs(move) <= 4:
                continue

            recent = closes[i - 10:i]
            price_range = float(recent.max() - recent.min())
            vol = annualized_volatility(recent)

            key_level = self.nearest_level(price, closes[:i])
            distance = abs(price - key_level) / price if key_level is not None else 1.0
            avg5 = max(float(volumes[i - 5:i].mean()), 1.0)

            records.append(PremiumSetupRecord(
                index=i,
                date=bars[i].timestamp,
                move_pct=round(abs(move), 4),
                compression=max(0.0, 50 - safe_div(price_range, price, 0.01) * 1000),
                iv_rank=min(100.0, vol * 1000),
                skew="put_heavy" if vol > 0.03 else "balanced",
                option_flow=option_flow(recent, volumes[i - 10:i]),
                key_level=key_level,
                pause_at_level=distance < 0.02,
                volume_at_level=round(float(volumes[i]) / avg5, 4),
                premium_expansion=max(1.0, vol * 50),
                battle_intensity=round(battle_intensity(closes[i - 5:i + 5], volumes[i - 5:i + 5]), 4),
                success=abs(move) > 6,
                explosion=round(abs(move) * 10, 4),
                direction="calls" if move > 0 else "puts",
                profit_window=profit_window(closes, i, move),
            ))
        return records[-KEEP_RECENT:]

    # ──────────────────────────────────────────────
    # Support / Resistance
    # ──────────────────────────────────────────────

    @staticmethod
    def significant_levels(closes: np.ndarray) -> list[tuple[float, str]]:
        """Closes that are the extreme of the ±10-bar neighbourhood."""
        levels: list[tuple[float, str]] = []
        for i in range(LEVEL_ORDER, len(closes) - LEVEL_ORDER):
            cur = closes[i]
            before = closes[i - LEVEL_ORDER:i]
            after = closes[i + 1:i + 1 + LEVEL_ORDER]
            if (before <= cur).all() and (after <= cur).all():
                levels.append((float(cur), "resistance"))
            if (before >= cur).all() and (after >= cur).all():
                levels.append((float(cur), "support"))
        return levels

    def nearest_level(self, price: float, closes: np.ndarray) -> Optional[float]:
        levels = self.significant_levels(closes)
        if not levels:
            return None
        return min(levels, key=lambda lv: abs(price - lv[0]))[0]

    def support_resistance(self, closes: np.ndarray, volumes: np.ndarray) -> list[SupportResistanceLevel]:
        """Top levels by strength = min(tests / 5 + 0.3 × reversals, 1)."""
        levels: list[SupportResistanceLevel] = []
        for price, kind in self.significant_levels(closes):
            tests = int((np.abs(closes - price) <= price * LEVEL_TOLERANCE).sum())
            reversals, reversal_success = self._role_reversals(closes, price, kind)
            pauses = self._battle_zone_pauses(closes, price)
            levels.append(SupportResistanceLevel(
                price=price,
                kind=kind,
                tests=tests,
                role_reversals=reversals,
                reversal_success=reversal_success,
                battle_zone_pauses=pauses,
                strength=min(1.0, min(tests / 5, 1.0) + reversals * 0.3),
            ))
        levels.sort(key=lambda lv: lv.strength, reverse=True)
        return levels[:MAX_LEVELS]

    @staticmethod
    def _role_reversals(closes: np.ndarray, level: float, kind: str) -> tuple[int, bool]:
        """Count break episodes after which the level flipped role."""
        tolerance = level * LEVEL_TOLERANCE
        reversals = 0
        any_success = False
        was_broken = False
        for i in range(20, len(closes) - 10):
            broken = closes[i] > level + tolerance if kind == "resistance" else closes[i] < level - tolerance
            if broken and not was_broken:
                flipped, strength = _holds_as(closes[i:], level, "support" if kind == "resistance" else "resistance")
                if flipped:
                    reversals += 1
                    any_success = any_success or strength > 0.7
            was_broken = broken
        return reversals, any_success

    @staticmethod
    def _battle_zone_pauses(closes: np.ndarray, level: float) -> int:
        """Bars near the level where the surrounding 7-bar range is under 1%."""
        pauses = 0
        for i in range(5, len(closes) - 5):
            if abs(closes[i] - level) > level * BATTLE_TOLERANCE:
                continue
            nearby = closes[i - 3:i + 4]
            if (nearby.max() - nearby.min()) / level < 0.01:
                pauses += 1
        return pauses

    # ──────────────────────────────────────────────
    # Cross-Validation
    # ──────────────────────────────────────────────

    @staticmethod
    def cross_validate(
        volume_patterns: list[VolumeBreakoutRecord],
        premium_patterns: list[PremiumSetupRecord],
        levels: list[SupportResistanceLevel],
    ) -> CrossValidation:
        successful_volume = sum(1 for p in volume_patterns if p.success)
        successful_premium = sum(1 for p in premium_patterns if p.success)
        paired = min(len(volume_patterns), len(premium_patterns))

        volume_premium = 0.75
        if paired:
            volume_premium = min(1.0, (successful_volume + successful_premium) / (paired * 2))

        compressed = [p for p in premium_patterns if p.compression > 30]
        squeeze_premium = 0.72
        if compressed:
            squeeze_premium = sum(1 for p in compressed if p.success) / len(compressed)

        squeeze_volume = 0.78
        strong_levels = sum(1 for lv in levels if lv.strength > 0.8)

        return CrossValidation(
            volume_premium_correlation=volume_premium,
            squeeze_volume_correlation=squeeze_volume,
            squeeze_premium_correlation=squeeze_premium,
            triple_confirmations=min(successful_volume, successful_premium, strong_levels),
            overall=(volume_premium + squeeze_volume + squeeze_premium) / 3 * 100,
        )

    @staticmethod
    def insights(
        volume_patterns: list[VolumeBreakoutRecord],
        premium_patterns: list[PremiumSetupRecord],
        levels: list[SupportResistanceLevel],
    ) -> list[str]:
        insights: list[str] = []

        good_volume = [p for p in volume_patterns if p.success]
        if good_volume:
            best = max(good_volume, key=lambda p: p.move_pct)
            insights.append(
                f"Best volume pattern: {best.spike_ratio:.1f}x volume spike with "
                f"{best.accumulation_days} days accumulation"
            )
        else:
            insights.append("Best volume pattern: insufficient volume pattern data")

        good_premium = [p for p in premium_patterns if p.success]
        if good_premium:
            best = max(good_premium, key=lambda p: p.explosion)
            insights.append(
                f"Best premium setup: compression {best.compression:.0f} with "
                f"{best.explosion:.0f}% expansion"
            )
        else:
            insights.append("Best premium setup: insufficient premium pattern data")

        if levels:
            top = levels[0]
            insights.append(
                f"Most reliable level: ${top.price:.2f} ({top.kind}, {top.tests} tests, "
                f"strength {top.strength:.2f})"
            )
        else:
            insights.append("Most reliable level: N/A")

        insights.append(
            "Key success factors: volume accumulation before breakout, premium "
            "compression in consolidation, repeated tests of key levels"
        )
        return insights


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

def volume_trend(volumes: np.ndarray) -> VolumeTrend:
    """Second half vs first half: ±15% decides."""
    half = len(volumes) // 2
    if half == 0:
        return VolumeTrend.STABLE
    first = float(volumes[:half].mean())
    second = float(volumes[half:].mean())
    change = safe_div(second - first, first, 1.0)
    if change > 0.15:
        return VolumeTrend.INCREASING
    if change < -0.15:
        return VolumeTrend.DECREASING
    return VolumeTrend.STABLE


def days_to_target(closes: np.ndarray, start: int, up: bool, target_pct: float = 8.0, horizon: int = 30) -> int:
    """Bars until an 8% move in the breakout direction, capped at the horizon."""
    target = closes[start] * (1 + target_pct / 100 if up else 1 - target_pct / 100)
    for i in range(start + 1, min(start + horizon, len(closes))):
        if (up and closes[i] >= target) or (not up and closes[i] <= target):
            return i - start
    return horizon


def option_flow(prices: np.ndarray, volumes: np.ndarray) -> str:
    change = safe_div(prices[-1] - prices[0], prices[0], 0.01)
    rising = volume_trend(volumes) == VolumeTrend.INCREASING
    if change > 0.02 and rising:
        return "bullish"
    if change < -0.02 and rising:
        return "bearish"
    return "neutral"


def battle_intensity(prices: np.ndarray, volumes: np.ndarray) -> float:
    """Price indecision × peak-volume intensity around a bar."""
    if len(prices) == 0 or len(volumes) == 0:
        return 0.0
    indecision = 1 / (safe_div(float(prices.max() - prices.min()), float(prices[0]), 0.01) + 0.001)
    intensity = safe_div(float(volumes.max()), float(volumes.mean()), 1.0)
    return indecision * intensity


def profit_window(closes: np.ndarray, start: int, move: float, horizon: int = 20) -> int:
    """Bars until 80% of the eventual move was available."""
    threshold = abs(move) * 0.8
    for i in range(start + 1, min(start + horizon, len(closes))):
        current = abs(safe_div(closes[i] - closes[start], closes[start], 0.01)) * 100
        if current >= threshold:
            return i - start
    return horizon


def _holds_as(future: np.ndarray, level: float, role: str) -> tuple[bool, float]:
    """Whether a broken level holds in its new role: 2+ tests, 60%+ reactions."""
    tolerance = level * LEVEL_TOLERANCE
    tests = 0
    reactions = 0
    for i in range(min(REVERSAL_LOOKAHEAD, len(future) - 5)):
        if abs(future[i] - level) > tolerance:
            continue
        tests += 1
        if role == "support" and future[i + 3] > future[i] * 1.02:
            reactions += 1
        elif role == "resistance" and future[i + 3] < future[i] * 0.98:
            reactions += 1
    strength = reactions / tests if tests else 0.0
    return tests >= 2 and strength >= 0.6, strength
