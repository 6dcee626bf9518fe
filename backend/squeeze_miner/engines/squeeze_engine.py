"""
Squeeze Miner — Squeeze Classifier

Classifies one timeframe view as building / firing / cooling by comparing
Bollinger Band width to Keltner Channel width, colors the squeeze dot by
compression level, and tags momentum with one of four direction labels.

Stateless: every call re-derives the state from the bars it is given.
"""

from __future__ import annotations

from typing import Optional

from squeeze_miner.engines.indicators import bollinger_bands, keltner_channels, safe_div
from squeeze_miner.models import (
    Momentum,
    MomentumColor,
    MomentumDirection,
    OHLCV,
    SqueezeColor,
    SqueezeConditions,
    SqueezeState,
    SqueezeStatus,
    TimeFrame,
)

MIN_VIEW_BARS = 10
BB_PERIOD = 10
BB_STD = 2.0
KC_PERIOD = 10
KC_MULTIPLIER = 1.5
FIRING_EXPANSION = 1.5      # BB width beyond 1.5× KC width = firing
RED_COMPRESSION = 0.8
BLACK_COMPRESSION = 0.6
MOMENTUM_LOOKBACK = 10


class SqueezeEngine:
    """Bollinger-inside-Keltner squeeze classifier for a single timeframe."""

    def classify(
        self,
        bars: list[OHLCV],
        timeframe: TimeFrame = TimeFrame.DAILY,
        approximated: bool = False,
    ) -> Optional[SqueezeState]:
        """Classify the squeeze state of one view. None when it has < 10 bars."""
        if len(bars) < MIN_VIEW_BARS:
            return None

        closes = [b.close for b in bars]
        bb = bollinger_bands(closes, BB_PERIOD, BB_STD)
        kc = keltner_channels(bars, KC_PERIOD, KC_MULTIPLIER)

        bb_width = bb.width
        kc_width = kc.width
        is_squeezed = bb_width < kc_width
        compression = safe_div(bb_width, kc_width)

        if is_squeezed:
            status = SqueezeStatus.BUILDING
        elif bb_width > kc_width * FIRING_EXPANSION:
            status = SqueezeStatus.FIRING
        else:
            status = SqueezeStatus.COOLING

        return SqueezeState(
            timeframe=timeframe,
            status=status,
            color=self.squeeze_color(status, compression),
            bollinger=bb,
            keltner=kc,
            is_squeezed=is_squeezed,
            compression_level=round(compression, 6),
            momentum=self.momentum(closes),
            approximated=approximated,
        )

    @staticmethod
    def squeeze_color(status: SqueezeStatus, compression: float) -> SqueezeColor:
        """Green when fired, otherwise red / black / yellow by compression level."""
        if status == SqueezeStatus.FIRING:
            return SqueezeColor.GREEN
        if compression > RED_COMPRESSION:
            return SqueezeColor.RED
        if compression > BLACK_COMPRESSION:
            return SqueezeColor.BLACK
        return SqueezeColor.YELLOW

    @staticmethod
    def momentum(closes: list[float]) -> Momentum:
        """Tag momentum over the last 10 closes.

        momentum = last - first, previous = closes[-2] - closes[1].
        | sign     | vs previous | color      | direction            |
        |----------|-------------|------------|----------------------|
        | > 0      | rising      | light-blue | bullish-acceleration |
        | > 0      | otherwise   | dark-blue  | bullish-deceleration |
        | <= 0     | falling     | red        | bearish-acceleration |
        | <= 0     | otherwise   | yellow     | bearish-deceleration |

        With fewer than 10 closes, sign alone decides.
        """
        if not closes:
            return Momentum(
                value=0.0,
                color=MomentumColor.RED,
                direction=MomentumDirection.BEARISH_ACCELERATION,
            )

        if len(closes) < MOMENTUM_LOOKBACK:
            value = closes[-1] - closes[0]
            if value > 0:
                return Momentum(
                    value=value,
                    color=MomentumColor.LIGHT_BLUE,
                    direction=MomentumDirection.BULLISH_ACCELERATION,
                )
            return Momentum(
                value=value,
                color=MomentumColor.RED,
                direction=MomentumDirection.BEARISH_ACCELERATION,
            )

        recent = closes[-MOMENTUM_LOOKBACK:]
        value = recent[-1] - recent[0]
        previous = recent[-2] - recent[1]

        if value > 0:
            if value > previous:
                return Momentum(value=value, color=MomentumColor.LIGHT_BLUE,
                                direction=MomentumDirection.BULLISH_ACCELERATION)
            return Momentum(value=value, color=MomentumColor.DARK_BLUE,
                            direction=MomentumDirection.BULLISH_DECELERATION)
        if value < previous:
            return Momentum(value=value, color=MomentumColor.RED,
                            direction=MomentumDirection.BEARISH_ACCELERATION)
        return Momentum(value=value, color=MomentumColor.YELLOW,
                        direction=MomentumDirection.BEARISH_DECELERATION)

    @staticmethod
    def conditions_at(bars: list[OHLCV]) -> SqueezeConditions:
        """Squeeze conditions at the end of `bars` (used for historical transitions)."""
        if len(bars) < MIN_VIEW_BARS:
            return SqueezeConditions()

        recent = bars[-BB_PERIOD:]
        bb = bollinger_bands([b.close for b in recent], BB_PERIOD, BB_STD)
        kc = keltner_channels(recent, KC_PERIOD, KC_MULTIPLIER)
        ratio = safe_div(bb.width, kc.width)
        return SqueezeConditions(
            had_squeeze=bb.width < kc.width,
            compression_ratio=round(ratio, 6),
            confidence=min(1.0, max(0.0, (1 - ratio) * 2)),
        )
