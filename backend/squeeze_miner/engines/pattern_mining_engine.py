"""
Squeeze Miner — Squeeze Pattern Miner

Mines backtested breakouts for recurring squeeze-color and momentum-bar
signatures across timeframe combinations, then scores, ranks and filters
the combined signatures down to the "Holy Grail" set.

Combinations are a bounded candidate list (singles, pairs and 15 fixed
contiguous runs), never a full power-set enumeration.
"""

from __future__ import annotations

from collections import defaultdict
from itertools import combinations
from typing import Optional

import structlog

from squeeze_miner.config import Settings, get_settings
from squeeze_miner.engines.backtest_engine import BacktestEngine, classify_pattern
from squeeze_miner.models import (
    BacktestResult,
    CombinedPatternStats,
    HistoricalBreakoutPattern,
    HolyGrailPattern,
    PatternRankings,
    PatternStats,
    SqueezePatternMining,
    TimeFrame,
    TimeframeCountSummary,
)

log = structlog.get_logger(__name__)

# Longest first, the order keys are written in
MINING_ORDER: list[TimeFrame] = [
    TimeFrame.DAILY, TimeFrame.H4, TimeFrame.H1, TimeFrame.M30,
    TimeFrame.M15, TimeFrame.M5, TimeFrame.M1,
]

_D, _H4, _H1, _M30, _M15, _M5, _M1 = MINING_ORDER

CONTIGUOUS_RUNS: list[tuple[TimeFrame, ...]] = [
    (_D, _H4, _H1),
    (_H4, _H1, _M30),
    (_H1, _M30, _M15),
    (_M30, _M15, _M5),
    (_M15, _M5, _M1),
    (_D, _H4, _H1, _M30),
    (_H4, _H1, _M30, _M15),
    (_H1, _M30, _M15, _M5),
    (_M30, _M15, _M5, _M1),
    (_D, _H4, _H1, _M30, _M15),
    (_H4, _H1, _M30, _M15, _M5),
    (_H1, _M30, _M15, _M5, _M1),
    (_D, _H4, _H1, _M30, _M15, _M5),
    (_H4, _H1, _M30, _M15, _M5, _M1),
    (_D, _H4, _H1, _M30, _M15, _M5, _M1),
]

COUNT_LABELS = [
    "singleTimeframe", "twoTimeframes", "threeTimeframes", "fourTimeframes",
    "fiveTimeframes", "sixTimeframes", "sevenTimeframes",
]

TOP_N = 10


def timeframe_combinations() -> list[tuple[TimeFrame, ...]]:
    """Every single, every pair, then the fixed 3–7 timeframe runs."""
    singles = [(tf,) for tf in MINING_ORDER]
    pairs = list(combinations(MINING_ORDER, 2))
    return singles + pairs + CONTIGUOUS_RUNS


COMBINATIONS = timeframe_combinations()


class _Tally:
    __slots__ = ("frequency", "successes", "total_return")

    def __init__(self):
        self.frequency = 0
        self.successes = 0
        self.total_return = 0.0

    def add(self, pattern: HistoricalBreakoutPattern) -> None:
        self.frequency += 1
        self.total_return += pattern.outcome.final_return
        if pattern.pattern_success:
            self.successes += 1

    @property
    def success_rate(self) -> float:
        return self.successes / self.frequency * 100 if self.frequency else 0.0

    @property
    def avg_return(self) -> float:
        return self.total_return / self.frequency if self.frequency else 0.0


class PatternMiningEngine:
    """Squeeze + momentum signature miner over a BacktestResult."""

    def __init__(self, settings: Optional[Settings] = None, backtest_engine: Optional[BacktestEngine] = None):
        self.settings = settings or get_settings()
        self._backtest = backtest_engine

    def analyze_ticker(self, ticker: str, lookback_years: int = 3) -> SqueezePatternMining:
        """Backtest `ticker` and mine the result."""
        backtest = self._backtest or BacktestEngine(settings=self.settings)
        result = backtest.perform_historical_backtest(ticker, lookback_years)
        return self.analyze_all_squeeze_patterns(result)

    def analyze_all_squeeze_patterns(self, backtest: BacktestResult) -> SqueezePatternMining:
        s = self.settings
        squeeze: dict[str, _Tally] = defaultdict(_Tally)
        momentum: dict[str, _Tally] = defaultdict(_Tally)
        combined: dict[str, _Tally] = defaultdict(_Tally)
        parts: dict[str, tuple[str, str, int]] = {}

        for pattern in backtest.patterns:
            for combo in COMBINATIONS:
                keys = signature_keys(pattern, combo)
                if keys is None:
                    continue
                squeeze_key, momentum_key = keys
                key = f"SQUEEZE[{squeeze_key}]+MOMENTUM[{momentum_key}]"
                squeeze[squeeze_key].add(pattern)
                momentum[momentum_key].add(pattern)
                combined[key].add(pattern)
                parts[key] = (squeeze_key, momentum_key, len(combo))

        combined_stats = [
            self.score_combined(key, *parts[key], tally)
            for key, tally in combined.items()
            if tally.frequency >= s.min_combined_frequency
        ]
        combined_stats.sort(key=lambda c: c.confidence, reverse=True)

        holy_grail = self.holy_grail(combined_stats)
        mining = SqueezePatternMining(
            ticker=backtest.ticker,
            total_patterns=backtest.total_patterns,
            squeeze_patterns=_stats(squeeze),
            momentum_patterns=_stats(momentum),
            combined=combined_stats,
            holy_grail=holy_grail,
            rankings=self.rankings(combined_stats),
            timeframe_summary=self.timeframe_summary(combined_stats),
        )
        mining.insights = self.insights(mining)
        mining.recommendations = self.recommendations(holy_grail)

        log.info(
            "mining.complete",
            ticker=backtest.ticker,
            squeeze_keys=len(squeeze),
            momentum_keys=len(momentum),
            combined=len(combined_stats),
            holy_grail=len(holy_grail),
        )
        return mining

    # ──────────────────────────────────────────────
    # Scoring
    # ──────────────────────────────────────────────

    @staticmethod
    def score_combined(
        key: str,
        squeeze_key: str,
        momentum_key: str,
        timeframe_count: int,
        tally: _Tally,
    ) -> CombinedPatternStats:
        """confidence = 0.4·SR + 0.3·min(2·ret, 50) + 0.3·min(5·freq, 30)"""
        rate = tally.success_rate
        ret = tally.avg_return
        confidence = rate * 0.4 + min(ret * 2, 50) * 0.3 + min(tally.frequency * 5, 30) * 0.3
        return CombinedPatternStats(
            key=key,
            squeeze_key=squeeze_key,
            momentum_key=momentum_key,
            timeframe_count=timeframe_count,
            frequency=tally.frequency,
            successes=tally.successes,
            success_rate=rate,
            avg_return=ret,
            confidence=confidence,
            risk_reward=ret / max(1.0, 100 - rate),
            classification=classify_pattern(rate, ret),
        )

    def holy_grail(self, stats: list[CombinedPatternStats]) -> list[HolyGrailPattern]:
        s = self.settings
        elite = [
            HolyGrailPattern(pattern=c, score=holy_grail_score(c))
            for c in stats
            if c.success_rate >= s.holy_grail_min_success
            and c.avg_return >= s.holy_grail_min_return
            and c.frequency >= s.holy_grail_min_frequency
        ]
        return sorted(elite, key=lambda h: h.score, reverse=True)

    @staticmethod
    def rankings(stats: list[CombinedPatternStats]) -> PatternRankings:
        def top(attr: str) -> list[CombinedPatternStats]:
            return sorted(stats, key=lambda c: getattr(c, attr), reverse=True)[:TOP_N]

        return PatternRankings(
            by_success_rate=top("success_rate"),
            by_return=top("avg_return"),
            by_frequency=top("frequency"),
            by_confidence=top("confidence"),
            by_risk_reward=top("risk_reward"),
        )

    @staticmethod
    def timeframe_summary(stats: list[CombinedPatternStats]) -> list[TimeframeCountSummary]:
        rows = []
        for count, label in enumerate(COUNT_LABELS, start=1):
            group = [c for c in stats if c.timeframe_count == count]
            best = max(group, key=lambda c: c.confidence, default=None)
            rows.append(TimeframeCountSummary(
                timeframe_count=count,
                label=label,
                pattern_count=len(group),
                avg_success_rate=sum(c.success_rate for c in group) / len(group) if group else 0.0,
                avg_return=sum(c.avg_return for c in group) / len(group) if group else 0.0,
                best_key=best.key if best else None,
            ))
        return rows

    # ──────────────────────────────────────────────
    # Narrative
    # ──────────────────────────────────────────────

    def insights(self, mining: SqueezePatternMining) -> list[str]:
        total = len(mining.combined)
        found = len(mining.holy_grail)
        share = found / total * 100 if total else 0.0
        insights = [
            f"Analyzed {total} unique squeeze+momentum combinations",
            f"Found {found} Holy Grail patterns "
            f"({self.settings.holy_grail_min_success:.0f}%+ success, "
            f"{self.settings.holy_grail_min_return:.0f}%+ return)",
            f"Holy Grail share: {share:.1f}%",
        ]

        single = next((r for r in mining.timeframe_summary if r.timeframe_count == 1), None)
        multi = [r for r in mining.timeframe_summary if r.timeframe_count >= 3 and r.pattern_count]
        if single and single.pattern_count and multi:
            multi_rate = sum(r.avg_success_rate for r in multi) / len(multi)
            verdict = "outperform" if multi_rate > single.avg_success_rate else "trail"
            insights.append(
                f"Multi-timeframe setups {verdict} single timeframe "
                f"({multi_rate:.0f}% vs {single.avg_success_rate:.0f}% success)"
            )

        if mining.combined:
            best = mining.combined[0]
            insights.append(
                f"Highest-confidence signature: {best.key} "
                f"({best.success_rate:.0f}% over {best.frequency} breakouts)"
            )
        return insights

    @staticmethod
    def recommendations(holy_grail: list[HolyGrailPattern]) -> list[str]:
        if holy_grail:
            return [
                f"Focus on top {min(3, len(holy_grail))} Holy Grail patterns",
                "Wait for multi-timeframe confirmation before entry",
                "Monitor volume closely on Holy Grail setups",
                "Use tight stops - these patterns move fast when they break",
            ]
        return [
            "No Holy Grail patterns found - consider expanding timeframe",
            "Look for patterns with 70%+ success rate and 10%+ returns",
            "Focus on multi-timeframe setups for better odds",
        ]


def signature_keys(
    pattern: HistoricalBreakoutPattern,
    combo: tuple[TimeFrame, ...],
) -> Optional[tuple[str, str]]:
    """(squeeze key, momentum key) for one combination, or None if a timeframe is missing."""
    colors = pattern.squeeze.colors
    moms = pattern.squeeze.momentum
    if any(tf not in colors or tf not in moms for tf in combo):
        return None
    tfs = "-".join(tf.value for tf in combo)
    squeeze_key = f"{tfs}:" + "-".join(colors[tf].value for tf in combo)
    momentum_key = f"{tfs}:" + "-".join(moms[tf].value for tf in combo)
    return squeeze_key, momentum_key


def holy_grail_score(c: CombinedPatternStats) -> float:
    return c.success_rate * 0.4 + c.avg_return * 0.3 + c.frequency * 2 + c.confidence * 0.3


def _stats(tallies: dict[str, _Tally]) -> list[PatternStats]:
    rows = [
        PatternStats(
            key=key,
            frequency=t.frequency,
            successes=t.successes,
            success_rate=t.success_rate,
            avg_return=t.avg_return,
        )
        for key, t in tallies.items()
    ]
    rows.sort(key=lambda r: (r.frequency, r.success_rate), reverse=True)
    return rows
