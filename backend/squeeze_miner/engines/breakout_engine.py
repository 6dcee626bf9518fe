"""
Squeeze Miner — Breakout Analysis Engine

The end-to-end pipeline for one instrument: learn from its own history,
locate the current consolidation, classify the squeeze picture, score
confidence and emit a BreakoutSignal. Optionally enriched with a full
historical backtest, and fanned out across many tickers on a thread pool.
"""

from __future__ import annotations

import concurrent.futures
from typing import Optional

import structlog

from squeeze_miner.config import Settings, get_settings
from squeeze_miner.data.market_data import BarSource, YFinanceBarSource
from squeeze_miner.engines.backtest_engine import BacktestEngine
from squeeze_miner.engines.consolidation_engine import ConsolidationEngine
from squeeze_miner.engines.mtf_squeeze_engine import MultiTimeframeSqueezeEngine
from squeeze_miner.engines.scoring_engine import ScoringEngine
from squeeze_miner.engines.transition_engine import TransitionEngine
from squeeze_miner.engines.volume_premium_engine import VolumePremiumEngine
from squeeze_miner.errors import DataUnavailable, EngineError, InsufficientHistory
from squeeze_miner.models import (
    OHLCV,
    BreakoutSignal,
    KeyLevels,
    PriceAction,
    SignalType,
    TickerAnalysis,
    TimeFrame,
)

log = structlog.get_logger(__name__)


class BreakoutAnalysisEngine:
    """Learn → detect → classify → score, for one ticker or many."""

    def __init__(
        self,
        source: Optional[BarSource] = None,
        settings: Optional[Settings] = None,
        timeframe_sources: Optional[dict[TimeFrame, BarSource]] = None,
    ):
        self.settings = settings or get_settings()
        self.source = source or YFinanceBarSource()
        self.timeframe_sources = timeframe_sources or {}

        self.consolidation = ConsolidationEngine(self.settings)
        self.transitions = TransitionEngine(self.settings, self.consolidation)
        self.volume_premium = VolumePremiumEngine()
        self.mtf = MultiTimeframeSqueezeEngine()
        self.scoring = ScoringEngine()
        self.backtester = BacktestEngine(self.source, self.settings, self.consolidation)

    # ──────────────────────────────────────────────
    # Single Ticker
    # ──────────────────────────────────────────────

    def analyze_breakout(self, ticker: str) -> BreakoutSignal:
        """Full signal for the current state of `ticker`."""
        ticker = ticker.upper()
        quote = self.source.get_quote(ticker)
        bars = self.source.get_bars(ticker, self.settings.lookback_bars)
        if not bars:
            log.error("breakout.no_bars", ticker=ticker)
            raise InsufficientHistory(ticker, self.settings.lookback_bars, 0, 1)

        learning = self.transitions.learn(ticker, bars)
        vp_learning = self.volume_premium.learn(ticker, bars)

        current = self.consolidation.most_recent(bars)
        if current is None:
            log.warning("breakout.fallback_consolidation", ticker=ticker, bars=len(bars))
            current = ConsolidationEngine.fallback_period(quote)

        pattern = self.transitions.analyze_current_pattern(current, learning, bars)
        squeeze = self.mtf.analyze(bars, self._timeframe_bars(ticker))
        volume = self.scoring.analyze_volume(bars, learning)

        high = current.price_range.high
        low = current.price_range.low
        if quote.price > high:
            signal = SignalType.BULLISH_BREAKOUT
        elif quote.price < low:
            signal = SignalType.BEARISH_BREAKDOWN
        else:
            signal = SignalType.CONSOLIDATION

        result = BreakoutSignal(
            ticker=ticker,
            signal=signal,
            consolidation=current,
            current_pattern=pattern,
            volume=volume,
            squeeze=squeeze,
            key_levels=KeyLevels(
                support=[lv.price for lv in vp_learning.levels if lv.kind == "support"],
                resistance=[lv.price for lv in vp_learning.levels if lv.kind == "resistance"],
                breakout_level=high,
            ),
            price_action=PriceAction(
                current_price=quote.price,
                breakout_magnitude_pct=(quote.price - high) / high * 100 if high else 0.0,
                candlestick=pattern.candlestick,
            ),
            confidence=self.scoring.intelligent(pattern, volume, squeeze, learning),
            cross_validated=self.scoring.cross_validated(learning, vp_learning),
        )
        log.info(
            "breakout.analyzed",
            ticker=ticker,
            signal=signal.value,
            confidence=result.confidence.score,
            cross_validated=result.cross_validated.score,
        )
        return result

    def analyze_breakout_with_backtest(self, ticker: str) -> BreakoutSignal:
        """analyze_breakout plus the historical backtest and a pattern match."""
        signal = self.analyze_breakout(ticker)
        backtest = self.backtester.perform_historical_backtest(signal.ticker)

        signal.backtest = backtest
        signal.pattern_match = self.scoring.match_historical_pattern(
            signal.volume.current_ratio,
            signal.consolidation.strength,
            backtest,
        )
        signal.squeeze.consensus.probability = backtest.success_rate
        signal.squeeze.consensus.backtest_required = False
        return signal

    def _timeframe_bars(self, ticker: str) -> dict[TimeFrame, list[OHLCV]]:
        """Bars from each configured per-timeframe source; failures fall back to approximation."""
        views: dict[TimeFrame, list[OHLCV]] = {}
        for tf, source in self.timeframe_sources.items():
            try:
                views[tf] = source.get_bars(ticker, self.settings.lookback_bars)
            except DataUnavailable as exc:
                log.warning("breakout.timeframe_unavailable", ticker=ticker, timeframe=tf.value, error=str(exc))
        return views

    # ──────────────────────────────────────────────
    # Fan-out
    # ──────────────────────────────────────────────

    def analyze_many(self, tickers: list[str], with_backtest: bool = False) -> list[TickerAnalysis]:
        """Analyze tickers concurrently. One failure never affects the others.

        Results come back in input order.
        """
        run = self.analyze_breakout_with_backtest if with_backtest else self.analyze_breakout
        results: list[TickerAnalysis] = []

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            futures = [(t.upper(), pool.submit(run, t)) for t in tickers]
            for ticker, future in futures:
                try:
                    results.append(TickerAnalysis(ticker=ticker, signal=future.result()))
                except EngineError as exc:
                    log.warning("breakout.ticker_failed", ticker=ticker, error=str(exc))
                    results.append(TickerAnalysis(ticker=ticker, error=str(exc)))
                except Exception as exc:
                    log.exception("breakout.ticker_crashed", ticker=ticker)
                    results.append(TickerAnalysis(ticker=ticker, error=f"{type(exc).__name__}: {exc}"))

        log.info(
            "breakout.batch_complete",
            tickers=len(tickers),
            failed=sum(1 for r in results if r.error),
        )
        return results
