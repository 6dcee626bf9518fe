"""
Squeeze Miner — Pydantic Models

All I/O schemas for the engine. Bar sources produce these, engines return
these, downstream consumers serialize these with model_dump().
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class TimeFrame(str, Enum):
    """The seven fixed squeeze timeframes, shortest first."""
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    DAILY = "daily"


TIMEFRAME_ORDER: list[TimeFrame] = list(TimeFrame)

TIMEFRAME_GROUPS: dict[str, list[TimeFrame]] = {
    "ultra_short": [TimeFrame.M1, TimeFrame.M5],
    "short": [TimeFrame.M15, TimeFrame.M30],
    "medium": [TimeFrame.H1, TimeFrame.H4],
    "long": [TimeFrame.DAILY],
}


class SqueezeStatus(str, Enum):
    BUILDING = "building"
    FIRING = "firing"
    COOLING = "cooling"


class SqueezeColor(str, Enum):
    """Squeeze dot color (red = tightest compression, green = fired)."""
    RED = "red"
    BLACK = "black"
    YELLOW = "yellow"
    GREEN = "green"


class MomentumColor(str, Enum):
    LIGHT_BLUE = "light-blue"
    DARK_BLUE = "dark-blue"
    YELLOW = "yellow"
    RED = "red"


class MomentumDirection(str, Enum):
    BULLISH_ACCELERATION = "bullish-acceleration"
    BULLISH_DECELERATION = "bullish-deceleration"
    BEARISH_DECELERATION = "bearish-deceleration"
    BEARISH_ACCELERATION = "bearish-acceleration"

    @property
    def is_bullish(self) -> bool:
        return self.value.startswith("bullish")

    @property
    def is_acceleration(self) -> bool:
        return self.value.endswith("-acceleration")


class BreakoutDirection(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NONE = "none"


class VolumeTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class VolumeStage(str, Enum):
    ACCUMULATION = "accumulation"
    BUILDING = "building"
    CONFIRMATION = "confirmation"
    BREAKOUT = "breakout"


class PatternClassification(str, Enum):
    """Tiered quality label for mined patterns."""
    LEGENDARY = "LEGENDARY"
    ELITE = "ELITE"
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    AVERAGE = "AVERAGE"
    POOR = "POOR"


class PatternConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ConfidenceRating(str, Enum):
    VERY_HIGH = "very_high"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    VERY_LOW = "very_low"


class SignalType(str, Enum):
    BULLISH_BREAKOUT = "bullish_breakout"
    BEARISH_BREAKDOWN = "bearish_breakdown"
    CONSOLIDATION = "consolidation"


# ──────────────────────────────────────────────
# Market Data Models
# ──────────────────────────────────────────────

class OHLCV(BaseModel):
    """Single OHLCV bar. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int


class StockQuote(BaseModel):
    """Last-known quote from the market-data collaborator."""
    ticker: str
    price: float
    volume: int = 0
    change: float = 0.0
    change_pct: float = 0.0
    timestamp: datetime = Field(default_factory=_utcnow)


# ──────────────────────────────────────────────
# Squeeze Models
# ──────────────────────────────────────────────

class BandTriple(BaseModel):
    """Upper / middle / lower band values."""
    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


class Momentum(BaseModel):
    value: float
    color: MomentumColor
    direction: MomentumDirection


class SqueezeState(BaseModel):
    """Squeeze classification for one timeframe view."""
    timeframe: TimeFrame
    status: SqueezeStatus
    color: SqueezeColor
    bollinger: BandTriple
    keltner: BandTriple
    is_squeezed: bool
    compression_level: float
    momentum: Momentum
    approximated: bool = False  # view built by offset slicing


class MomentumCascade(BaseModel):
    detected: bool = False
    kind: Optional[str] = None          # "momentum" | "squeeze"
    direction: Optional[BreakoutDirection] = None
    description: str = ""


class HistoricalSignatureMatch(BaseModel):
    name: str
    success_rate: float
    description: str


class SqueezeConsensus(BaseModel):
    """Cross-timeframe squeeze summary with a reasoning trace."""
    overall_status: str
    total_timeframes: int = 0
    squeezed_pct: float = 0.0
    firing_pct: float = 0.0
    building_pct: float = 0.0
    cooling_pct: float = 0.0
    bullish_count: int = 0
    bearish_count: int = 0
    color_distribution: dict[str, int] = {}
    avg_momentum_strength: float = 0.0
    reasoning: list[str] = []
    cascade: MomentumCascade = Field(default_factory=MomentumCascade)
    historical_match: Optional[HistoricalSignatureMatch] = None
    probability: Optional[float] = None  # filled in by backtesting
    backtest_required: bool = True


class MultiTimeframeSqueezeAnalysis(BaseModel):
    ultra_short: list[SqueezeState] = []
    short: list[SqueezeState] = []
    medium: list[SqueezeState] = []
    long: list[SqueezeState] = []
    consensus: SqueezeConsensus
    approximated_timeframes: list[TimeFrame] = []

    def all_states(self) -> list[SqueezeState]:
        """Every state, shortest timeframe first."""
        return [*self.ultra_short, *self.short, *self.medium, *self.long]

    def by_timeframe(self) -> dict[TimeFrame, SqueezeState]:
        return {s.timeframe: s for s in self.all_states()}


# ──────────────────────────────────────────────
# Consolidation Models
# ──────────────────────────────────────────────

class PriceRange(BaseModel):
    high: float
    low: float
    percent_range: float


class VolumeProfile(BaseModel):
    average: float
    trend: VolumeTrend = VolumeTrend.STABLE


class ConsolidationPeriod(BaseModel):
    """A bounded price range sustained over a fixed window of bars."""
    start_date: datetime
    end_date: datetime
    start_index: int
    end_index: int
    duration: int
    price_range: PriceRange
    volume: VolumeProfile
    strength: float = Field(ge=0, le=100)


# ──────────────────────────────────────────────
# Transition Models
# ──────────────────────────────────────────────

class SqueezeConditions(BaseModel):
    """Squeeze state observed at a consolidation's end."""
    had_squeeze: bool = False
    compression_ratio: float = 1.0
    confidence: float = 0.0


class TransitionPattern(BaseModel):
    """One historical consolidation → breakout-or-not observation."""
    model_config = ConfigDict(frozen=True)

    consolidation: ConsolidationPeriod
    breakout_occurred: bool
    direction: BreakoutDirection = BreakoutDirection.NONE
    days_to_breakout: Optional[int] = None
    max_move: float = 0.0
    was_successful: bool = False
    volume_increase: float = 0.0
    volume_ratio: float = 1.0
    squeeze: SqueezeConditions = Field(default_factory=SqueezeConditions)
    success_factors: list[str] = []
    failure_reasons: list[str] = []


class TransitionVolumeSample(BaseModel):
    volume_ratio: float
    success: bool
    duration: int
    range_pct: float


class TransitionPremiumSample(BaseModel):
    atr: float
    premium_move: float
    success: bool
    direction: BreakoutDirection


class TransitionLearning(BaseModel):
    """Everything mined from one instrument's consolidation history."""
    ticker: str
    patterns: list[TransitionPattern] = []
    volume_samples: list[TransitionVolumeSample] = []
    premium_samples: list[TransitionPremiumSample] = []
    total_breakouts: int = 0
    successful: int = 0
    success_rate: float = 0.0  # fraction of breakouts, 0-1
    success_factors: list[str] = []
    failure_warnings: list[str] = []
    key_insights: list[str] = []


class CurrentPatternAnalysis(BaseModel):
    best_match: Optional[TransitionPattern] = None
    similarity: float = 0.0
    learning_confidence: str = "Low"
    historical_success_rate: float = 0.0
    candlestick: str = "insufficient_data"


# ──────────────────────────────────────────────
# Backtest Models
# ──────────────────────────────────────────────

class PriceMovement(BaseModel):
    pre_breakout_price: float
    breakout_price: float
    peak_price: float
    percent_move: float
    days_to_target: int


class SqueezeSnapshot(BaseModel):
    """Per-timeframe squeeze colors and momentum at a breakout."""
    active_timeframes: list[TimeFrame] = []
    colors: dict[TimeFrame, SqueezeColor] = {}
    momentum: dict[TimeFrame, MomentumDirection] = {}
    momentum_direction: BreakoutDirection = BreakoutDirection.NONE
    momentum_strength: float = 0.0
    trend_slope: float = 0.0            # regression slope over the consolidation / first close


class VolumeConfirmation(BaseModel):
    pre_breakout_volume: float
    breakout_volume: float
    volume_ratio: float
    confirmed: bool


class PremiumBehavior(BaseModel):
    """Illustrative premium proxy derived from the price move."""
    pre_breakout_premium: float = 100.0
    post_breakout_premium: float
    premium_decay: float = 0.1
    optimal_strike: float
    profitability: float


class KeyLevelBehavior(BaseModel):
    support_respected: bool
    resistance_breached: bool
    retest_successful: bool


class TradingOutcome(BaseModel):
    max_gain: float
    max_drawdown: float
    final_return: float
    holding_period: int


class HistoricalBreakoutPattern(BaseModel):
    """Backtest unit: one historical consolidation and what followed it."""
    consolidation: ConsolidationPeriod
    breakout_date: datetime
    breakout_type: BreakoutDirection
    price_movement: PriceMovement
    squeeze: SqueezeSnapshot
    volume: VolumeConfirmation
    premium: PremiumBehavior
    key_levels: KeyLevelBehavior
    pattern_success: bool
    outcome: TradingOutcome


class PatternStats(BaseModel):
    """Frequency / success / return row for one recurring pattern key."""
    key: str
    frequency: int
    successes: int
    success_rate: float
    avg_return: float
    classification: Optional[PatternClassification] = None
    confidence: Optional[PatternConfidence] = None


class TimeframeEffectiveness(BaseModel):
    timeframe: TimeFrame
    accuracy: float
    avg_return: float
    total_signals: int


class VolumeInsights(BaseModel):
    optimal_volume_ratio: float
    volume_threshold: float = 1.5
    volume_breakout_success: float


class PremiumInsights(BaseModel):
    best_strikes: list[float] = []
    optimal_expiration: str = "2-3 weeks"
    avg_premium_return: float
    premium_success_rate: float


class YearlyEvolution(BaseModel):
    year: int
    frequency: int
    success_rate: float
    avg_return: float


class RecurringPatternAnalysis(BaseModel):
    timeframe_squeeze: list[PatternStats] = []
    volume_buckets: list[PatternStats] = []
    premium_buckets: list[PatternStats] = []
    combined: list[PatternStats] = []
    most_reliable: Optional[PatternStats] = None
    most_frequent: Optional[PatternStats] = None
    highest_return: Optional[PatternStats] = None
    evolution: list[YearlyEvolution] = []


class BacktestResult(BaseModel):
    ticker: str
    total_patterns: int
    successful_patterns: int
    success_rate: float  # percent
    avg_return: float
    best_pattern: Optional[HistoricalBreakoutPattern] = None
    worst_pattern: Optional[HistoricalBreakoutPattern] = None
    common_patterns: list[PatternStats] = []
    timeframe_effectiveness: list[TimeframeEffectiveness] = []
    volume_insights: VolumeInsights
    premium_insights: PremiumInsights
    recurring: RecurringPatternAnalysis = Field(default_factory=RecurringPatternAnalysis)
    patterns: list[HistoricalBreakoutPattern] = []


# ──────────────────────────────────────────────
# Squeeze Pattern Mining Models
# ──────────────────────────────────────────────

class CombinedPatternStats(BaseModel):
    key: str
    squeeze_key: str
    momentum_key: str
    timeframe_count: int
    frequency: int
    successes: int
    success_rate: float
    avg_return: float
    confidence: float
    risk_reward: float
    classification: PatternClassification


class HolyGrailPattern(BaseModel):
    pattern: CombinedPatternStats
    score: float


class PatternRankings(BaseModel):
    by_success_rate: list[CombinedPatternStats] = []
    by_return: list[CombinedPatternStats] = []
    by_frequency: list[CombinedPatternStats] = []
    by_confidence: list[CombinedPatternStats] = []
    by_risk_reward: list[CombinedPatternStats] = []


class TimeframeCountSummary(BaseModel):
    timeframe_count: int
    label: str
    pattern_count: int
    avg_success_rate: float
    avg_return: float
    best_key: Optional[str] = None


class SqueezePatternMining(BaseModel):
    ticker: str
    total_patterns: int
    squeeze_patterns: list[PatternStats] = []
    momentum_patterns: list[PatternStats] = []
    combined: list[CombinedPatternStats] = []
    holy_grail: list[HolyGrailPattern] = []
    rankings: PatternRankings = Field(default_factory=PatternRankings)
    timeframe_summary: list[TimeframeCountSummary] = []
    insights: list[str] = []
    recommendations: list[str] = []


# ──────────────────────────────────────────────
# Volume & Premium Learning Models
# ──────────────────────────────────────────────

class VolumeBreakoutRecord(BaseModel):
    index: int
    date: datetime
    direction: BreakoutDirection
    move_pct: float
    pre_volume_ratio: float
    spike_ratio: float
    accumulation_days: int
    volume_trend: VolumeTrend
    sustained: bool
    confirmation: bool
    success: bool
    days_to_target: Optional[int] = None
    volume_decay: float = 0.0


class PremiumSetupRecord(BaseModel):
    index: int
    date: datetime
    move_pct: float
    compression: float
    iv_rank: float
    skew: str
    option_flow: str
    key_level: Optional[float] = None
    pause_at_level: bool = False
    volume_at_level: float = 0.0
    premium_expansion: float = 1.0
    battle_intensity: float = 0.0
    success: bool
    explosion: float
    direction: str  # "calls" | "puts"
    profit_window: Optional[int] = None


class SupportResistanceLevel(BaseModel):
    price: float
    kind: str  # "support" | "resistance"
    tests: int = 0
    role_reversals: int = 0
    reversal_success: bool = False
    battle_zone_pauses: int = 0
    strength: float = Field(default=0.0, ge=0, le=1)


class CrossValidation(BaseModel):
    volume_premium_correlation: float = 0.75
    squeeze_volume_correlation: float = 0.78
    squeeze_premium_correlation: float = 0.72
    triple_confirmations: int = 0
    overall: float = 0.0  # percent


class VolumePremiumLearning(BaseModel):
    ticker: str
    volume_patterns: list[VolumeBreakoutRecord] = []
    premium_patterns: list[PremiumSetupRecord] = []
    levels: list[SupportResistanceLevel] = []
    cross_validation: CrossValidation = Field(default_factory=CrossValidation)
    insights: list[str] = []


# ──────────────────────────────────────────────
# Volume Analysis Models
# ──────────────────────────────────────────────

class HistoricalVolumeIntelligence(BaseModel):
    optimal_ratio: float = 1.5
    median_success_ratio: float = 1.5
    min_success_ratio: float = 0.0
    max_success_ratio: float = 0.0
    failure_threshold: float = 1.0
    best_match_ratio: Optional[float] = None
    accuracy: float = 0.6
    confidence: float = 0.4
    supporting_factors: list[str] = []
    cautionary_flags: list[str] = []


class VolumeProgression(BaseModel):
    stage_ratios: list[float] = []
    current_stage: VolumeStage = VolumeStage.ACCUMULATION
    next_stage: str = ""
    buildup_healthy: bool = False
    consistency: float = 0.0
    health: str = "poor"
    price_volume_correlation: float = 0.0
    risk_level: str = "medium"
    insights: list[str] = []


class VolumeAnalysis(BaseModel):
    recent_average: float
    overall_average: float
    current_ratio: float
    is_confirmed: bool
    historical: HistoricalVolumeIntelligence = Field(default_factory=HistoricalVolumeIntelligence)
    progression: VolumeProgression = Field(default_factory=VolumeProgression)


# ──────────────────────────────────────────────
# Confidence & Signal Models
# ──────────────────────────────────────────────

class ConfidenceComponent(BaseModel):
    name: str
    points: float
    max_points: float
    detail: str = ""


class ConfidenceAssessment(BaseModel):
    """Weighted fusion of independent signals into one 0-100 score."""
    variant: str
    score: float = Field(ge=0, le=100)
    rating: ConfidenceRating
    components: list[ConfidenceComponent] = []
    insights: list[str] = []


class PatternMatch(BaseModel):
    similarity: float
    best_pattern: Optional[HistoricalBreakoutPattern] = None
    recommendation: str


class KeyLevels(BaseModel):
    support: list[float] = []
    resistance: list[float] = []
    breakout_level: float


class PriceAction(BaseModel):
    current_price: float
    breakout_magnitude_pct: float
    candlestick: str


class BreakoutSignal(BaseModel):
    """Full breakout analysis for one instrument."""
    ticker: str
    signal: SignalType
    consolidation: ConsolidationPeriod
    current_pattern: CurrentPatternAnalysis
    volume: VolumeAnalysis
    squeeze: MultiTimeframeSqueezeAnalysis
    key_levels: KeyLevels
    price_action: PriceAction
    confidence: ConfidenceAssessment
    cross_validated: ConfidenceAssessment
    backtest: Optional[BacktestResult] = None
    pattern_match: Optional[PatternMatch] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class TickerAnalysis(BaseModel):
    """Per-ticker outcome of a batch run."""
    ticker: str
    signal: Optional[BreakoutSignal] = None
    error: Optional[str] = None
