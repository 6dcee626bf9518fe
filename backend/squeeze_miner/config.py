"""
Squeeze Miner — Configuration Management

Pydantic Settings: loads from .env, validates all engine thresholds at startup.
Every engine accepts an optional Settings instance and falls back to
get_settings() when none is given.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Data Window ──
    lookback_bars: int = 100
    backtest_lookback_years: int = 2
    backtest_min_bars: int = 100

    # ── Consolidation Detection ──
    min_consolidation_duration: int = 10
    backtest_min_duration: int = 15
    max_consolidation_range_pct: float = 8.0

    # ── Breakout / Success Thresholds ──
    breakout_threshold_pct: float = 2.0
    success_move_pct: float = 5.0
    backtest_success_pct: float = 5.0  # peak beyond range edge

    # ── Forward Windows (bars) ──
    transition_forward_bars: int = 21       # ~30 calendar days
    transition_followthrough_bars: int = 10
    backtest_forward_bars: int = 30
    backtest_followthrough_bars: int = 20
    backtest_pre_bars: int = 22             # ~30 calendar days before
    backtest_post_bars: int = 42            # ~60 calendar days after
    backtest_min_window: int = 50

    # ── Pattern Mining ──
    min_combined_frequency: int = 3
    holy_grail_min_success: float = 80.0
    holy_grail_min_return: float = 15.0
    holy_grail_min_frequency: int = 5

    # ── Concurrency ──
    max_workers: int = 6

    # ── Redis Cache ──
    cache_enabled: bool = False
    cache_ttl: int = 900
    redis_url: str = "redis://localhost:6379/0"

    # ── Logging ──
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def breakout_fraction(self) -> float:
        """Breakout threshold as a fraction (2.0% → 0.02)."""
        return self.breakout_threshold_pct / 100

    @property
    def backtest_lookback_bars(self) -> int:
        return self.backtest_lookback_years * 252


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance — created once, reused everywhere."""
    return Settings()
