"""
Squeeze Miner — Market Data Sources

The boundary to the upstream market-data collaborator. Engines only ever
see a BarSource: ascending OHLCV bars plus a last-known quote. Any upstream
failure surfaces as DataUnavailable and is never retried here.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import structlog
import yfinance as yf

from squeeze_miner.cache import cached
from squeeze_miner.errors import DataUnavailable
from squeeze_miner.models import OHLCV, StockQuote

log = structlog.get_logger(__name__)


class BarSource(Protocol):
    def get_quote(self, ticker: str) -> StockQuote: ...

    def get_bars(self, ticker: str, lookback: int) -> list[OHLCV]: ...


class InMemoryBarSource:
    """Pre-loaded bars per ticker, for tests and offline replay."""

    def __init__(
        self,
        bars: dict[str, list[OHLCV]],
        quotes: Optional[dict[str, StockQuote]] = None,
    ):
        self._bars = {t.upper(): sorted(b, key=lambda bar: bar.timestamp) for t, b in bars.items()}
        self._quotes = {t.upper(): q for t, q in (quotes or {}).items()}

    def get_bars(self, ticker: str, lookback: int) -> list[OHLCV]:
        key = ticker.upper()
        if key not in self._bars:
            log.warning("bars.unavailable", ticker=key, lookback=lookback, reason="no bars loaded")
            raise DataUnavailable(key, "no bars loaded")
        return self._bars[key][-lookback:] if lookback > 0 else []

    def get_quote(self, ticker: str) -> StockQuote:
        key = ticker.upper()
        if key in self._quotes:
            return self._quotes[key]
        bars = self._bars.get(key)
        if not bars:
            log.warning("quote.unavailable", ticker=key, reason="no quote or bars loaded")
            raise DataUnavailable(key, "no quote or bars loaded")
        last = bars[-1]
        return StockQuote(ticker=key, price=last.close, volume=last.volume, timestamp=last.timestamp)


class YFinanceBarSource:
    """Wrapper around yfinance delivering typed Pydantic models."""

    def __init__(self, interval: str = "1d"):
        self.interval = interval

    @cached("bars", list[OHLCV])
    def get_bars(self, ticker: str, lookback: int) -> list[OHLCV]:
        """The most recent `lookback` bars, ascending by time."""
        # ~252 trading days per 365 calendar days, plus slack for holidays
        calendar_days = int(lookback * 365 / 252) + 10
        start = (datetime.now(timezone.utc) - timedelta(days=calendar_days)).date()
        try:
            df = yf.Ticker(ticker).history(start=start.isoformat(), interval=self.interval)
        except Exception as e:
            log.warning("yfinance.history_failed", ticker=ticker, error=str(e))
            raise DataUnavailable(ticker.upper(), str(e)) from e

        if df is None or df.empty:
            raise DataUnavailable(ticker.upper(), "empty history")

        bars = []
        for idx, row in df.iterrows():
            bars.append(
                OHLCV(
                    timestamp=idx.to_pydatetime(),
                    open=round(row["Open"], 4),
                    high=round(row["High"], 4),
                    low=round(row["Low"], 4),
                    close=round(row["Close"], 4),
                    volume=int(row["Volume"]),
                )
            )
        log.debug("yfinance.bars", ticker=ticker, bars=len(bars), lookback=lookback)
        return bars[-lookback:]

    def get_quote(self, ticker: str) -> StockQuote:
        try:
            info = yf.Ticker(ticker).info or {}
        except Exception as e:
            log.warning("yfinance.quote_failed", ticker=ticker, error=str(e))
            raise DataUnavailable(ticker.upper(), str(e)) from e

        price = info.get("currentPrice") or info.get("regularMarketPrice")
        if not price:
            raise DataUnavailable(ticker.upper(), "no price in quote")
        return StockQuote(
            ticker=ticker.upper(),
            price=price,
            volume=info.get("regularMarketVolume") or 0,
            change=info.get("regularMarketChange") or 0.0,
            change_pct=info.get("regularMarketChangePercent") or 0.0,
        )
