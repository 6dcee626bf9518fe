"""
Squeeze Miner — Engine Errors

Typed failures raised at engine level. Short windows and missing optional
signals never raise; they degrade into documented fallback values instead.
"""

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for every error raised by the engine."""

    def to_dict(self) -> dict:
        """JSON-able error payload for downstream handlers."""
        payload = {"error": True, "type": type(self).__name__, "detail": str(self)}
        payload.update({k: v for k, v in vars(self).items() if not k.startswith("_")})
        return payload


class InsufficientHistory(EngineError):
    """Raised when the bar window cannot support a mining or backtest run."""

    def __init__(
        self,
        ticker: str,
        requested: int,
        available: int,
        minimum: int,
        reason: Optional[str] = None,
    ):
        self.ticker = ticker
        self.requested = requested
        self.available = available
        self.minimum = minimum
        self.reason = reason
        message = (
            f"Insufficient history for '{ticker}' — {available} bars available, "
            f"{minimum} required (requested {requested})"
        )
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DataUnavailable(EngineError):
    """Raised by a bar source when the upstream collaborator fails."""

    def __init__(self, ticker: str, reason: str):
        self.ticker = ticker
        self.reason = reason
        super().__init__(f"Market data unavailable for '{ticker}': {reason}")
