"""
Squeeze Miner — Logging Setup

Opt-in structlog configuration for scripts and services embedding the engine.
Library modules only call structlog.get_logger(__name__); nothing here runs
at import time.
"""

from __future__ import annotations

import logging
from typing import Optional

import structlog

from squeeze_miner.config import get_settings


def configure_logging(level: Optional[str] = None, json: Optional[bool] = None) -> None:
    """Configure structlog with a console or JSON renderer."""
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    use_json = settings.log_json if json is None else json

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        cache_logger_on_first_use=False,
    )
