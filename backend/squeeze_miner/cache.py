"""
Squeeze Miner — Redis Caching Layer

Optional memoization keyed by (instrument, window). Disabled unless
CACHE_ENABLED is set; when Redis is unreachable every call passes through
(no crashes, just cache misses). Hits are re-validated into the wrapped
function's pydantic return type so callers always get models back.
"""

from __future__ import annotations

import functools
import json
from typing import Any, Callable, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from squeeze_miner.config import get_settings

log = structlog.get_logger(__name__)

KEY_PREFIX = "sqm"


# ──────────────────────────────────────────────
# Redis Cache Client
# ──────────────────────────────────────────────


class RedisCache:
    """Thin Redis wrapper with JSON serialization and graceful degradation."""

    def __init__(self, url: Optional[str] = None, client: Any = None):
        self._url = url or get_settings().redis_url
        self._client = client
        self._available = False
        if client is not None:
            self._available = True
        else:
            self._connect()

    def _connect(self):
        try:
            import redis as redis_lib
            self._client = redis_lib.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
            )
            self._client.ping()
            self._available = True
            log.info("cache.connected", url=self._url)
        except Exception as exc:
            log.warning("cache.unavailable", error=str(exc))
            self._available = False

    @property
    def available(self) -> bool:
        return self._available

    def get(self, key: str) -> Optional[Any]:
        """Get a cached value. Returns None on miss or error."""
        if not self._available:
            return None
        try:
            raw = self._client.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as exc:
            log.warning("cache.get_failed", key=key, error=str(exc))
            return None

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Cache a value with TTL in seconds."""
        if not self._available:
            return False
        try:
            self._client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as exc:
            log.warning("cache.set_failed", key=key, error=str(exc))
            return False

    def clear_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern. Returns count deleted."""
        if not self._available:
            return 0
        try:
            keys = self._client.keys(pattern)
            if keys:
                return self._client.delete(*keys)
            return 0
        except Exception as exc:
            log.warning("cache.clear_failed", pattern=pattern, error=str(exc))
            return 0


# ──────────────────────────────────────────────
# @cached Decorator
# ──────────────────────────────────────────────


def make_cache_key(prefix: str, ticker: str, window: Any) -> str:
    """sqm:{prefix}:{TICKER}:{window}"""
    return f"{KEY_PREFIX}:{prefix}:{ticker.upper()}:{window}"


def cached(prefix: str, return_type: Any, window_arg: str = "lookback"):
    """Cache a `(self, ticker, <window_arg>=...)` method in Redis.

    Usage::

        @cached("bars", list[OHLCV])
        def get_bars(self, ticker, lookback):
            ...

    - Only active when settings.cache_enabled is true.
    - Hits are validated back into `return_type`; a stale entry that no
      longer validates is treated as a miss.
    """
    adapter = TypeAdapter(return_type)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, ticker: str, *args, **kwargs):
            settings = get_settings()
            if not settings.cache_enabled:
                return func(self, ticker, *args, **kwargs)

            window = kwargs.get(window_arg, args[0] if args else None)
            key = make_cache_key(prefix, ticker, window)
            cache = get_cache()

            hit = cache.get(key)
            if hit is not None:
                try:
                    result = adapter.validate_python(hit)
                    log.debug("cache.hit", key=key)
                    return result
                except ValidationError:
                    log.warning("cache.stale_entry", key=key)

            result = func(self, ticker, *args, **kwargs)
            if result is not None:
                cache.set(key, adapter.dump_python(result, mode="json"), ttl=settings.cache_ttl)
                log.debug("cache.set", key=key, ttl=settings.cache_ttl)
            return result

        return wrapper
    return decorator


def invalidate(ticker: str) -> int:
    """Drop every cached entry for one instrument."""
    removed = get_cache().clear_pattern(f"{KEY_PREFIX}:*:{ticker.upper()}:*")
    log.info("cache.invalidated", ticker=ticker.upper(), removed=removed)
    return removed


# ──────────────────────────────────────────────
# Singleton
# ──────────────────────────────────────────────

_cache: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get or create the Redis cache singleton."""
    global _cache
    if _cache is None:
        _cache = RedisCache()
    return _cache


def set_cache(cache: Optional[RedisCache]) -> None:
    """Swap the singleton (tests inject a fake client through this)."""
    global _cache
    _cache = cache
