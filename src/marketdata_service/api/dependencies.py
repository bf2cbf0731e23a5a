from __future__ import annotations

from fastapi import Depends, Request

from ..aggregator import MarketDataAggregator
from ..cache import CacheStore, build_cache_backend
from ..config import get_settings
from ..rate_limit import FixedWindowRateLimiter, RateLimitDecision, enforce_rate_limit


def get_aggregator(request: Request) -> MarketDataAggregator:
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        settings = get_settings()
        cache = CacheStore(build_cache_backend(settings), single_flight=settings.cache_single_flight)
        aggregator = MarketDataAggregator.from_settings(settings, cache=cache)
        request.app.state.aggregator = aggregator
    return aggregator


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        settings = get_settings()
        limiter = FixedWindowRateLimiter(
            settings.rate_limit_max_requests,
            settings.rate_limit_window_seconds,
        )
        request.app.state.rate_limiter = limiter
    return limiter


def rate_limited(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> RateLimitDecision:
    return enforce_rate_limit(limiter, request)


__all__ = ["get_aggregator", "get_rate_limiter", "rate_limited"]
