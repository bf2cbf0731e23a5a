from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict

from fastapi import HTTPException, Request, status

from .observability import record_inbound_rate_limited


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RateLimitRecord:
    count: int
    reset_time: datetime


@dataclass(slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time: datetime

    @property
    def message(self) -> str | None:
        if self.allowed:
            return None
        return f"Rate limit exceeded. Try again after {self.reset_time.isoformat()}"


class FixedWindowRateLimiter:
    """
    In-memory fixed-window limiter keyed by client identity.

    Counters live in this process only; multiple replicas each keep their own windows.
    """

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        *,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._max_requests = max_requests
        self._window = timedelta(seconds=window_seconds)
        self._now = now_fn or _utcnow
        self._records: Dict[str, RateLimitRecord] = {}
        self._logger = logging.getLogger("marketdata.rate_limit")

    def check(self, client_id: str) -> RateLimitDecision:
        now = self._now()
        record = self._records.get(client_id)
        if record is None or now > record.reset_time:
            record = RateLimitRecord(count=1, reset_time=now + self._window)
            self._records[client_id] = record
            return RateLimitDecision(True, self._max_requests - 1, record.reset_time)
        if record.count >= self._max_requests:
            self._logger.info("Rate limit exceeded for %s until %s", client_id, record.reset_time.isoformat())
            return RateLimitDecision(False, 0, record.reset_time)
        record.count += 1
        return RateLimitDecision(True, self._max_requests - record.count, record.reset_time)

    def prune(self) -> int:
        now = self._now()
        expired = [client for client, record in self._records.items() if now > record.reset_time]
        for client in expired:
            self._records.pop(client, None)
        return len(expired)


def client_identity(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def enforce_rate_limit(limiter: FixedWindowRateLimiter, request: Request) -> RateLimitDecision:
    decision = limiter.check(client_identity(request))
    if not decision.allowed:
        record_inbound_rate_limited()
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=decision.message,
            headers={"X-RateLimit-Reset": decision.reset_time.isoformat()},
        )
    return decision


__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitDecision",
    "RateLimitRecord",
    "client_identity",
    "enforce_rate_limit",
]
