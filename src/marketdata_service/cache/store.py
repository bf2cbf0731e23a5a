from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, TypeVar

from ..observability import record_cache_lookup
from .backends import CacheBackend, CacheBackendError

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[T]]


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "errors": self.errors}


def _is_storable(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple, dict)) and not value:
        return False
    return True


class CacheStore:
    """
    Read-through cache over a pluggable backend.

    Values are stored as ``{"data": ..., "expiresAt": epoch_seconds}`` envelopes,
    so freshness is decided here regardless of the backend's own expiry. Backend
    failures never reach the caller: the fetcher result is returned uncached.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        time_fn: Callable[[], float] | None = None,
        single_flight: bool = False,
    ) -> None:
        self._backend = backend
        self._time = time_fn or time.time
        self._single_flight = single_flight
        self._inflight: Dict[str, asyncio.Future[Any]] = {}
        self._stats = CacheStats()
        self._logger = logging.getLogger("marketdata.cache")

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def stats(self) -> CacheStats:
        return self._stats

    async def get_cached_data(self, key: str, fetcher: Fetcher[T], ttl_seconds: float) -> T:
        if not self._single_flight:
            return await self._load(key, fetcher, ttl_seconds)
        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key, fetcher, ttl_seconds))
            self._inflight[key] = pending
            pending.add_done_callback(lambda _task: self._inflight.pop(key, None))
        return await asyncio.shield(pending)

    async def invalidate(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except CacheBackendError as exc:
            self._stats.errors += 1
            self._logger.warning("Cache invalidate failed for %s: %s", key, exc)

    async def health_check(self) -> dict[str, object]:
        status = await self._backend.health_check()
        status["stats"] = self._stats.as_dict()
        return status

    async def _load(self, key: str, fetcher: Fetcher[T], ttl_seconds: float) -> T:
        try:
            raw = await self._backend.get(key)
        except CacheBackendError as exc:
            self._stats.errors += 1
            record_cache_lookup("error")
            self._logger.warning("Cache backend unavailable for %s, fetching directly: %s", key, exc)
            return await fetcher()

        cached = self._decode(key, raw)
        if cached is not None:
            data, expires_at = cached
            if self._time() < expires_at:
                self._stats.hits += 1
                record_cache_lookup("hit")
                self._logger.debug("Cache hit for %s", key)
                return data

        self._stats.misses += 1
        record_cache_lookup("miss")
        value = await fetcher()
        if not _is_storable(value):
            return value
        envelope = {"data": value, "expiresAt": self._time() + ttl_seconds}
        try:
            await self._backend.set(key, json.dumps(envelope), ttl_seconds)
        except CacheBackendError as exc:
            self._stats.errors += 1
            self._logger.warning("Failed to store cache entry %s: %s", key, exc)
        except (TypeError, ValueError) as exc:
            self._logger.warning("Cache entry %s is not JSON serializable: %s", key, exc)
        return value

    def _decode(self, key: str, raw: str | None) -> tuple[Any, float] | None:
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
            return envelope["data"], float(envelope["expiresAt"])
        except (ValueError, KeyError, TypeError) as exc:
            self._logger.warning("Discarding malformed cache entry %s: %s", key, exc)
            return None


__all__ = ["CacheStats", "CacheStore", "Fetcher"]
