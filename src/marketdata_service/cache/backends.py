from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol

from redis.exceptions import RedisError

from ..config import Settings
from ..redis_client import RedisClient, get_redis
from .file_cache import FileCache


class CacheBackendError(RuntimeError):
    """Raised when the persistence layer behind the cache store is unavailable."""


class CacheBackend(Protocol):
    name: str

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def health_check(self) -> dict[str, object]:
        ...


@dataclass(slots=True)
class MemoryCacheEntry:
    value: str
    stored_at: float
    ttl_seconds: float | None


class MemoryCacheBackend:
    """Process-local backend; entries are dropped lazily once their TTL elapses."""

    name = "memory"

    def __init__(self, *, time_fn: Callable[[], float] | None = None) -> None:
        self._store: Dict[str, MemoryCacheEntry] = {}
        self._time = time_fn or time.monotonic

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            self._store.pop(key, None)
            return None
        return entry.value

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        self._store[key] = MemoryCacheEntry(value=value, stored_at=self._time(), ttl_seconds=ttl_seconds)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def health_check(self) -> dict[str, object]:
        return {"alive": True, "backend": self.name, "entries": len(self._store)}

    def clear(self) -> None:
        self._store.clear()

    def _is_expired(self, entry: MemoryCacheEntry) -> bool:
        if entry.ttl_seconds is None or math.isinf(entry.ttl_seconds):
            return False
        return (self._time() - entry.stored_at) > entry.ttl_seconds


class RedisCacheBackend:
    name = "redis"

    def __init__(self, redis_client: RedisClient | None = None, *, prefix: str = "marketdata:cache:") -> None:
        self._redis = redis_client or get_redis()
        self._prefix = prefix

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get_value(self._prefix + key)
        except (RedisError, RuntimeError, OSError) as exc:
            raise CacheBackendError(f"Redis get failed for {key}") from exc

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        try:
            await self._redis.set_value(self._prefix + key, value, ttl_seconds)
        except (RedisError, RuntimeError, OSError) as exc:
            raise CacheBackendError(f"Redis set failed for {key}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete_value(self._prefix + key)
        except (RedisError, RuntimeError, OSError) as exc:
            raise CacheBackendError(f"Redis delete failed for {key}") from exc

    async def health_check(self) -> dict[str, object]:
        status = await self._redis.health_check()
        status["backend"] = self.name
        return status


class FileCacheBackend:
    """Stores cache envelopes through the on-disk FileCache; its own age limit still applies."""

    name = "file"

    def __init__(self, file_cache: FileCache) -> None:
        self._file_cache = file_cache

    @property
    def file_cache(self) -> FileCache:
        return self._file_cache

    async def get(self, key: str) -> str | None:
        payload = await self._file_cache.get(key)
        if payload is None:
            return None
        if not isinstance(payload, str):
            raise CacheBackendError(f"Unexpected file cache payload for {key}")
        return payload

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        await self._file_cache.set(key, value)

    async def delete(self, key: str) -> None:
        await self._file_cache.delete(key)

    async def health_check(self) -> dict[str, object]:
        return {
            "alive": True,
            "backend": self.name,
            "directory": str(self._file_cache.directory),
            "metrics": self._file_cache.get_metrics(),
        }


def build_cache_backend(settings: Settings, *, redis_client: RedisClient | None = None) -> CacheBackend:
    if settings.cache_backend == "redis":
        return RedisCacheBackend(redis_client)
    if settings.cache_backend == "file":
        return FileCacheBackend(
            FileCache(
                settings.file_cache_dir,
                max_bytes=settings.file_cache_max_bytes,
                max_age_seconds=settings.file_cache_max_age_seconds,
            )
        )
    return MemoryCacheBackend()


__all__ = [
    "build_cache_backend",
    "CacheBackend",
    "CacheBackendError",
    "FileCacheBackend",
    "MemoryCacheBackend",
    "MemoryCacheEntry",
    "RedisCacheBackend",
]
