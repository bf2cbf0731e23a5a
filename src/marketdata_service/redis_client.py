from __future__ import annotations

import logging
import math
import time
from typing import Callable

import redis.asyncio as redis

from .config import get_settings


class RedisClient:
    """
    Shared redis.asyncio connection for the Redis cache backend.

    ``connect`` never raises: an unreachable server leaves the client
    disconnected and every key operation then fails with ``RuntimeError``,
    which the cache layer turns into a direct upstream fetch.
    """

    def __init__(self, *, factory: Callable[..., redis.Redis] | None = None) -> None:
        self._client: redis.Redis | None = None
        self._factory = factory or redis.from_url
        self._url: str | None = None
        self._logger = logging.getLogger("marketdata.redis")

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self, *, url: str | None = None) -> bool:
        self._url = url or get_settings().redis_url
        if not self._url:
            self._logger.warning("MARKETDATA_REDIS_URL not configured; Redis cache disabled")
            return False
        client = self._factory(self._url, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
        except Exception as exc:
            self._logger.error("Redis at %s unreachable: %s", self._url, exc)
            await client.aclose()
            return False
        self._client = client
        self._logger.info("Connected to Redis at %s", self._url)
        return True

    async def disconnect(self) -> None:
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None

    def get_connection(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not initialized")
        return self._client

    async def get_value(self, key: str) -> str | None:
        return await self.get_connection().get(key)

    async def set_value(self, key: str, value: str, ttl_seconds: float) -> None:
        # Redis expiry is whole seconds and must be positive
        expire = max(int(math.ceil(ttl_seconds)), 1)
        await self.get_connection().set(key, value, ex=expire)

    async def delete_value(self, key: str) -> None:
        await self.get_connection().delete(key)

    async def health_check(self) -> dict[str, object]:
        status: dict[str, object] = {"alive": False, "latency_ms": None, "configured": bool(self._url)}
        if self._client is None:
            return status
        start = time.perf_counter()
        try:
            await self._client.ping()
        except Exception as exc:
            self._logger.warning("Redis health check failed: %s", exc)
            return status
        status["alive"] = True
        status["latency_ms"] = (time.perf_counter() - start) * 1000
        return status


_redis = RedisClient()


def get_redis() -> RedisClient:
    return _redis


__all__ = ["RedisClient", "get_redis"]
