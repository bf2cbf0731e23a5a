from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

DEFAULT_MAX_BYTES = 500 * 1024 * 1024
DEFAULT_MAX_AGE_SECONDS = 7 * 24 * 60 * 60


class FileCacheError(RuntimeError):
    pass


@dataclass(slots=True)
class FileCacheMetrics:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    total_size: int = 0

    @property
    def hit_ratio(self) -> float:
        lookups = self.hits + self.misses
        if lookups == 0:
            return 0.0
        return self.hits / lookups

    def as_dict(self) -> dict[str, float | int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "totalSize": self.total_size,
            "hitRatio": self.hit_ratio,
        }


class FileCache:
    """
    Size-bounded on-disk cache with one JSON file per key.

    File names are the SHA-256 digest of the key. A file's modification time is
    its write time: entries older than ``max_age_seconds`` are removed on read, and
    when the tracked size exceeds ``max_bytes`` the oldest files are deleted until
    the cache fits again.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._max_bytes = max_bytes
        self._max_age_seconds = max_age_seconds
        self._time = time_fn or time.time
        self._metrics = FileCacheMetrics()
        self._initialized = False
        self._lock = asyncio.Lock()
        self._logger = logging.getLogger("marketdata.cache.file")

    @property
    def directory(self) -> Path:
        return self._directory

    @staticmethod
    def cache_key(key: str) -> str:
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    def path_for(self, key: str) -> Path:
        return self._directory / self.cache_key(key)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, data: Any) -> None:
        async with self._lock:
            await asyncio.to_thread(self._set_sync, key, data)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return await asyncio.to_thread(self._delete_sync, key)

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._clear_sync)

    def get_metrics(self) -> dict[str, float | int]:
        return self._metrics.as_dict()

    @property
    def metrics(self) -> FileCacheMetrics:
        return self._metrics

    def _ensure_directory(self) -> None:
        if self._initialized:
            return
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FileCacheError(f"Failed to create cache directory {self._directory}") from exc
        self._metrics.total_size = sum(
            entry.stat().st_size for entry in self._directory.iterdir() if entry.is_file()
        )
        self._initialized = True

    def _get_sync(self, key: str) -> Any | None:
        path = self.path_for(key)
        try:
            self._ensure_directory()
            stats = path.stat()
            if self._time() - stats.st_mtime > self._max_age_seconds:
                path.unlink()
                self._metrics.total_size = max(self._metrics.total_size - stats.st_size, 0)
                self._metrics.misses += 1
                return None
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            self._metrics.misses += 1
            return None
        except (OSError, ValueError, FileCacheError) as exc:
            self._logger.warning("File cache read failed for %s: %s", key, exc)
            self._metrics.misses += 1
            return None
        self._metrics.hits += 1
        return payload

    def _set_sync(self, key: str, data: Any) -> None:
        path = self.path_for(key)
        try:
            self._ensure_directory()
            serialized = json.dumps(data)
            previous_size = path.stat().st_size if path.exists() else 0
            path.write_text(serialized, encoding="utf-8")
            now = self._time()
            os.utime(path, (now, now))
        except (OSError, TypeError, ValueError, FileCacheError) as exc:
            self._logger.error("Failed to write file cache entry %s: %s", key, exc)
            return
        self._metrics.sets += 1
        self._metrics.total_size += len(serialized.encode("utf-8")) - previous_size
        self._enforce_size_limit()

    def _delete_sync(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            self._logger.error("Failed to delete file cache entry %s: %s", key, exc)
            return False
        self._metrics.deletes += 1
        self._metrics.total_size = max(self._metrics.total_size - size, 0)
        return True

    def _clear_sync(self) -> None:
        if not self._directory.exists():
            return
        for entry in self._directory.iterdir():
            if entry.is_file():
                entry.unlink(missing_ok=True)
        self._metrics.total_size = 0

    def _enforce_size_limit(self) -> None:
        if self._metrics.total_size <= self._max_bytes:
            return
        try:
            files = [(entry, entry.stat()) for entry in self._directory.iterdir() if entry.is_file()]
        except OSError as exc:
            self._logger.error("Failed to scan file cache directory: %s", exc)
            return
        files.sort(key=lambda item: item[1].st_mtime)
        total = self._metrics.total_size
        evicted = 0
        for entry, stats in files:
            if total <= self._max_bytes:
                break
            try:
                entry.unlink()
            except OSError as exc:
                self._logger.warning("Failed to evict %s: %s", entry.name, exc)
                continue
            total -= stats.st_size
            evicted += 1
        self._metrics.total_size = max(total, 0)
        if evicted:
            self._logger.info("Evicted %s file cache entries to stay under %s bytes", evicted, self._max_bytes)


__all__ = ["FileCache", "FileCacheError", "FileCacheMetrics"]
