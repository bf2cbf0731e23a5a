"""
Read-through caching for provider results.
"""

from .backends import (
    CacheBackend,
    CacheBackendError,
    FileCacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    build_cache_backend,
)
from .file_cache import FileCache, FileCacheError, FileCacheMetrics
from .store import CacheStats, CacheStore

__all__ = [
    "CacheBackend",
    "CacheBackendError",
    "CacheStats",
    "CacheStore",
    "FileCache",
    "FileCacheBackend",
    "FileCacheError",
    "FileCacheMetrics",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "build_cache_backend",
]
