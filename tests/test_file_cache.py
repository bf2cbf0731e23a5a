import asyncio
import hashlib

from marketdata_service.cache import CacheStore, FileCache, FileCacheBackend

SEVEN_DAYS = 7 * 24 * 60 * 60


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_file_names_are_sha256_of_key(tmp_path):
    cache = FileCache(tmp_path)

    assert cache.path_for("price:BTC").name == hashlib.sha256(b"price:BTC").hexdigest()


def test_set_get_and_metrics(tmp_path):
    async def _run() -> None:
        cache = FileCache(tmp_path, time_fn=FakeClock())
        assert cache.get_metrics()["hitRatio"] == 0.0

        await cache.set("price:BTC", {"price": 50000})
        assert await cache.get("price:BTC") == {"price": 50000}
        assert await cache.get("price:ETH") is None

        metrics = cache.get_metrics()
        assert metrics["hits"] == 1
        assert metrics["misses"] == 1
        assert metrics["sets"] == 1
        assert metrics["hitRatio"] == 0.5
        assert metrics["totalSize"] == cache.path_for("price:BTC").stat().st_size

    asyncio.run(_run())


def test_entries_older_than_seven_days_are_removed(tmp_path):
    async def _run() -> None:
        clock = FakeClock()
        cache = FileCache(tmp_path, time_fn=clock)
        await cache.set("historical:BTC:7", [1, 2, 3])

        clock.advance(SEVEN_DAYS - 1)
        assert await cache.get("historical:BTC:7") == [1, 2, 3]

        clock.advance(2)
        assert await cache.get("historical:BTC:7") is None
        assert not cache.path_for("historical:BTC:7").exists()
        assert cache.get_metrics()["totalSize"] == 0

    asyncio.run(_run())


def test_oldest_entries_are_evicted_when_over_size_limit(tmp_path):
    async def _run() -> None:
        clock = FakeClock()
        cache = FileCache(tmp_path, max_bytes=100, time_fn=clock)
        for key in ("a", "b", "c"):
            await cache.set(key, "x" * 30)
            clock.advance(1)
        assert cache.get_metrics()["totalSize"] == 96

        await cache.set("d", "x" * 30)

        assert not cache.path_for("a").exists()
        assert cache.path_for("b").exists()
        assert cache.path_for("d").exists()
        assert cache.get_metrics()["totalSize"] <= 100

    asyncio.run(_run())


def test_delete_and_clear(tmp_path):
    async def _run() -> None:
        cache = FileCache(tmp_path)
        await cache.set("k1", {"v": 1})
        await cache.set("k2", {"v": 2})

        assert await cache.delete("k1") is True
        assert await cache.delete("k1") is False
        assert cache.get_metrics()["deletes"] == 1

        await cache.clear()
        assert await cache.get("k2") is None
        assert cache.get_metrics()["totalSize"] == 0

    asyncio.run(_run())


def test_corrupt_file_counts_as_miss(tmp_path):
    async def _run() -> None:
        cache = FileCache(tmp_path)
        await cache.set("k", {"v": 1})
        cache.path_for("k").write_text("{broken", encoding="utf-8")

        assert await cache.get("k") is None
        assert cache.get_metrics()["misses"] == 1

    asyncio.run(_run())


def test_cache_store_over_file_backend(tmp_path):
    async def _run() -> None:
        backend = FileCacheBackend(FileCache(tmp_path))
        store = CacheStore(backend)
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return {"symbol": "BTC", "price": 50000.0}

        assert await store.get_cached_data("price:BTC", fetch, 3600) == {"symbol": "BTC", "price": 50000.0}
        assert await store.get_cached_data("price:BTC", fetch, 3600) == {"symbol": "BTC", "price": 50000.0}
        assert calls == 1
        assert backend.file_cache.get_metrics()["hits"] == 1

        health = await backend.health_check()
        assert health["alive"] is True
        assert health["backend"] == "file"

    asyncio.run(_run())
