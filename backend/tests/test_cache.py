from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from siqs_engine.cache import TTLCache
from siqs_engine.model_data_errors import StorageQuotaError
from siqs_engine.storage import JsonFileStorage


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _cache(clock: _Clock | None = None, **kwargs) -> TTLCache:  # noqa: ANN003
    kwargs.setdefault("default_ttl_s", 60.0)
    kwargs.setdefault("max_entries", 100)
    return TTLCache("test", clock=clock or _Clock(), **kwargs)


def test_entry_expires_after_ttl() -> None:
    clock = _Clock()
    cache = _cache(clock)
    cache.set("k", {"v": 1}, ttl_s=0.1)
    clock.advance(0.05)
    assert cache.get("k") == {"v": 1}
    clock.advance(0.10)
    assert cache.get("k") is None
    stats = cache.snapshot()
    assert stats["expirations"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_get_returns_a_copy() -> None:
    cache = _cache()
    cache.set("k", {"items": [1, 2]})
    first = cache.get("k")
    first["items"].append(3)
    assert cache.get("k") == {"items": [1, 2]}


def test_non_positive_ttl_deletes() -> None:
    cache = _cache()
    cache.set("k", 1)
    cache.set("k", 2, ttl_s=0)
    assert cache.get("k") is None


def test_full_cache_evicts_oldest_fifth() -> None:
    clock = _Clock()
    cache = _cache(clock, max_entries=10)
    for i in range(10):
        cache.set(f"k{i}", i)
        clock.advance(1.0)
    cache.set("k10", 10)
    assert cache.get("k0") is None
    assert cache.get("k1") is None
    assert cache.get("k2") == 2
    assert cache.get("k10") == 10
    assert cache.snapshot()["size"] == 9
    assert cache.snapshot()["evictions"] == 2


def test_overwriting_existing_key_does_not_evict() -> None:
    cache = _cache(max_entries=3)
    for i in range(3):
        cache.set(f"k{i}", i)
    cache.set("k1", 11)
    assert cache.snapshot()["evictions"] == 0
    assert cache.get("k0") == 0
    assert cache.get("k1") == 11


def test_delete_and_prefix_clear() -> None:
    cache = _cache()
    cache.set("siqs:1", 1)
    cache.set("siqs:2", 2)
    cache.set("water:1", 3)
    assert cache.delete("siqs:1") is True
    assert cache.delete("siqs:1") is False
    assert cache.clear("siqs:") == 1
    assert cache.get("water:1") == 3
    assert cache.clear() == 1
    assert cache.snapshot()["size"] == 0


def test_sweep_expired_removes_only_expired() -> None:
    clock = _Clock()
    cache = _cache(clock)
    cache.set("short", 1, ttl_s=1)
    cache.set("long", 2, ttl_s=100)
    clock.advance(5)
    assert cache.sweep_expired() == 1
    assert cache.snapshot()["size"] == 1
    assert cache.get("long") == 2


def test_persisted_entries_survive_a_new_cache(tmp_path: Path) -> None:
    clock = _Clock()
    path = tmp_path / "cache.ndjson"
    first = _cache(clock, storage=JsonFileStorage(path))
    first.set("k", {"bortle": 4.2})

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["k"] for line in lines] == ["cache:test:k"]
    assert lines[0]["v"]["data"] == {"bortle": 4.2}
    assert lines[0]["v"]["expires"] >= int(clock.now * 1000) + 60_000

    second = _cache(clock, storage=JsonFileStorage(path))
    assert second.get("k") == {"bortle": 4.2}
    stats = second.snapshot()
    assert stats["storage_hits"] == 1
    assert stats["size"] == 1


def test_expired_persisted_entry_is_removed_on_read(tmp_path: Path) -> None:
    clock = _Clock()
    path = tmp_path / "cache.ndjson"
    _cache(clock, storage=JsonFileStorage(path)).set("k", 1, ttl_s=1)
    clock.advance(2)
    storage = JsonFileStorage(path)
    cache = _cache(clock, storage=storage)
    assert cache.get("k") is None
    assert storage.keys() == []


def test_warm_from_storage_loads_unexpired(tmp_path: Path) -> None:
    clock = _Clock()
    path = tmp_path / "cache.ndjson"
    seed = _cache(clock, storage=JsonFileStorage(path))
    seed.set("fresh", 1, ttl_s=100)
    seed.set("stale", 2, ttl_s=1)
    clock.advance(5)

    cache = _cache(clock, storage=JsonFileStorage(path))
    assert cache.warm_from_storage() == 1
    assert cache.snapshot()["size"] == 1
    assert cache.get("fresh") == 1


def test_storage_quota_raises_and_keeps_state(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "s.ndjson", max_bytes=64)
    storage.set("a", 1)
    with pytest.raises(StorageQuotaError) as exc_info:
        storage.set("b", "x" * 200)
    assert exc_info.value.max_bytes == 64
    assert storage.keys() == ["a"]
    assert storage.get("a") == 1


def test_storage_evict_oldest(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "s.ndjson")
    for i in range(10):
        storage.set(f"k{i}", i)
    assert storage.evict_oldest(0.2) == 2
    assert storage.keys()[:1] == ["k2"]
    assert storage.clear("k") == 8


def test_quota_errors_trigger_eviction_and_never_raise(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "s.ndjson", max_bytes=400)
    cache = _cache(storage=storage)
    for i in range(20):
        cache.set(f"k{i}", "x" * 30)
    assert storage.size_bytes() <= 400
    assert "cache:test:k19" in storage.keys()
    assert cache.snapshot()["storage_errors"] >= 1
    # The memory tier keeps everything regardless.
    assert cache.get("k0") == "x" * 30


def test_storage_set_writes_only_its_own_record(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "s.ndjson")
    payload = {"bortle": 4.2, "siqs": 6.5, "source": "city_model:Paris"}
    for i in range(2000):
        before = storage.stats()["bytes_written"]
        storage.set(f"cache:siqs:{i}", payload)
        assert storage.stats()["bytes_written"] - before < 200
    stats = storage.stats()
    assert stats["entries"] == 2000
    assert stats["compactions"] == 0
    assert stats["journal_bytes"] == stats["live_bytes"]


def test_storage_compacts_overwritten_records(tmp_path: Path) -> None:
    path = tmp_path / "s.ndjson"
    storage = JsonFileStorage(path, compact_min_bytes=1024)
    for i in range(500):
        storage.set("k", {"n": i})
    stats = storage.stats()
    assert stats["compactions"] >= 1
    assert stats["journal_bytes"] <= stats["live_bytes"] + 1024 + stats["live_bytes"]
    assert path.stat().st_size == stats["journal_bytes"]
    assert JsonFileStorage(path).get("k") == {"n": 499}


def test_storage_replay_skips_torn_and_removed_records(tmp_path: Path) -> None:
    path = tmp_path / "s.ndjson"
    path.write_text(
        '{"k":"a","v":1}\n{"k":"b","v":2}\n{"k":"a","d":1}\nnot json\n{"k":"c","v":',
        encoding="utf-8",
    )
    storage = JsonFileStorage(path)
    assert storage.keys() == ["b"]
    storage.set("d", 4)
    assert JsonFileStorage(path).keys() == ["b", "d"]


def test_get_or_compute_sync_computes_once() -> None:
    cache = _cache()
    calls = {"n": 0}

    def compute() -> dict[str, int]:
        calls["n"] += 1
        return {"value": 7}

    assert cache.get_or_compute_sync("k", compute) == {"value": 7}
    assert cache.get_or_compute_sync("k", compute) == {"value": 7}
    assert calls["n"] == 1


def test_concurrent_get_or_compute_runs_factory_once() -> None:
    cache = TTLCache("test", default_ttl_s=60, max_entries=10)
    calls = {"n": 0}

    async def factory() -> dict[str, int]:
        calls["n"] += 1
        await asyncio.sleep(0.01)
        return {"value": 42}

    async def _run() -> list[dict[str, int]]:
        return list(await asyncio.gather(*[cache.get_or_compute("k", factory) for _ in range(5)]))

    results = asyncio.run(_run())
    assert calls["n"] == 1
    assert results == [{"value": 42}] * 5
    stats = cache.snapshot()
    assert stats["coalesced"] == 4
    assert stats["in_flight"] == 0


def test_abandoned_caller_still_caches_result() -> None:
    cache = TTLCache("test", default_ttl_s=60, max_entries=10)

    async def factory() -> str:
        await asyncio.sleep(0.02)
        return "done"

    async def _run() -> None:
        waiter = asyncio.create_task(cache.get_or_compute("k", factory))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        await asyncio.sleep(0.05)

    asyncio.run(_run())
    assert cache.get("k") == "done"


def test_factory_error_propagates_and_clears_inflight() -> None:
    cache = TTLCache("test", default_ttl_s=60, max_entries=10)

    async def factory() -> str:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(cache.get_or_compute("k", factory))
    assert cache.snapshot()["in_flight"] == 0
    assert cache.get("k") is None


def test_sweeper_and_destroy() -> None:
    cache = TTLCache("test", default_ttl_s=0.01, max_entries=10)

    async def _run() -> int:
        cache.set("k", 1)
        cache.start_sweeper(0.02)
        await asyncio.sleep(0.08)
        size = cache.snapshot()["size"]
        await cache.destroy()
        return size

    assert asyncio.run(_run()) == 0
    assert cache.snapshot()["size"] == 0
