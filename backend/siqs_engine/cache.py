from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
import math
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from .logging_utils import log_event
from .model_data_errors import StorageQuotaError


T = TypeVar("T")

EVICTION_FRACTION = 0.2


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> bool: ...

    def keys(self, prefix: str | None = None) -> list[str]: ...

    def clear(self, prefix: str | None = None) -> int: ...

    def evict_oldest(self, fraction: float = 0.2, *, prefix: str | None = None) -> int: ...


@dataclass
class _CacheEntry:
    inserted_at_ms: float
    expires_at_ms: float
    data: Any


class TTLCache:
    """Two-tier TTL cache: an in-memory map in front of an optional persistent store.

    Expiry is checked lazily on read; `sweep_expired` (or the periodic sweeper)
    purges proactively. When the memory tier is full, the oldest 20% of
    entries by insertion time are evicted before a new key goes in. Storage
    failures are logged and swallowed so callers never see them.
    """

    def __init__(
        self,
        namespace: str,
        *,
        default_ttl_s: float,
        max_entries: int,
        storage: KeyValueStorage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._namespace = namespace
        self._default_ttl_s = max(0.001, float(default_ttl_s))
        self._max_entries = max(1, int(max_entries))
        self._storage = storage
        self._clock = clock
        self._items: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._sweeper: asyncio.Task[None] | None = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._storage_hits = 0
        self._storage_errors = 0
        self._coalesced = 0

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def _storage_prefix(self) -> str:
        return f"cache:{self._namespace}:"

    def _storage_key(self, key: str) -> str:
        return f"{self._storage_prefix}{key}"

    def _now_ms(self) -> float:
        return float(self._clock()) * 1000.0

    # ---- memory tier -------------------------------------------------

    def _evict_oldest(self) -> None:
        count = max(1, int(math.ceil(len(self._items) * EVICTION_FRACTION)))
        for _ in range(min(count, len(self._items))):
            self._items.popitem(last=False)
            self._evictions += 1

    def _insert(self, key: str, data: Any, expires_at_ms: float) -> None:
        if key in self._items:
            self._items.pop(key)
        elif len(self._items) >= self._max_entries:
            self._evict_oldest()
        self._items[key] = _CacheEntry(
            inserted_at_ms=self._now_ms(),
            expires_at_ms=expires_at_ms,
            data=data,
        )

    # ---- persistent tier ---------------------------------------------

    def _log_storage_failure(self, action: str, key: str, exc: Exception) -> None:
        self._storage_errors += 1
        log_event(
            "cache_storage_failed",
            level=logging.WARNING,
            namespace=self._namespace,
            action=action,
            key=key,
            error=type(exc).__name__,
            detail=str(exc),
        )

    def _persist(self, key: str, data: Any, expires_at_ms: float) -> None:
        if self._storage is None:
            return
        record = {"data": data, "expires": int(math.ceil(expires_at_ms))}
        storage_key = self._storage_key(key)
        try:
            self._storage.set(storage_key, record)
            return
        except StorageQuotaError as exc:
            self._storage_errors += 1
            try:
                evicted = self._storage.evict_oldest(EVICTION_FRACTION, prefix=self._storage_prefix)
                log_event(
                    "cache_storage_quota_evicted",
                    level=logging.WARNING,
                    namespace=self._namespace,
                    evicted=evicted,
                    needed_bytes=exc.needed_bytes,
                    max_bytes=exc.max_bytes,
                )
                self._storage.set(storage_key, record)
            except (OSError, TypeError, ValueError) as retry_exc:
                self._log_storage_failure("set_after_evict", key, retry_exc)
        except (OSError, TypeError, ValueError) as exc:
            self._log_storage_failure("set", key, exc)

    def _remove_persisted(self, key: str) -> None:
        if self._storage is None:
            return
        try:
            self._storage.remove(self._storage_key(key))
        except (OSError, TypeError, ValueError) as exc:
            self._log_storage_failure("remove", key, exc)

    def _read_persisted(self, key: str, now_ms: float) -> tuple[Any, float] | None:
        if self._storage is None:
            return None
        try:
            record = self._storage.get(self._storage_key(key))
        except (OSError, TypeError, ValueError) as exc:
            self._log_storage_failure("get", key, exc)
            return None
        if not isinstance(record, dict) or "data" not in record:
            return None
        expires = record.get("expires")
        if isinstance(expires, bool) or not isinstance(expires, (int, float)) or expires <= now_ms:
            self._expirations += 1
            self._remove_persisted(key)
            return None
        return record["data"], float(expires)

    # ---- public API --------------------------------------------------

    def get(self, key: str) -> Any | None:
        now_ms = self._now_ms()
        entry = self._items.get(key)
        if entry is not None:
            if entry.expires_at_ms > now_ms:
                self._hits += 1
                return copy.deepcopy(entry.data)
            self._items.pop(key, None)
            self._expirations += 1
            self._remove_persisted(key)
            self._misses += 1
            return None

        persisted = self._read_persisted(key, now_ms)
        if persisted is not None:
            data, expires_at_ms = persisted
            self._insert(key, data, expires_at_ms)
            self._hits += 1
            self._storage_hits += 1
            return copy.deepcopy(data)

        self._misses += 1
        return None

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ttl = self._default_ttl_s if ttl_s is None else float(ttl_s)
        if not ttl > 0.0:
            self.delete(key)
            return
        expires_at_ms = self._now_ms() + (ttl * 1000.0)
        data = copy.deepcopy(value)
        self._insert(key, data, expires_at_ms)
        self._persist(key, data, expires_at_ms)

    def delete(self, key: str) -> bool:
        existed = self._items.pop(key, None) is not None
        self._remove_persisted(key)
        return existed

    def clear(self, prefix: str | None = None) -> int:
        if prefix:
            doomed = [key for key in self._items if key.startswith(prefix)]
        else:
            doomed = list(self._items)
        for key in doomed:
            self._items.pop(key, None)
        if self._storage is not None:
            try:
                self._storage.clear(self._storage_prefix + (prefix or ""))
            except (OSError, TypeError, ValueError) as exc:
                self._log_storage_failure("clear", prefix or "*", exc)
        return len(doomed)

    def sweep_expired(self) -> int:
        now_ms = self._now_ms()
        expired = [key for key, entry in self._items.items() if entry.expires_at_ms <= now_ms]
        for key in expired:
            self._items.pop(key, None)
        removed = len(expired)

        if self._storage is not None:
            try:
                storage_keys = self._storage.keys(self._storage_prefix)
            except (OSError, TypeError, ValueError) as exc:
                self._log_storage_failure("keys", "*", exc)
                storage_keys = []
            for storage_key in storage_keys:
                key = storage_key[len(self._storage_prefix):]
                if key in self._items:
                    continue
                if self._read_persisted(key, now_ms) is None:
                    removed += 1

        self._expirations += len(expired)
        return removed

    def warm_from_storage(self) -> int:
        """Load unexpired persisted entries into memory; drop expired ones."""
        if self._storage is None:
            return 0
        try:
            storage_keys = self._storage.keys(self._storage_prefix)
        except (OSError, TypeError, ValueError) as exc:
            self._log_storage_failure("keys", "*", exc)
            return 0
        now_ms = self._now_ms()
        restored = 0
        for storage_key in storage_keys:
            key = storage_key[len(self._storage_prefix):]
            persisted = self._read_persisted(key, now_ms)
            if persisted is None:
                continue
            data, expires_at_ms = persisted
            self._insert(key, data, expires_at_ms)
            restored += 1
        return restored

    def get_or_compute_sync(self, key: str, compute: Callable[[], T], ttl_s: float | None = None) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.set(key, value, ttl_s)
        return copy.deepcopy(value)

    async def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl_s: float | None = None,
    ) -> T:
        """Return the cached value or compute it once for all concurrent callers.

        Callers that arrive while a computation for `key` is pending await the
        same task. The task is shielded: a caller that stops waiting does not
        cancel it, and its result is still cached for later callers.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, factory, ttl_s))
            self._inflight[key] = task
        else:
            self._coalesced += 1
        value = await asyncio.shield(task)
        return copy.deepcopy(value)

    async def _compute(self, key: str, factory: Callable[[], Awaitable[T]], ttl_s: float | None) -> T:
        try:
            value = await factory()
            self.set(key, value, ttl_s)
            return value
        finally:
            self._inflight.pop(key, None)

    def start_sweeper(self, interval_s: float) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop(max(0.01, float(interval_s))))

    async def _sweep_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            removed = self.sweep_expired()
            if removed:
                log_event("cache_sweep", namespace=self._namespace, removed=removed)

    async def destroy(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._inflight.clear()
        self._items.clear()

    def snapshot(self) -> dict[str, Any]:
        return {
            "namespace": self._namespace,
            "size": len(self._items),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "expirations": self._expirations,
            "in_flight": len(self._inflight),
            "coalesced": self._coalesced,
            "storage_hits": self._storage_hits,
            "storage_errors": self._storage_errors,
            "persistent": self._storage is not None,
            "ttl_s": self._default_ttl_s,
            "max_entries": self._max_entries,
        }
