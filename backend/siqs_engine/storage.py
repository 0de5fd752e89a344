from __future__ import annotations

import copy
import json
import math
from pathlib import Path
from threading import Lock
from typing import Any

from .model_data_errors import StorageQuotaError


def _record_line(record: dict[str, Any]) -> str:
    return json.dumps(record, separators=(",", ":")) + "\n"


class JsonFileStorage:
    """Persistent key-value tier backed by an append-only NDJSON journal.

    Every `set` appends one ``{"k": key, "v": value}`` line and every removal
    appends one ``{"k": key, "d": 1}`` line, so a write costs the size of its
    own record. The journal is replayed on first use; malformed lines are
    skipped. When dead records outgrow the live ones the journal is rewritten
    with live records only.

    `max_bytes` bounds the live data (the journal after compaction). Writes
    that would exceed it raise StorageQuotaError and leave the state
    unchanged. Key order is write order, oldest first.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        max_bytes: int = 5 * 1024 * 1024,
        compact_min_bytes: int = 64 * 1024,
    ) -> None:
        self._path = Path(path)
        self._max_bytes = max(1, int(max_bytes))
        self._compact_min_bytes = max(0, int(compact_min_bytes))
        self._lock = Lock()
        # key -> (value, size of its journal line)
        self._items: dict[str, tuple[Any, int]] | None = None
        self._live_bytes = 0
        self._journal_bytes = 0
        self._bytes_written = 0
        self._compactions = 0

    @property
    def path(self) -> Path:
        return self._path

    # ---- journal -----------------------------------------------------

    def _load(self) -> dict[str, tuple[Any, int]]:
        if self._items is not None:
            return self._items
        items: dict[str, tuple[Any, int]] = {}
        text = ""
        if self._path.exists():
            try:
                text = self._path.read_text(encoding="utf-8")
            except OSError:
                text = ""
        for line in text.splitlines():
            trimmed = line.strip()
            if not trimmed:
                continue
            try:
                parsed = json.loads(trimmed)
            except json.JSONDecodeError:
                continue
            if not isinstance(parsed, dict) or not isinstance(parsed.get("k"), str):
                continue
            key = parsed["k"]
            items.pop(key, None)
            if "v" in parsed and not parsed.get("d"):
                items[key] = (parsed["v"], len(_record_line({"k": key, "v": parsed["v"]}).encode("utf-8")))
        self._items = items
        self._live_bytes = sum(size for _, size in items.values())
        self._journal_bytes = len(text.encode("utf-8"))
        if text and not text.endswith("\n"):
            # A torn last line would swallow the next append.
            self._rewrite(items)
        return items

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = line.encode("utf-8")
        with self._path.open("ab") as f:
            f.write(data)
        self._journal_bytes += len(data)
        self._bytes_written += len(data)

    def _rewrite(self, items: dict[str, tuple[Any, int]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = "".join(_record_line({"k": key, "v": value}) for key, (value, _) in items.items()).encode("utf-8")
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(self._path)
        self._journal_bytes = len(data)
        self._bytes_written += len(data)
        self._compactions += 1

    def _maybe_compact(self, items: dict[str, tuple[Any, int]]) -> None:
        dead = self._journal_bytes - self._live_bytes
        if dead > max(self._compact_min_bytes, self._live_bytes):
            self._rewrite(items)

    def _drop(self, items: dict[str, tuple[Any, int]], key: str) -> None:
        _, size = items.pop(key)
        self._live_bytes -= size
        self._append(_record_line({"k": key, "d": 1}))

    # ---- key-value API -----------------------------------------------

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._load().get(key)
            return None if entry is None else copy.deepcopy(entry[0])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            items = self._load()
            line = _record_line({"k": key, "v": value})
            size = len(line.encode("utf-8"))
            previous = items.get(key)
            needed = self._live_bytes - (previous[1] if previous else 0) + size
            if needed > self._max_bytes:
                raise StorageQuotaError(needed_bytes=needed, max_bytes=self._max_bytes)
            self._append(line)
            items.pop(key, None)
            items[key] = (copy.deepcopy(value), size)
            self._live_bytes = needed
            self._maybe_compact(items)

    def remove(self, key: str) -> bool:
        with self._lock:
            items = self._load()
            if key not in items:
                return False
            self._drop(items, key)
            self._maybe_compact(items)
            return True

    def keys(self, prefix: str | None = None) -> list[str]:
        with self._lock:
            items = self._load()
            if not prefix:
                return list(items)
            return [key for key in items if key.startswith(prefix)]

    def clear(self, prefix: str | None = None) -> int:
        with self._lock:
            items = self._load()
            doomed = [key for key in items if not prefix or key.startswith(prefix)]
            for key in doomed:
                _, size = items.pop(key)
                self._live_bytes -= size
            if doomed or self._journal_bytes:
                self._rewrite(items)
            return len(doomed)

    def evict_oldest(self, fraction: float = 0.2, *, prefix: str | None = None) -> int:
        with self._lock:
            items = self._load()
            candidates = [key for key in items if not prefix or key.startswith(prefix)]
            if not candidates:
                return 0
            count = max(1, int(math.ceil(len(candidates) * max(0.0, min(1.0, fraction)))))
            for key in candidates[:count]:
                self._drop(items, key)
            self._maybe_compact(items)
            return count

    def size_bytes(self) -> int:
        with self._lock:
            self._load()
            return self._live_bytes

    def stats(self) -> dict[str, int]:
        with self._lock:
            items = self._load()
            return {
                "entries": len(items),
                "live_bytes": self._live_bytes,
                "journal_bytes": self._journal_bytes,
                "bytes_written": self._bytes_written,
                "compactions": self._compactions,
            }
