"""Small in-memory caches with an entry cap and optional TTL."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from time import monotonic
from typing import Any, Hashable


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float | None


class BoundedCache:
    """Thread-safe keyed cache.

    Exceeding ``max_entries`` clears the whole table instead of evicting a
    single entry. Entries never expire when ``ttl_s`` is ``None``.
    """

    def __init__(self, max_entries: int, ttl_s: float | None = None) -> None:
        self._max_entries = max(int(max_entries), 1)
        self._ttl_s = max(ttl_s, 0.0) if ttl_s is not None else None
        self._items: dict[Hashable, CacheEntry] = {}
        self._lock = Lock()
        self.overflow_clears = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def get(self, key: Hashable) -> Any | None:
        with self._lock:
            entry = self._items.get(key)
            if not entry:
                return None
            if entry.expires_at is not None and entry.expires_at <= monotonic():
                self._items.pop(key, None)
                return None
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        expires_at = monotonic() + self._ttl_s if self._ttl_s is not None else None
        with self._lock:
            if key not in self._items and len(self._items) >= self._max_entries:
                self._items.clear()
                self.overflow_clears += 1
            self._items[key] = CacheEntry(value=value, expires_at=expires_at)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class TTLCache(BoundedCache):
    """TTL cache for small datasets (host index memo)."""

    def __init__(self, ttl_s: float, max_entries: int = 512) -> None:
        super().__init__(max_entries=max_entries, ttl_s=ttl_s)
