from __future__ import annotations

import copy
import hashlib
import json
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

from .settings import settings

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    value: Any
    captured_at: float


class TTLCache:
    """Time-boxed map owned by exactly one component.

    Entries are readable while ``clock() - captured_at < ttl_s``; expired entries
    are dropped lazily on lookup or in bulk by :meth:`sweep`.
    """

    def __init__(
        self,
        namespace: str,
        *,
        ttl_s: float | None = None,
        max_entries: int | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.namespace = namespace
        self._ttl_s = max(1e-3, float(settings.cache_ttl_s if ttl_s is None else ttl_s))
        self._max_entries = max(1, int(settings.cache_max_entries if max_entries is None else max_entries))
        self._clock = clock
        self._lock = Lock()
        self._items: OrderedDict[str, CacheEntry] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def ttl_s(self) -> float:
        return self._ttl_s

    def _scoped(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.captured_at) >= self._ttl_s

    def get_entry(self, key: str) -> CacheEntry | None:
        scoped = self._scoped(key)
        with self._lock:
            entry = self._items.get(scoped)
            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry, self._clock()):
                self._items.pop(scoped, None)
                self._misses += 1
                return None

            self._items.move_to_end(scoped)
            self._hits += 1
            return CacheEntry(value=copy.deepcopy(entry.value), captured_at=entry.captured_at)

    def get(self, key: str) -> Any | None:
        entry = self.get_entry(key)
        return None if entry is None else entry.value

    def set(self, key: str, value: Any) -> None:
        payload = copy.deepcopy(value)
        scoped = self._scoped(key)
        with self._lock:
            if scoped in self._items:
                self._items.move_to_end(scoped)
            self._items[scoped] = CacheEntry(value=payload, captured_at=self._clock())

            while len(self._items) > self._max_entries:
                self._items.popitem(last=False)
                self._evictions += 1

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._items.items() if self._is_expired(entry, now)]
            for key in stale:
                self._items.pop(key, None)
            return len(stale)

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "namespace": self.namespace,
                "size": len(self._items),
                "keys": list(self._items.keys()),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "ttl_s": self._ttl_s,
                "max_entries": self._max_entries,
            }


class CacheRegistry:
    """Every component cache, so admin endpoints can report on and clear them together."""

    def __init__(self) -> None:
        self._caches: dict[str, TTLCache] = {}

    def register(self, cache: TTLCache) -> TTLCache:
        self._caches[cache.namespace] = cache
        return cache

    def create(self, namespace: str, **kwargs: Any) -> TTLCache:
        return self.register(TTLCache(namespace, **kwargs))

    def sweep_all(self) -> int:
        return sum(cache.sweep() for cache in list(self._caches.values()))

    def clear_all(self) -> dict[str, int]:
        return {name: cache.clear() for name, cache in list(self._caches.items())}

    def stats(self) -> dict[str, dict[str, Any]]:
        return {name: cache.stats() for name, cache in list(self._caches.items())}


def content_cache_key(value: Any) -> str:
    """Deterministic content address for arbitrary JSON-ish input.

    Strings hash as-is; everything else hashes its canonical JSON form, so
    dicts with the same items but different insertion order share a key.
    """
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return "segment_" + hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]
