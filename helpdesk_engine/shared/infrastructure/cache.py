"""
Read Cache
==========

Bounded in-memory cache backing the resilient store's degradation path.

Entries are never evicted on expiry: an expired entry is still useful as a
degraded answer while the backing store is down. Capacity is enforced with
least-recently-used eviction instead.
"""

import copy
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional


@dataclass(frozen=True)
class CacheEntry:
    """A cached read result."""
    key: str
    value: Any
    stored_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at <= self.ttl

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)


def make_cache_key(prefix: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build a deterministic key from an operation name and its arguments.

    Example:
        make_cache_key("tickets:open", {"limit": 10, "offset": 0})
        # "tickets:open:limit=10|offset=0"
    """
    if not params:
        return prefix
    parts = "|".join(f"{name}={params[name]}" for name in sorted(params))
    return f"{prefix}:{parts}"


class TTLCache:
    """LRU-bounded cache whose entries carry their own TTL."""

    def __init__(
        self,
        default_ttl: float = 300.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        # Snapshot so later mutation by the caller cannot leak into the cache.
        entry = CacheEntry(
            key=key,
            value=copy.deepcopy(value),
            stored_at=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
        )
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the entry regardless of freshness (None when absent)."""
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def get(self, key: str) -> Optional[Any]:
        """Return a copy of the value only while the entry is fresh."""
        entry = self.get_entry(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return copy.deepcopy(entry.value)

    def is_fresh(self, entry: CacheEntry) -> bool:
        return entry.is_fresh(self._clock())

    def age(self, entry: CacheEntry) -> float:
        return entry.age(self._clock())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix. Returns the count."""
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def stats(self) -> dict:
        now = self._clock()
        fresh = sum(1 for entry in self._entries.values() if entry.is_fresh(now))
        return {
            "size": len(self._entries),
            "fresh": fresh,
            "stale": len(self._entries) - fresh,
            "max_entries": self._max_entries,
        }
