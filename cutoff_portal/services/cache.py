from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

"""Parse cache for the on-demand query path.

Keyed by (category, year, round). An entry older than ttl_seconds reads as a
miss. Expired entries are swept on every put, and the oldest entries are
evicted once more than max_entries are held.
"""

__all__ = [
    "ParseCache",
]

CacheKey = tuple[str, int, str]


class ParseCache:
    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, Any]] = OrderedDict()

    @staticmethod
    def _key(category: str, year: int | str, round: str) -> CacheKey:
        return str(category).upper(), int(year), str(round).upper()

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at >= self.ttl_seconds

    def get(self, category: str, year: int | str, round: str) -> Any | None:
        entry = self._entries.get(self._key(category, year, round))
        if entry is None:
            return None
        stored_at, value = entry
        if self._expired(stored_at, self._clock()):
            return None
        return value

    def put(self, category: str, year: int | str, round: str, value: Any) -> None:
        key = self._key(category, year, round)
        self._entries.pop(key, None)
        self._entries[key] = (self._clock(), value)
        self.sweep()
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        stale = [k for k, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 3:
            return False
        return self.get(*key) is not None
