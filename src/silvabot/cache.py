"""Bounded retention caches used by the auxiliary handlers."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Iterator


class RetentionCache[K, V]:
    """Insertion-ordered map with a size cap and an optional age limit.

    Overflow evicts the oldest entries first. Age-based eviction happens in
    ``prune()``, which callers run after inserting.
    """

    def __init__(
        self,
        max_entries: int,
        *,
        max_age: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.max_age = max_age
        self._clock = clock
        self._items: OrderedDict[K, tuple[float, V]] = OrderedDict()

    def put(self, key: K, value: V) -> None:
        if key in self._items:
            del self._items[key]
        self._items[key] = (self._clock(), value)
        while len(self._items) > self.max_entries:
            self._items.popitem(last=False)

    def add(self, key: K, value: V) -> bool:
        """Insert only if absent. Returns False when ``key`` was already present."""
        if key in self._items:
            return False
        self.put(key, value)
        return True

    def get(self, key: K, default: V | None = None) -> V | None:
        entry = self._items.get(key)
        return entry[1] if entry is not None else default

    def pop(self, key: K, default: V | None = None) -> V | None:
        entry = self._items.pop(key, None)
        return entry[1] if entry is not None else default

    def prune(self) -> int:
        """Drop entries older than ``max_age``. Returns how many were removed."""
        if self.max_age is None:
            return 0
        cutoff = self._clock() - self.max_age
        removed = 0
        while self._items:
            oldest_key = next(iter(self._items))
            stored_at, _ = self._items[oldest_key]
            if stored_at > cutoff:
                break
            del self._items[oldest_key]
            removed += 1
        return removed

    def clear(self) -> None:
        self._items.clear()

    def keys(self) -> list[K]:
        return list(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._items))
