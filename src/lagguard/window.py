"""Bounded observation window with per-key counts.

Records "this key was seen during an overload moment". Capacity is shared
by every key; once full, each new observation evicts the oldest one.
"""

from __future__ import annotations

import threading
from collections import deque


class ObservationWindow:
    """Fixed-capacity FIFO of keys with O(1) per-key and total counts.

    Thread-safe. The deque, the count map and the total change together
    under one lock, so ``sum(counts) == total <= capacity`` always holds.
    """

    def __init__(self, capacity: int = 500) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._keys: deque[str] = deque()
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total(self) -> int:
        """Number of observations currently held."""
        with self._lock:
            return len(self._keys)

    def record(self, key: str) -> None:
        """Append ``key``, evicting the oldest observation when full."""
        with self._lock:
            self._keys.append(key)
            self._counts[key] = self._counts.get(key, 0) + 1
            if len(self._keys) > self._capacity:
                oldest = self._keys.popleft()
                remaining = self._counts[oldest] - 1
                if remaining:
                    self._counts[oldest] = remaining
                else:
                    del self._counts[oldest]

    def count(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def ratio(self, key: str) -> float:
        """Share of held observations belonging to ``key`` (0 when empty)."""
        with self._lock:
            total = len(self._keys)
            if total == 0:
                return 0.0
            return self._counts.get(key, 0) / total

    def counts(self) -> dict[str, int]:
        """Copy of the per-key count map."""
        with self._lock:
            return dict(self._counts)

    def stats(self, key: str) -> tuple[int, float]:
        """Return ``(total, ratio(key))`` read under a single lock."""
        with self._lock:
            total = len(self._keys)
            if total == 0:
                return 0, 0.0
            return total, self._counts.get(key, 0) / total

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()
            self._counts.clear()

    def __len__(self) -> int:
        return self.total
