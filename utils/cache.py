"""
Bounded TTL cache used for token counts.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Tuple, Any, Optional


class TTLCache:
    """
    Insertion-ordered TTL cache with a hard size bound.

    - Entries expire `ttl_seconds` after insertion and are dropped lazily on lookup.
    - Inserting a new key into a full cache first evicts the oldest ~10% of entries
      (by insertion order), so len(cache) never exceeds max_size.
    - `clock` is injectable so tests can move time forward.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_size: int = 10000,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock

    @property
    def max_size(self) -> int:
        return self._max_size

    def get(self, key: str) -> Optional[Any]:
        """Get cached value if not expired."""
        if key not in self._cache:
            return None
        timestamp, value = self._cache[key]
        if self._clock() - timestamp > self._ttl:
            del self._cache[key]
            return None
        return value

    def set(self, key: str, value: Any):
        """Cache a value with TTL, evicting the oldest entries when full."""
        if key not in self._cache and len(self._cache) >= self._max_size:
            self._evict_oldest()
        self._cache[key] = (self._clock(), value)

    def _evict_oldest(self):
        count = max(1, self._max_size // 10)
        # dicts keep insertion order
        for key in list(self._cache)[:count]:
            del self._cache[key]

    def invalidate(self, key: Optional[str] = None):
        """Invalidate specific key or entire cache."""
        if key:
            self._cache.pop(key, None)
        else:
            self._cache.clear()

    def size(self) -> int:
        return len(self._cache)

    def __len__(self) -> int:
        return len(self._cache)
