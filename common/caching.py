"""
In-memory caching for read-mostly lookups (templates, provider checks).
"""
from typing import Optional, Dict, Any
import threading


class SimpleCache:
    """Thread-safe in-memory cache. Entries live until evicted or cleared."""

    def __init__(self, max_size: int = 100):
        self._cache: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self.max_size = max_size
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Get item from cache."""
        with self._lock:
            if key in self._cache:
                self.hits += 1
                return self._cache[key]
            self.misses += 1
            return None

    def set(self, key: str, value: Any):
        """Set item in cache with FIFO eviction."""
        with self._lock:
            if len(self._cache) >= self.max_size and key not in self._cache:
                first_key = next(iter(self._cache))
                del self._cache[first_key]
            self._cache[key] = value

    def delete(self, key: str) -> bool:
        """Remove one item; returns whether it was present."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self):
        """Clear all cache."""
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
