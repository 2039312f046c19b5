# Minimal TTL cache for rollup views (buckets, funnels, heatmaps)
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from eips_insight.config.common_settings import ROLLUP_CACHE_TTL_SECONDS
from eips_insight.utils.logger import logger

_CACHE_MAX_SIZE = 256


class RollupCache:
    """Simple TTL cache for derived views.

    Entries are snapshots of computed rollups; they are never the source of
    truth and are simply recomputed once expired.
    """

    def __init__(self, ttl_seconds: int = ROLLUP_CACHE_TTL_SECONDS, max_size: int = _CACHE_MAX_SIZE, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _is_fresh(self, stored_at: float) -> bool:
        return self._clock() - stored_at < self.ttl_seconds

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            stored_at, value = entry
            if not self._is_fresh(stored_at):
                del self._entries[key]
                self._misses += 1
                logger.debug("RollupCache: EXPIRED %s", key)
                return None
            self._hits += 1
            return value

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                # Drop the oldest tenth of the entries
                oldest = sorted(self._entries, key=lambda k: self._entries[k][0])[: max(1, self.max_size // 10)]
                for k in oldest:
                    del self._entries[k]
            self._entries[key] = (self._clock(), value)

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Return the cached value for ``key`` or compute and store it.

        ``compute`` runs outside the lock; two concurrent misses may both
        compute, and the later one wins.
        """
        if self.ttl_seconds <= 0:
            return compute()
        cached = self.get(key)
        if cached is not None:
            logger.debug("RollupCache: HIT %s", key)
            return cached
        value = compute()
        self.put(key, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics for monitoring"""
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self.ttl_seconds,
            }
