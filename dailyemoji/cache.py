"""
In-memory TTL cache for derived leaderboard views.
Entries are recomputable from the database, so a miss is always safe.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import settings


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class MemoryCache:
    """Thread-safe in-memory cache with TTL support"""

    def __init__(self):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if time.time() > entry.expires_at:
                del self._cache[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._cache[key] = CacheEntry(value=value, expires_at=time.time() + ttl_seconds)

    def delete_prefix(self, prefix: str) -> int:
        """Drop every key starting with prefix, return how many were dropped"""
        with self._lock:
            doomed = [k for k in self._cache if k.startswith(prefix)]
            for k in doomed:
                del self._cache[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_cache = MemoryCache()

# bumped on every finalize; a view computed under an older generation is not stored
_generations: Dict[int, int] = {}
_gen_lock = threading.Lock()


def get_cache() -> MemoryCache:
    return _cache


def _prefix(puzzle_id: int) -> str:
    return f"puzzle:{puzzle_id}:"


def puzzle_generation(puzzle_id: int) -> int:
    with _gen_lock:
        return _generations.get(puzzle_id, 0)


def _set_if_current(puzzle_id: int, generation: int, key: str, value: Any) -> bool:
    with _gen_lock:
        if _generations.get(puzzle_id, 0) != generation:
            return False
        _cache.set(key, value, settings.LEADERBOARD_CACHE_SECONDS)
        return True


def cache_leaderboard(puzzle_id: int, limit: int, entries: list, generation: int) -> bool:
    """Store a top-N view read under `generation`. Dropped if a finalize happened since."""
    return _set_if_current(puzzle_id, generation, f"{_prefix(puzzle_id)}top:{limit}", entries)


def get_cached_leaderboard(puzzle_id: int, limit: int) -> Optional[list]:
    return _cache.get(f"{_prefix(puzzle_id)}top:{limit}")


def cache_stats(puzzle_id: int, stats: Any, generation: int) -> bool:
    return _set_if_current(puzzle_id, generation, f"{_prefix(puzzle_id)}stats", stats)


def get_cached_stats(puzzle_id: int) -> Optional[Any]:
    return _cache.get(f"{_prefix(puzzle_id)}stats")


def invalidate_puzzle_views(puzzle_id: int) -> None:
    """Called whenever a play for this puzzle is finalized"""
    with _gen_lock:
        _generations[puzzle_id] = _generations.get(puzzle_id, 0) + 1
        _cache.delete_prefix(_prefix(puzzle_id))
