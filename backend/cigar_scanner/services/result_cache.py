"""
In-process recognition result cache.

Bounded LRU keyed by the normalized (brand, name) pair, with a TTL.
Entries are snapshots: callers get a copy, so mutating a returned
value never changes what is cached. The catalog matcher stores
verified CatalogEntry details here.

A background sweeper purges expired entries every TTL interval.
"""

import copy
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Protocol, TypeVar

from ..normalization import catalog_key, normalize_name

logger = logging.getLogger(__name__)

V = TypeVar("V")


class CacheProtocol(Protocol[V]):
    """Interface for result caches (in-process here, shared stores elsewhere)."""

    def get(self, brand: str, name: str) -> Optional[V]:
        ...

    def set(self, brand: str, name: str, result: V) -> None:
        ...

    def clear(self, brand: Optional[str] = None, name: Optional[str] = None) -> None:
        ...


@dataclass
class _CacheEntry(Generic[V]):
    result: V
    stored_at: float


class ResultCache(Generic[V]):
    """
    LRU + TTL cache of value snapshots.

    - get() on a hit moves the entry to the most-recently-used end
    - set() at capacity evicts the least-recently-used entry
    - entries older than ttl_seconds (from insertion) are treated as absent
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry[V]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def _is_expired(self, entry: _CacheEntry[V], now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    def get(self, brand: str, name: str) -> Optional[V]:
        """Return a copy of the cached result, or None if absent or expired."""
        key = catalog_key(brand, name)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            snapshot = copy.deepcopy(entry.result)
        logger.debug(f"Result cache hit: {key}")
        return snapshot

    def set(self, brand: str, name: str, result: V) -> None:
        """Store a snapshot of result, evicting the LRU entry when full."""
        key = catalog_key(brand, name)
        entry = _CacheEntry(result=copy.deepcopy(result), stored_at=self._clock())
        with self._lock:
            if key in self._entries:
                # Refreshing an existing key never evicts another entry
                self._entries[key] = entry
                self._entries.move_to_end(key)
                return
            while len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Result cache evicted: {evicted}")
            self._entries[key] = entry

    def clear(self, brand: Optional[str] = None, name: Optional[str] = None) -> None:
        """
        Remove cached entries.

        brand and name: drop that one key.
        brand only: drop every entry for the brand.
        neither: drop everything.
        """
        with self._lock:
            if brand is not None and name is not None:
                self._entries.pop(catalog_key(brand, name), None)
            elif brand is not None:
                prefix = f"{normalize_name(brand)}_"
                for key in [k for k in self._entries if k.startswith(prefix)]:
                    del self._entries[key]
            else:
                self._entries.clear()

    def clean_expired(self) -> int:
        """Purge all expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Result cache purged {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries.keys())

    def get_stats(self) -> dict:
        """Size, limits, hit counters and per-entry age in seconds."""
        now = self._clock()
        with self._lock:
            entries = [
                {"key": key, "age_seconds": round(now - entry.stored_at, 3)}
                for key, entry in self._entries.items()
            ]
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "entries": entries,
            }

    # === Background sweep ===

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Start a daemon thread calling clean_expired() every interval seconds."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        period = interval if interval is not None else self.ttl_seconds
        self._stop_event.clear()

        def _run():
            while not self._stop_event.wait(period):
                try:
                    self.clean_expired()
                except Exception as e:
                    logger.warning(f"Result cache sweep failed: {e}")

        self._sweeper = threading.Thread(target=_run, name="result-cache-sweeper", daemon=True)
        self._sweeper.start()
        logger.debug(f"Result cache sweeper started (interval={period}s)")

    def stop_sweeper(self) -> None:
        """Stop the sweeper thread if running."""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None


_cache_instance: Optional[ResultCache] = None


def get_result_cache() -> ResultCache:
    """Get the singleton result cache instance."""
    global _cache_instance
    if _cache_instance is None:
        from ..config import Config
        _cache_instance = ResultCache(
            max_size=Config.CACHE_MAX_SIZE,
            ttl_seconds=Config.CACHE_TTL_SECONDS,
        )
    return _cache_instance


def reset_result_cache() -> None:
    """Reset the singleton instance (for testing)."""
    global _cache_instance
    if _cache_instance is not None:
        _cache_instance.stop_sweeper()
    _cache_instance = None
