"""
Tiered cache for OpenSky responses.

Every enrichment attempt asks the cache before spending quota on the
OpenSky API. Two tiers:

1. In-process: a bounded dict guarded by an RLock, answering repeat
   lookups without a database round trip.
2. Persisted: the ``opensky_cache`` table, shared by every process and
   surviving restarts.

Writes go through both tiers. The tiers are only eventually consistent:
another process may have refreshed a row that this process still holds
as stale, which is why a stale in-process entry always falls through
to the database before being used.

Reads never delete. A stale entry is still returned (``fresh=False``) so
the enrichment worker can fall back on it when the quota is exhausted.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Callable

from spotterlog.config import config
from spotterlog.repositories import OpenSkyCacheRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheLookup:
    """Result of :meth:`ResponseCache.get`."""
    hit: bool
    value: Optional[str] = None
    fresh: bool = False

    @property
    def stale(self) -> bool:
        return self.hit and not self.fresh


MISS = CacheLookup(hit=False)


@dataclass
class _MemoryEntry:
    value: str
    expires_at: float
    cached_at: float = field(default_factory=time.time)


class ResponseCache:
    """
    Thread-safe two-tier response cache with a fixed TTL.

    Concurrent ``put`` calls for the same key resolve as last write wins.
    """

    def __init__(
        self,
        repository: Optional[OpenSkyCacheRepository] = None,
        ttl_seconds: Optional[float] = None,
        max_memory_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository or OpenSkyCacheRepository()
        self.ttl_seconds = ttl_seconds or config.cache.ttl_seconds
        self.max_memory_entries = max_memory_entries or config.cache.max_memory_entries
        self._clock = clock

        self._memory: Dict[str, _MemoryEntry] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0

    def get(self, key: str) -> CacheLookup:
        """
        Look up ``key``.

        Returns ``MISS`` when neither tier has the key, otherwise the
        payload with ``fresh = now < expires_at``.
        """
        now = self._clock()

        with self._lock:
            entry = self._memory.get(key)
        if entry is not None and now < entry.expires_at:
            return self._record(CacheLookup(hit=True, value=entry.value, fresh=True))

        row = self.repository.find_by_hash(key)
        if row is not None:
            # Promote; the persisted row is at least as new as the memory copy
            self._remember(key, row.response, row.expires_at)
            return self._record(CacheLookup(hit=True, value=row.response, fresh=now < row.expires_at))

        if entry is not None:
            return self._record(CacheLookup(hit=True, value=entry.value, fresh=False))

        return self._record(MISS)

    def put(self, key: str, value: str) -> float:
        """Store ``value`` under ``key`` for the cache TTL. Returns the expiry timestamp."""
        expires_at = self._clock() + self.ttl_seconds
        self.repository.upsert(key, value, expires_at)
        self._remember(key, value, expires_at)
        logger.debug(f'Cached response {key} (TTL {self.ttl_seconds}s)')
        return expires_at

    def _remember(self, key: str, value: str, expires_at: float) -> None:
        with self._lock:
            self._memory[key] = _MemoryEntry(value=value, expires_at=expires_at, cached_at=self._clock())
            if len(self._memory) > self.max_memory_entries:
                self._evict_oldest()

    def _evict_oldest(self) -> None:
        """Remove the oldest 10% of in-process entries. The database tier keeps them."""
        entries = sorted(self._memory.items(), key=lambda x: x[1].cached_at)
        to_remove = max(1, len(entries) // 10)
        for key, _ in entries[:to_remove]:
            del self._memory[key]

    def _record(self, lookup: CacheLookup) -> CacheLookup:
        with self._lock:
            if not lookup.hit:
                self._misses += 1
            elif lookup.fresh:
                self._hits += 1
            else:
                self._stale_hits += 1
        return lookup

    def clear_memory(self) -> None:
        """Drop the in-process tier."""
        with self._lock:
            self._memory.clear()

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            lookups = self._hits + self._stale_hits + self._misses
            return {
                'memory_entries': len(self._memory),
                'hits': self._hits,
                'stale_hits': self._stale_hits,
                'misses': self._misses,
                'hit_rate': self._hits / lookups if lookups > 0 else 0,
                'ttl_seconds': self.ttl_seconds,
            }
