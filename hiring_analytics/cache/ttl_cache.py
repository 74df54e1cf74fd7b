"""Process-local key/value cache with per-entry TTL and substring invalidation."""

import hashlib
import json
import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from hiring_analytics.core.schemas import AnalyticsQuery, CacheStats

logger = logging.getLogger(__name__)

# Field order is fixed so equal queries hash identically.
_FINGERPRINT_FIELDS = (
    "start_date",
    "end_date",
    "company_id",
    "job_variant_id",
    "granularity",
    "source",
)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    written_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now > self.written_at + self.ttl


class TTLCache:
    """Thread-safe TTL map with a size bound.

    Entries are never persisted. ``get`` evicts an expired entry on access.
    ``set`` sweeps every expired entry once the earliest expiry has passed,
    and drops the oldest write when the map is full. ``cleanup`` runs the
    same sweep on demand.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        max_size: int = 1000,
    ) -> None:
        if max_size < 1:
            msg = f"max_size must be at least 1, got {max_size}"
            raise ValueError(msg)
        self._default_ttl = default_ttl
        self._clock = clock
        self._max_size = max_size
        self._entries: dict[str, CacheEntry] = {}
        # Lower bound on the earliest expiry; may be stale after deletes.
        self._next_expiry = math.inf
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("Cache miss for key: %s", key)
                return None
            if entry.expired(self._clock()):
                logger.debug("Cache expired for key: %s", key)
                del self._entries[key]
                return None
        logger.debug("Cache hit for key: %s", key)
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        now = self._clock()
        entry = CacheEntry(key=key, value=value, written_at=now, ttl=ttl)
        with self._lock:
            if now > self._next_expiry:
                self._sweep(now)
            # Re-inserting moves the key to the end of the write order.
            self._entries.pop(key, None)
            if len(self._entries) >= self._max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.debug("Cache full; evicted key: %s", oldest)
            self._entries[key] = entry
            self._next_expiry = min(self._next_expiry, now + ttl)
        logger.debug("Cached key: %s (ttl %.0fs)", key, ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._next_expiry = math.inf
        logger.info("Cleared %d cache entries", count)
        return count

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key containing ``pattern``. Returns the number removed."""
        with self._lock:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
        logger.info("Invalidated %d cache entries matching '%s'", len(doomed), pattern)
        return len(doomed)

    def cleanup(self) -> int:
        """Drop all expired entries. Returns the number removed."""
        with self._lock:
            removed = self._sweep(self._clock())
        if removed:
            logger.info("Cleaned up %d expired cache entries", removed)
        return removed

    def stats(self) -> CacheStats:
        with self._lock:
            keys = sorted(self._entries)
        return CacheStats(size=len(keys), keys=keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep(self, now: float) -> int:
        # Caller holds self._lock.
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        self._next_expiry = min(
            (entry.written_at + entry.ttl for entry in self._entries.values()),
            default=math.inf,
        )
        return len(expired)


def query_fingerprint(query: AnalyticsQuery) -> str:
    """Stable hash of the query's filter values."""
    data = query.model_dump(mode="json")
    payload = json.dumps([data[name] for name in _FINGERPRINT_FIELDS], separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


def cache_key(kind: str, query: AnalyticsQuery) -> str:
    """Build ``analytics:<kind>:company:<id>:job:<id>:<hash>``.

    The company and job segments make tenant-scoped pattern invalidation work;
    ``*`` marks an unscoped dimension.
    """
    company = query.company_id or "*"
    job = query.job_variant_id or "*"
    return f"analytics:{kind}:company:{company}:job:{job}:{query_fingerprint(query)}"
