"""Analytics-specific cache facade.

Wraps a ``TTLCache`` with query-derived keys and per-family TTLs. Cache
failures are logged and treated as misses; they never reach the caller.
"""

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from hiring_analytics.cache.ttl_cache import TTLCache, cache_key
from hiring_analytics.core.config import CacheConfig
from hiring_analytics.core.schemas import AnalyticsQuery, CacheStats

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheKind(str, Enum):
    SUMMARY = "summary"
    TIME_TO_FILL = "time-to-fill"
    CONVERSION_RATES = "conversion-rates"
    BOTTLENECKS = "bottlenecks"
    STAGE_PERFORMANCE = "stage-performance"
    SOURCE_PERFORMANCE = "source-performance"
    TOP_SOURCES = "top-sources"
    DIVERSITY = "diversity"
    BIAS_INDICATORS = "bias-indicators"
    DASHBOARD = "dashboard"


class AnalyticsCache:
    """Fetch-or-compute cache in front of the query engine."""

    def __init__(self, cache: TTLCache | None = None, config: CacheConfig | None = None) -> None:
        self._config = config or CacheConfig()
        if cache is None:
            cache = TTLCache(
                default_ttl=self._config.default_ttl_seconds,
                max_size=self._config.max_entries,
            )
        self._cache = cache

    def get(self, kind: CacheKind, query: AnalyticsQuery) -> Any | None:
        try:
            return self._cache.get(cache_key(kind.value, query))
        except Exception:
            logger.warning("Cache read failed for %s; treating as miss", kind.value, exc_info=True)
            return None

    def set(self, kind: CacheKind, query: AnalyticsQuery, value: Any) -> None:
        try:
            self._cache.set(cache_key(kind.value, query), value, self._ttl_for(kind))
        except Exception:
            logger.warning("Cache write failed for %s; dropping entry", kind.value, exc_info=True)

    def get_or_compute(self, kind: CacheKind, query: AnalyticsQuery, compute: Callable[[], T]) -> T:
        """Return the cached value or compute, cache and return it.

        Concurrent misses on the same key may each compute; the last write wins.
        """
        cached = self.get(kind, query)
        if cached is not None:
            return cached  # type: ignore[no-any-return]
        value = compute()
        self.set(kind, query, value)
        return value

    def invalidate_company(self, company_id: str) -> int:
        return self._invalidate(f"company:{company_id}:")

    def invalidate_job_variant(self, job_variant_id: str) -> int:
        return self._invalidate(f"job:{job_variant_id}:")

    def invalidate_all(self) -> int:
        return self._invalidate("analytics:")

    def clear(self) -> int:
        try:
            return self._cache.clear()
        except Exception:
            logger.warning("Cache clear failed", exc_info=True)
            return 0

    def cleanup(self) -> int:
        try:
            return self._cache.cleanup()
        except Exception:
            logger.warning("Cache cleanup failed", exc_info=True)
            return 0

    def stats(self) -> CacheStats:
        try:
            return self._cache.stats()
        except Exception:
            logger.warning("Cache stats failed", exc_info=True)
            return CacheStats(size=0, keys=[])

    def _invalidate(self, pattern: str) -> int:
        try:
            return self._cache.invalidate_pattern(pattern)
        except Exception:
            logger.warning("Cache invalidation failed for '%s'", pattern, exc_info=True)
            return 0

    def _ttl_for(self, kind: CacheKind) -> float:
        if kind is CacheKind.DASHBOARD:
            return self._config.dashboard_ttl_seconds
        return self._config.default_ttl_seconds
