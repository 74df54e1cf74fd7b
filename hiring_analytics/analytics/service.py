"""Analytics service: the cached, transport-facing surface of the engine.

Every read goes through ``AnalyticsCache.get_or_compute`` keyed by the query,
so repeated dashboard requests within the TTL do not touch the metrics store.
Refreshes recompute metric rows and drop the affected cache entries.
"""

import logging
from collections.abc import Sequence
from datetime import date

from hiring_analytics.analytics.aggregation import AggregationEngine, yesterday
from hiring_analytics.analytics.query import QueryEngine
from hiring_analytics.cache.analytics_cache import AnalyticsCache, CacheKind
from hiring_analytics.core.schemas import (
    AggregationOutcome,
    AnalyticsQuery,
    AnalyticsSummary,
    BiasIndicators,
    CacheStats,
    ConversionRates,
    DiversityAnalytics,
    PipelineBottleneck,
    SourceAnalytics,
    StagePerformance,
    TimeToFillMetrics,
)

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Cached facade over the query and aggregation engines.

    Usage::

        service = AnalyticsService(query_engine, aggregation_engine, AnalyticsCache())
        rates = service.get_conversion_rates(AnalyticsQuery(company_id="acme"))
        await service.refresh_metrics("acme")
    """

    def __init__(
        self,
        queries: QueryEngine,
        aggregation: AggregationEngine,
        cache: AnalyticsCache,
    ) -> None:
        self._queries = queries
        self._aggregation = aggregation
        self._cache = cache

    @property
    def queries(self) -> QueryEngine:
        return self._queries

    @property
    def cache(self) -> AnalyticsCache:
        return self._cache

    # -- reads --------------------------------------------------------------
    # List results are copied so callers cannot mutate cached entries.

    def get_analytics_summary(self, query: AnalyticsQuery) -> AnalyticsSummary:
        return self._cache.get_or_compute(
            CacheKind.SUMMARY, query, lambda: self._queries.get_analytics_summary(query),
        )

    def get_time_to_fill_metrics(self, query: AnalyticsQuery) -> TimeToFillMetrics:
        return self._cache.get_or_compute(
            CacheKind.TIME_TO_FILL, query, lambda: self._queries.get_time_to_fill_metrics(query),
        )

    def get_conversion_rates(self, query: AnalyticsQuery) -> ConversionRates:
        return self._cache.get_or_compute(
            CacheKind.CONVERSION_RATES, query, lambda: self._queries.get_conversion_rates(query),
        )

    def get_bottlenecks(self, query: AnalyticsQuery) -> list[PipelineBottleneck]:
        return list(self._cache.get_or_compute(
            CacheKind.BOTTLENECKS, query, lambda: self._queries.get_bottlenecks(query),
        ))

    def get_stage_performance(self, query: AnalyticsQuery) -> list[StagePerformance]:
        return list(self._cache.get_or_compute(
            CacheKind.STAGE_PERFORMANCE, query, lambda: self._queries.get_stage_performance(query),
        ))

    def get_source_performance(self, query: AnalyticsQuery) -> list[SourceAnalytics]:
        return list(self._cache.get_or_compute(
            CacheKind.SOURCE_PERFORMANCE, query, lambda: self._queries.get_source_performance(query),
        ))

    def get_top_performing_sources(self, company_id: str, limit: int = 5) -> list[SourceAnalytics]:
        # The full ranking is cached so different limits share one entry.
        query = AnalyticsQuery(company_id=company_id)
        ranked = self._cache.get_or_compute(
            CacheKind.TOP_SOURCES,
            query,
            lambda: self._queries.get_top_performing_sources(company_id, limit=None),
        )
        return ranked[:limit]

    def get_diversity_analytics(self, query: AnalyticsQuery) -> DiversityAnalytics:
        return self._cache.get_or_compute(
            CacheKind.DIVERSITY, query, lambda: self._queries.get_diversity_analytics(query),
        )

    def calculate_bias_indicators(
        self,
        company_id: str,
        job_variant_id: str | None = None,
    ) -> BiasIndicators:
        query = AnalyticsQuery(company_id=company_id, job_variant_id=job_variant_id)
        return self._cache.get_or_compute(
            CacheKind.BIAS_INDICATORS,
            query,
            lambda: self._queries.calculate_bias_indicators(company_id, job_variant_id),
        )

    # -- refresh ------------------------------------------------------------

    async def refresh_metrics(self, company_id: str | None = None, date_bucket: date | None = None) -> int:
        """Recompute one bucket, then drop stale cache entries. Returns entries invalidated."""
        bucket = date_bucket or yesterday()
        logger.info("Refreshing metrics for company %s on %s", company_id or "all", bucket)
        await self._aggregation.run_all(company_id, bucket)
        if company_id is not None:
            return self._cache.invalidate_company(company_id)
        return self._cache.invalidate_all()

    def aggregate_pipeline_metrics(self, company_id: str | None = None, date_bucket: date | None = None) -> int:
        return self._aggregation.aggregate_pipeline_metrics(company_id, date_bucket)

    def aggregate_source_performance(self, company_id: str | None = None, date_bucket: date | None = None) -> int:
        return self._aggregation.aggregate_source_performance(company_id, date_bucket)

    def aggregate_diversity_metrics(self, company_id: str | None = None, date_bucket: date | None = None) -> int:
        return self._aggregation.aggregate_diversity_metrics(company_id, date_bucket)

    def run_isolated(
        self,
        company_ids: Sequence[str] | None = None,
        date_bucket: date | None = None,
    ) -> list[AggregationOutcome]:
        """Per-company aggregation; caches of companies that succeeded are invalidated."""
        outcomes = self._aggregation.run_isolated(company_ids, date_bucket)
        for outcome in outcomes:
            if outcome.succeeded:
                self._cache.invalidate_company(outcome.company_id)
        return outcomes

    # -- cache admin --------------------------------------------------------

    def clear_cache(self) -> int:
        return self._cache.clear()

    def invalidate_company(self, company_id: str) -> int:
        return self._cache.invalidate_company(company_id)

    def invalidate_job_variant(self, job_variant_id: str) -> int:
        return self._cache.invalidate_job_variant(job_variant_id)

    def cleanup_cache(self) -> int:
        return self._cache.cleanup()

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()
