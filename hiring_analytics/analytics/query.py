"""Query engine: answers analytics questions from stored metric rows.

Most questions read pre-aggregated rows from the metrics store. A few
(``calculate_*``, ``get_stage_performance``) recompute directly from raw
records for on-demand drill-downs. With no matching data every method
returns a zero / empty result rather than raising.
"""

import logging
from datetime import date, timedelta

from hiring_analytics.analytics.aggregation import DEMOGRAPHIC_AXES, demographic_labels
from hiring_analytics.analytics.statistics import (
    days_between,
    group_hire_counts,
    hire_rate_disparity,
    mean,
    median,
    merge_counts,
    period_start,
    rate,
    shannon_diversity_index,
)
from hiring_analytics.core.config import Settings
from hiring_analytics.core.metrics_store import MetricsStore
from hiring_analytics.core.schemas import (
    GENDER_CATEGORIES,
    UNKNOWN,
    AnalyticsQuery,
    AnalyticsSummary,
    ApplicationStatus,
    BiasIndicators,
    CategoryBalance,
    ConversionRates,
    DateRange,
    DiversityAnalytics,
    PipelineBottleneck,
    PipelineMetricsRow,
    SourceAnalytics,
    SourcePerformanceRow,
    StagePerformance,
    TimeToFillMetrics,
    TrendData,
    TrendPoint,
)
from hiring_analytics.records.base import RecordSource

logger = logging.getLogger(__name__)


class QueryEngine:
    """Reads and combines metric rows into dashboard-ready answers."""

    def __init__(
        self,
        store: MetricsStore,
        records: RecordSource,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._records = records
        self._settings = settings or Settings()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def get_analytics_summary(self, query: AnalyticsQuery) -> AnalyticsSummary:
        logger.info("Getting analytics summary for %s", query.model_dump(mode="json"))
        rows = self._pipeline_rows(query)
        end = query.end_date or date.today()
        start = query.start_date or end - timedelta(days=self._settings.reporting.default_window_days)
        return AnalyticsSummary(
            time_to_fill=_time_to_fill(rows),
            conversion_rates=_conversion_rates(rows),
            bottlenecks=self._bottlenecks(rows),
            total_applications=sum(r.total_applications for r in rows),
            total_hires=sum(r.candidates_hired for r in rows),
            active_positions=self._active_positions(query),
            date_range=DateRange(start_date=start, end_date=end),
        )

    def get_time_to_fill_metrics(self, query: AnalyticsQuery) -> TimeToFillMetrics:
        """Time-to-fill statistics over per-row averages (an average of averages)."""
        logger.info("Getting time-to-fill metrics for %s", query.model_dump(mode="json"))
        return _time_to_fill(self._pipeline_rows(query))

    def get_conversion_rates(self, query: AnalyticsQuery) -> ConversionRates:
        logger.info("Getting conversion rates for %s", query.model_dump(mode="json"))
        return _conversion_rates(self._pipeline_rows(query))

    def get_bottlenecks(self, query: AnalyticsQuery) -> list[PipelineBottleneck]:
        """All six funnel stages, highest drop-off first."""
        logger.info("Identifying pipeline bottlenecks for %s", query.model_dump(mode="json"))
        return self._bottlenecks(self._pipeline_rows(query))

    def get_stage_performance(self, query: AnalyticsQuery) -> list[StagePerformance]:
        """Per target stage: transitions recorded and mean days since application."""
        logger.info("Getting stage performance for %s", query.model_dump(mode="json"))
        applications = self._records.fetch_applications(
            company_id=query.company_id,
            job_variant_id=query.job_variant_id,
            date_from=query.start_date,
            date_to=query.end_date,
        )
        if not applications:
            return []

        by_id = {app.id: app for app in applications}
        samples: dict[ApplicationStatus, list[float]] = {}
        for transition in self._records.fetch_stage_history(list(by_id)):
            applied_at = by_id[transition.application_id].applied_at
            samples.setdefault(transition.to_stage, []).append(
                days_between(applied_at, transition.changed_at)
            )

        stage_order = list(ApplicationStatus)
        return [
            StagePerformance(
                stage=stage,
                total_candidates=len(values),
                average_time_in_stage=mean(values) or 0.0,
            )
            for stage, values in sorted(samples.items(), key=lambda kv: stage_order.index(kv[0]))
        ]

    def calculate_time_to_fill(self, company_id: str, job_variant_id: str | None = None) -> float:
        """Mean days from application to hire, recomputed from raw applications."""
        hired = self._records.fetch_applications(
            company_id=company_id,
            job_variant_id=job_variant_id,
            status=ApplicationStatus.HIRED,
        )
        return mean([days_between(a.applied_at, a.last_updated) for a in hired]) or 0.0

    def get_trend_data(self, query: AnalyticsQuery, days: int | None = None) -> TrendData:
        """Applications, hires and mean time-to-fill per period of the query's granularity."""
        end = query.end_date or date.today()
        start = query.start_date or end - timedelta(days=days or self._settings.reporting.trend_days)
        rows = self._store.query_pipeline(query.company_id, query.job_variant_id, start, end)

        applications: dict[date, float] = {}
        hires: dict[date, float] = {}
        fill_samples: dict[date, list[float]] = {}
        for row in rows:
            period = period_start(row.date_bucket, query.granularity)
            applications[period] = applications.get(period, 0) + row.total_applications
            hires[period] = hires.get(period, 0) + row.candidates_hired
            if row.avg_time_to_fill_days is not None:
                fill_samples.setdefault(period, []).append(row.avg_time_to_fill_days)

        return TrendData(
            applications=[TrendPoint(period=p, value=v) for p, v in applications.items()],
            hires=[TrendPoint(period=p, value=v) for p, v in hires.items()],
            time_to_fill=[
                TrendPoint(period=p, value=mean(v) or 0.0) for p, v in fill_samples.items()
            ],
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def get_source_performance(self, query: AnalyticsQuery) -> list[SourceAnalytics]:
        """Per-source totals recomputed from summed rows, best conversion first."""
        logger.info("Getting source performance for %s", query.model_dump(mode="json"))
        rows = self._store.query_source(
            query.company_id, query.source, query.start_date, query.end_date,
        )
        grouped: dict[str, list[SourcePerformanceRow]] = {}
        for row in rows:
            grouped.setdefault(row.source, []).append(row)

        results = [_source_analytics(source, group) for source, group in grouped.items()]
        results.sort(key=lambda s: s.conversion_rate, reverse=True)
        return results

    def get_top_performing_sources(self, company_id: str, limit: int | None = 5) -> list[SourceAnalytics]:
        """Sources with the best ROI; sources without a cost rank last. ``limit=None`` keeps all."""
        ranked = self.get_source_performance(AnalyticsQuery(company_id=company_id))
        ranked.sort(key=lambda s: s.roi if s.roi is not None else float("-inf"), reverse=True)
        return ranked if limit is None else ranked[:limit]

    def calculate_source_conversion_rates(self, company_id: str) -> dict[str, float]:
        """Source → % of the company's candidates with any hired application."""
        candidates: dict[str, tuple[str, bool]] = {}
        for record in self._records.fetch_applicants(company_id=company_id):
            source = (record.candidate.source if record.candidate else None) or UNKNOWN
            _, already_hired = candidates.get(record.application.candidate_id, (source, False))
            hired = already_hired or record.application.status is ApplicationStatus.HIRED
            candidates[record.application.candidate_id] = (source, hired)

        grouped = group_hire_counts(candidates.values())
        return {source: rate(hires, total) for source, (total, hires) in grouped.items()}

    def calculate_source_quality_score(self, source: str, company_id: str) -> float:
        """Mean fit score of the company's applications from ``source``."""
        scores = [
            record.application.fit_score or 0.0
            for record in self._records.fetch_applicants(company_id=company_id)
            if record.candidate is not None and record.candidate.source == source
        ]
        return mean(scores) or 0.0

    # ------------------------------------------------------------------
    # Diversity
    # ------------------------------------------------------------------

    def get_diversity_analytics(self, query: AnalyticsQuery) -> DiversityAnalytics:
        logger.info("Getting diversity analytics for %s", query.model_dump(mode="json"))
        rows = self._store.query_diversity(
            query.company_id, query.job_variant_id, query.start_date, query.end_date,
        )
        if not rows:
            return DiversityAnalytics()

        applicants: dict[str, dict[str, int]] = {axis: {} for axis in DEMOGRAPHIC_AXES}
        hired: dict[str, dict[str, int]] = {axis: {} for axis in DEMOGRAPHIC_AXES}
        bias_sums = dict.fromkeys(DEMOGRAPHIC_AXES, 0.0)
        total_applicants = 0

        for row in rows:
            total_applicants += row.total_applicants
            merge_counts(applicants["gender"], row.gender_distribution)
            merge_counts(applicants["ethnicity"], row.ethnicity_distribution)
            merge_counts(applicants["age"], row.age_distribution)
            merge_counts(applicants["education"], row.education_distribution)
            for axis in DEMOGRAPHIC_AXES:
                merge_counts(hired[axis], getattr(row.hired_diversity, axis))
                bias_sums[axis] += getattr(row.bias_indicators, f"{axis}_bias")

        bias = {axis: total / len(rows) for axis, total in bias_sums.items()}
        balances = {
            axis: CategoryBalance(applicants=applicants[axis], hired=hired[axis], bias=bias[axis])
            for axis in DEMOGRAPHIC_AXES
        }
        return DiversityAnalytics(
            total_applicants=total_applicants,
            total_hired=sum(hired["gender"].values()),
            diversity_index=shannon_diversity_index(applicants["gender"], len(GENDER_CATEGORIES)),
            gender_balance=balances["gender"],
            ethnicity_balance=balances["ethnicity"],
            age_balance=balances["age"],
            education_balance=balances["education"],
            bias_alerts=self._bias_alerts(bias),
        )

    def calculate_bias_indicators(
        self,
        company_id: str,
        job_variant_id: str | None = None,
    ) -> BiasIndicators:
        """Hire-rate disparity per demographic axis, recomputed from raw applications."""
        logger.info("Calculating bias indicators for company %s, job %s", company_id, job_variant_id)
        records = self._records.fetch_applicants(company_id=company_id, job_variant_id=job_variant_id)
        if not records:
            return BiasIndicators()

        labelled: dict[str, list[tuple[str, bool]]] = {axis: [] for axis in DEMOGRAPHIC_AXES}
        for record in records:
            was_hired = record.application.status is ApplicationStatus.HIRED
            for axis, label in demographic_labels(record).items():
                labelled[axis].append((label, was_hired))

        disparity = {axis: hire_rate_disparity(group_hire_counts(pairs)) for axis, pairs in labelled.items()}
        return BiasIndicators(
            gender_bias=disparity["gender"],
            ethnicity_bias=disparity["ethnicity"],
            age_bias=disparity["age"],
            education_bias=disparity["education"],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pipeline_rows(self, query: AnalyticsQuery) -> list[PipelineMetricsRow]:
        return self._store.query_pipeline(
            query.company_id, query.job_variant_id, query.start_date, query.end_date,
        )

    def _active_positions(self, query: AnalyticsQuery) -> int:
        variants = self._records.list_job_variants(query.company_id)
        if query.job_variant_id is not None:
            variants = [v for v in variants if v.id == query.job_variant_id]
        return sum(1 for v in variants if v.is_active)

    def _bottlenecks(self, rows: list[PipelineMetricsRow]) -> list[PipelineBottleneck]:
        config = self._settings.bottlenecks
        total = sum(r.total_applications for r in rows)
        screened = sum(r.applications_screened for r in rows)
        shortlisted = sum(r.applications_shortlisted for r in rows)
        scheduled = sum(r.interviews_scheduled for r in rows)
        completed = sum(r.interviews_completed for r in rows)
        offered = sum(r.offers_extended for r in rows)
        hired = sum(r.candidates_hired for r in rows)

        to_screen = _mean_of(r.avg_time_to_screen_days for r in rows)
        to_interview = _mean_of(r.avg_time_to_interview_days for r in rows)
        to_offer = _mean_of(r.avg_time_to_offer_days for r in rows)

        # (stage, in stage, reached next stage, average days in stage)
        stages = [
            (ApplicationStatus.APPLIED, total, screened, 0.0),
            (ApplicationStatus.SCREENING, screened, shortlisted, to_screen),
            (ApplicationStatus.SHORTLISTED, shortlisted, scheduled, to_interview),
            (ApplicationStatus.INTERVIEW_SCHEDULED, scheduled, completed, config.interview_turnaround_days),
            (ApplicationStatus.INTERVIEW_COMPLETED, completed, offered, to_offer),
            (ApplicationStatus.OFFER_EXTENDED, offered, hired, config.offer_response_days),
        ]

        bottlenecks = []
        for stage, current, following, avg_time in stages:
            drop_off = (current - following) / current * 100 if current > 0 else 0.0
            bottlenecks.append(PipelineBottleneck(
                stage=stage,
                drop_off_rate=drop_off,
                average_time_in_stage=avg_time,
                candidates_in_stage=current,
                is_bottleneck=drop_off > config.drop_off_threshold or avg_time > config.max_days_in_stage,
            ))
        # Stable sort keeps funnel order among equal drop-off rates.
        bottlenecks.sort(key=lambda b: b.drop_off_rate, reverse=True)
        return bottlenecks

    def _bias_alerts(self, bias: dict[str, float]) -> list[str]:
        thresholds = self._settings.diversity_alerts
        alerts = []
        for axis in DEMOGRAPHIC_AXES:
            value = bias[axis]
            if abs(value) > getattr(thresholds, axis):
                alerts.append(f"{axis.capitalize()} bias detected: {value * 100:.1f}%")
        return alerts


def _mean_of(values) -> float:  # type: ignore[no-untyped-def]
    return mean([v for v in values if v is not None]) or 0.0


def _time_to_fill(rows: list[PipelineMetricsRow]) -> TimeToFillMetrics:
    if not rows:
        return TimeToFillMetrics()

    averages = sorted(r.avg_time_to_fill_days for r in rows if r.avg_time_to_fill_days is not None)
    total = sum(r.total_applications for r in rows)
    filled = sum(r.candidates_hired for r in rows)
    return TimeToFillMetrics(
        average_days=mean(averages) or 0.0,
        median_days=median(averages),
        min_days=averages[0] if averages else 0.0,
        max_days=averages[-1] if averages else 0.0,
        total_positions=total,
        filled_positions=filled,
        open_positions=total - filled,
    )


def _conversion_rates(rows: list[PipelineMetricsRow]) -> ConversionRates:
    total = sum(r.total_applications for r in rows)
    screened = sum(r.applications_screened for r in rows)
    shortlisted = sum(r.applications_shortlisted for r in rows)
    interviewed = sum(r.interviews_scheduled for r in rows)
    offered = sum(r.offers_extended for r in rows)
    hired = sum(r.candidates_hired for r in rows)
    return ConversionRates(
        application_to_screening=rate(screened, total),
        screening_to_shortlist=rate(shortlisted, screened),
        shortlist_to_interview=rate(interviewed, shortlisted),
        interview_to_offer=rate(offered, interviewed),
        offer_to_hire=rate(hired, offered),
        overall_conversion=rate(hired, total),
    )


def _source_analytics(source: str, rows: list[SourcePerformanceRow]) -> SourceAnalytics:
    total = sum(r.total_candidates for r in rows)
    qualified = sum(r.qualified_candidates for r in rows)
    interviewed = sum(r.interviewed_candidates for r in rows)
    hired = sum(r.hired_candidates for r in rows)

    conversion = rate(hired, total)
    quality = sum((r.quality_score or 0.0) * r.total_candidates for r in rows) / total if total else 0.0

    costed = [r for r in rows if r.cost_per_hire is not None]
    costed_hires = sum(r.hired_candidates for r in costed)
    if not costed:
        cost = None
    elif costed_hires > 0:
        cost = sum(r.cost_per_hire * r.hired_candidates for r in costed) / costed_hires  # type: ignore[operator]
    else:
        cost = mean([r.cost_per_hire for r in costed])  # type: ignore[misc]

    roi = quality * conversion / cost if cost else None
    return SourceAnalytics(
        source=source,
        total_candidates=total,
        qualified_candidates=qualified,
        interviewed_candidates=interviewed,
        hired_candidates=hired,
        conversion_rate=conversion,
        quality_score=quality,
        cost_per_hire=cost,
        roi=roi,
    )
