"""Aggregation engine: folds raw recruiting records into daily metric rows.

Data flow per family:
  1. Resolve the entities in scope (job variants, companies)
  2. Fetch raw records for the date bucket
  3. Fold into counts / distributions
  4. Upsert one row per identity (idempotent: a re-run overwrites)

A failure on one entity aborts the rest of that invocation. ``run_isolated``
is the entry point for callers that want per-company isolation instead.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from pydantic import ValidationError

from hiring_analytics.analytics.statistics import (
    categorize_age,
    category_bias,
    days_between,
    mean,
    rate,
)
from hiring_analytics.core.config import AggregationConfig
from hiring_analytics.core.errors import AggregationError, AnalyticsError, UpstreamDataError
from hiring_analytics.core.metrics_store import MetricsStore
from hiring_analytics.core.schemas import (
    INTERVIEWED_STATUSES,
    UNKNOWN,
    AggregationOutcome,
    ApplicantRecord,
    Application,
    ApplicationStatus,
    BiasIndicators,
    DemographicDistributions,
    MetricIdentity,
    SourceIdentity,
)
from hiring_analytics.records.base import RecordSource

logger = logging.getLogger(__name__)

# Status → pipeline counter incremented by an application currently in that status.
STATUS_COUNTERS: dict[ApplicationStatus, str] = {
    ApplicationStatus.SCREENING: "applications_screened",
    ApplicationStatus.SHORTLISTED: "applications_shortlisted",
    ApplicationStatus.INTERVIEW_SCHEDULED: "interviews_scheduled",
    ApplicationStatus.INTERVIEW_COMPLETED: "interviews_completed",
    ApplicationStatus.OFFER_EXTENDED: "offers_extended",
    ApplicationStatus.OFFER_ACCEPTED: "offers_accepted",
    ApplicationStatus.HIRED: "candidates_hired",
    ApplicationStatus.REJECTED: "candidates_rejected",
}

# Stage whose first entry ends each timing window, measured from applied_at.
_TIMING_STAGES: dict[str, ApplicationStatus] = {
    "avg_time_to_screen_days": ApplicationStatus.SCREENING,
    "avg_time_to_interview_days": ApplicationStatus.INTERVIEW_SCHEDULED,
    "avg_time_to_offer_days": ApplicationStatus.OFFER_EXTENDED,
}

DEMOGRAPHIC_AXES = ("gender", "ethnicity", "age", "education")


def yesterday() -> date:
    return date.today() - timedelta(days=1)


@dataclass
class _SourceStats:
    total: int = 0
    qualified: int = 0
    interviewed: int = 0
    hired: int = 0
    fit_score_sum: float = 0.0


@dataclass
class _DiversityStats:
    total_applicants: int = 0
    applicants: dict[str, dict[str, int]] = field(
        default_factory=lambda: {axis: {} for axis in DEMOGRAPHIC_AXES}
    )
    hired: dict[str, dict[str, int]] = field(
        default_factory=lambda: {axis: {} for axis in DEMOGRAPHIC_AXES}
    )

    def add(self, labels: dict[str, str], was_hired: bool) -> None:
        self.total_applicants += 1
        for axis, label in labels.items():
            self.applicants[axis][label] = self.applicants[axis].get(label, 0) + 1
            if was_hired:
                self.hired[axis][label] = self.hired[axis].get(label, 0) + 1

    def to_patch(self) -> dict[str, Any]:
        bias = BiasIndicators(
            gender_bias=category_bias(self.applicants["gender"], self.hired["gender"]),
            ethnicity_bias=category_bias(self.applicants["ethnicity"], self.hired["ethnicity"]),
            age_bias=category_bias(self.applicants["age"], self.hired["age"]),
            education_bias=category_bias(self.applicants["education"], self.hired["education"]),
        )
        return {
            "total_applicants": self.total_applicants,
            "gender_distribution": self.applicants["gender"],
            "ethnicity_distribution": self.applicants["ethnicity"],
            "age_distribution": self.applicants["age"],
            "education_distribution": self.applicants["education"],
            "hired_diversity": DemographicDistributions(**self.hired),
            "bias_indicators": bias,
        }


class AggregationEngine:
    """Recomputes pipeline, source and diversity rows for one date bucket."""

    def __init__(
        self,
        records: RecordSource,
        store: MetricsStore,
        config: AggregationConfig | None = None,
    ) -> None:
        self._records = records
        self._store = store
        self._config = config or AggregationConfig()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def aggregate_pipeline_metrics(
        self,
        company_id: str | None = None,
        date_bucket: date | None = None,
    ) -> int:
        """Upsert per-job-variant rows, then company-wide rollups. Returns rows written."""
        bucket = date_bucket or yesterday()
        logger.info("Aggregating pipeline metrics for company %s on %s", company_id or "all", bucket)
        written = 0

        for variant in self._records.list_job_variants(company_id):
            with self._entity(variant.company_id, variant.id, bucket):
                applications = self._records.fetch_applications(
                    job_variant_id=variant.id, date_from=bucket, date_to=bucket,
                )
                patch = self._pipeline_patch(applications)
                self._store.upsert_pipeline(
                    MetricIdentity(variant.company_id, variant.id, bucket), patch,
                )
                written += 1

        # Rollups re-query raw records rather than summing variant rows.
        for company in self._companies(company_id):
            with self._entity(company, None, bucket):
                applications = self._records.fetch_applications(
                    company_id=company, date_from=bucket, date_to=bucket,
                )
                patch = self._pipeline_patch(applications)
                self._store.upsert_pipeline(MetricIdentity(company, None, bucket), patch)
                written += 1

        logger.info("Pipeline aggregation wrote %d rows", written)
        return written

    def _pipeline_patch(self, applications: Sequence[Application]) -> dict[str, Any]:
        patch: dict[str, Any] = {"total_applications": len(applications)}
        patch.update({counter: 0 for counter in STATUS_COUNTERS.values()})
        fill_days: list[float] = []

        for app in applications:
            counter = STATUS_COUNTERS.get(app.status)
            if counter is not None:
                patch[counter] += 1
            if app.status is ApplicationStatus.HIRED:
                fill_days.append(days_between(app.applied_at, app.last_updated))

        patch["avg_time_to_fill_days"] = mean(fill_days)
        patch.update(self._stage_timings(applications))
        return patch

    def _stage_timings(self, applications: Sequence[Application]) -> dict[str, float | None]:
        samples: dict[str, list[float]] = {name: [] for name in _TIMING_STAGES}
        if applications:
            by_id = {app.id: app for app in applications}
            first_entry: dict[tuple[str, ApplicationStatus], float] = {}
            for transition in self._records.fetch_stage_history(list(by_id)):
                key = (transition.application_id, transition.to_stage)
                if key in first_entry:
                    continue
                app = by_id[transition.application_id]
                first_entry[key] = days_between(app.applied_at, transition.changed_at)
            for name, stage in _TIMING_STAGES.items():
                samples[name] = [
                    days for (_, to_stage), days in first_entry.items() if to_stage is stage
                ]
        return {name: mean(values) for name, values in samples.items()}

    # ------------------------------------------------------------------
    # Source performance
    # ------------------------------------------------------------------

    def aggregate_source_performance(
        self,
        company_id: str | None = None,
        date_bucket: date | None = None,
    ) -> int:
        """Group candidates created on the bucket by (company, source). Returns rows written."""
        bucket = date_bucket or yesterday()
        logger.info("Aggregating source performance for company %s on %s", company_id or "all", bucket)

        with self._entity(company_id, None, bucket):
            sourced = self._records.fetch_sourced_candidates(company_id=company_id, created_on=bucket)

        stats: dict[tuple[str, str], _SourceStats] = {}
        for item in sourced:
            app = item.first_application
            company = app.company_id if app else (company_id or UNKNOWN)
            source = item.candidate.source or UNKNOWN
            entry = stats.setdefault((company, source), _SourceStats())
            entry.total += 1
            if app is None:
                continue
            entry.fit_score_sum += app.fit_score or 0.0
            if app.fit_score is not None and app.fit_score >= self._config.qualified_fit_score:
                entry.qualified += 1
            if app.status in INTERVIEWED_STATUSES:
                entry.interviewed += 1
            if app.status is ApplicationStatus.HIRED:
                entry.hired += 1

        for (company, source), entry in stats.items():
            with self._entity(company, None, bucket):
                self._store.upsert_source(
                    SourceIdentity(company, source, bucket), self._source_patch(source, entry),
                )

        logger.info("Source aggregation wrote %d rows", len(stats))
        return len(stats)

    def _source_patch(self, source: str, entry: _SourceStats) -> dict[str, Any]:
        conversion = rate(entry.hired, entry.total)
        quality = entry.fit_score_sum / entry.total if entry.total > 0 else 0.0
        cost = self._config.source_cost_per_hire.get(source)
        roi = quality * conversion / cost if cost else None
        return {
            "total_candidates": entry.total,
            "qualified_candidates": entry.qualified,
            "interviewed_candidates": entry.interviewed,
            "hired_candidates": entry.hired,
            "quality_score": quality,
            "cost_per_hire": cost,
            "conversion_rate": conversion,
            "roi": roi,
        }

    # ------------------------------------------------------------------
    # Diversity
    # ------------------------------------------------------------------

    def aggregate_diversity_metrics(
        self,
        company_id: str | None = None,
        date_bucket: date | None = None,
    ) -> int:
        """Fold applicant demographics per job variant and per company. Returns rows written."""
        bucket = date_bucket or yesterday()
        logger.info("Aggregating diversity metrics for company %s on %s", company_id or "all", bucket)

        with self._entity(company_id, None, bucket):
            applicants = self._records.fetch_applicants(
                company_id=company_id, date_from=bucket, date_to=bucket,
            )

        groups: dict[tuple[str, str | None], _DiversityStats] = {}
        for record in applicants:
            app = record.application
            labels = demographic_labels(record)
            was_hired = app.status is ApplicationStatus.HIRED
            groups.setdefault((app.company_id, None), _DiversityStats()).add(labels, was_hired)
            if app.job_variant_id is not None:
                key = (app.company_id, app.job_variant_id)
                groups.setdefault(key, _DiversityStats()).add(labels, was_hired)

        for (company, variant_id), group in groups.items():
            with self._entity(company, variant_id, bucket):
                self._store.upsert_diversity(
                    MetricIdentity(company, variant_id, bucket), group.to_patch(),
                )

        logger.info("Diversity aggregation wrote %d rows", len(groups))
        return len(groups)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run_all(self, company_id: str | None = None, date_bucket: date | None = None) -> None:
        """Run the three families concurrently for one bucket."""
        bucket = date_bucket or yesterday()
        await asyncio.gather(
            asyncio.to_thread(self.aggregate_pipeline_metrics, company_id, bucket),
            asyncio.to_thread(self.aggregate_source_performance, company_id, bucket),
            asyncio.to_thread(self.aggregate_diversity_metrics, company_id, bucket),
        )
        logger.info("Metrics aggregation for %s on %s completed", company_id or "all", bucket)

    async def daily_aggregation(self) -> None:
        """Scheduled entry point: aggregate yesterday for every company."""
        logger.info("Starting daily metrics aggregation")
        await self.run_all(None, yesterday())

    def run_isolated(
        self,
        company_ids: Sequence[str] | None = None,
        date_bucket: date | None = None,
    ) -> list[AggregationOutcome]:
        """Aggregate each company independently, collecting successes and failures."""
        bucket = date_bucket or yesterday()
        companies = list(company_ids) if company_ids is not None else self._records.list_company_ids()

        def run_one(company: str) -> AggregationOutcome:
            try:
                self.aggregate_pipeline_metrics(company, bucket)
                self.aggregate_source_performance(company, bucket)
                self.aggregate_diversity_metrics(company, bucket)
            except AnalyticsError as e:
                return AggregationOutcome(company_id=company, succeeded=False, error=str(e))
            return AggregationOutcome(company_id=company, succeeded=True)

        with ThreadPoolExecutor(max_workers=self._config.max_workers) as pool:
            outcomes = list(pool.map(run_one, companies))

        failed = [o.company_id for o in outcomes if not o.succeeded]
        logger.info(
            "Isolated aggregation on %s: %d succeeded, %d failed %s",
            bucket, len(outcomes) - len(failed), len(failed), failed or "",
        )
        return outcomes

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _companies(self, company_id: str | None) -> list[str]:
        if company_id is not None:
            return [company_id]
        return self._records.list_company_ids()

    @contextmanager
    def _entity(
        self,
        company_id: str | None,
        job_variant_id: str | None,
        bucket: date,
    ) -> Iterator[None]:
        """Log failures with enough context for a targeted re-run."""
        try:
            yield
        except UpstreamDataError:
            logger.exception(
                "Aggregation failed reading raw records (company=%s, job_variant=%s, date=%s)",
                company_id, job_variant_id, bucket,
            )
            raise
        except (sqlite3.Error, ValidationError, ValueError) as e:
            logger.exception(
                "Aggregation failed (company=%s, job_variant=%s, date=%s)",
                company_id, job_variant_id, bucket,
            )
            msg = f"Aggregation failed for company={company_id} job_variant={job_variant_id} on {bucket}: {e}"
            raise AggregationError(
                msg, company_id=company_id, job_variant_id=job_variant_id, date_bucket=bucket,
            ) from e


def demographic_labels(record: ApplicantRecord) -> dict[str, str]:
    candidate = record.candidate
    if candidate is None:
        return {axis: UNKNOWN for axis in DEMOGRAPHIC_AXES}
    return {
        "gender": candidate.gender or UNKNOWN,
        "ethnicity": candidate.ethnicity or UNKNOWN,
        "age": categorize_age(candidate.age).value,
        "education": candidate.education or UNKNOWN,
    }
