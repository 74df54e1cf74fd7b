"""Tests for QueryEngine: pipeline, sources, diversity and raw-record drill-downs."""

import sqlite3
from datetime import date, datetime, timedelta

import pytest

from hiring_analytics.analytics.query import QueryEngine
from hiring_analytics.core.config import BottleneckConfig, Settings
from hiring_analytics.core.db import (
    init_db,
    insert_application,
    insert_candidate,
    insert_job_variant,
    insert_stage_transition,
)
from hiring_analytics.core.metrics_store import MetricsStore
from hiring_analytics.core.schemas import (
    AnalyticsQuery,
    Application,
    ApplicationStatus,
    BiasIndicators,
    Candidate,
    DemographicDistributions,
    Granularity,
    JobVariant,
    MetricIdentity,
    SourceIdentity,
    StageTransition,
)
from hiring_analytics.records.sqlite import SqliteRecordSource

DAY = date(2024, 5, 15)
ACME = AnalyticsQuery(company_id="acme")


@pytest.fixture
def db(tmp_path: pytest.TempPathFactory) -> sqlite3.Connection:  # type: ignore[type-arg]
    return init_db(tmp_path / "test.db")


@pytest.fixture
def store(db: sqlite3.Connection) -> MetricsStore:
    return MetricsStore(db)


def _engine(db: sqlite3.Connection, settings: Settings | None = None) -> QueryEngine:
    return QueryEngine(MetricsStore(db), SqliteRecordSource(db), settings)


def _pipeline(store: MetricsStore, day: date = DAY, job: str | None = None, **patch: object) -> None:
    store.upsert_pipeline(MetricIdentity("acme", job, day), patch)


def _funnel(store: MetricsStore, day: date = DAY) -> None:
    _pipeline(
        store,
        day,
        total_applications=800,
        applications_screened=400,
        applications_shortlisted=200,
        interviews_scheduled=100,
        interviews_completed=80,
        offers_extended=50,
        candidates_hired=40,
    )


def _add_applicant(
    db: sqlite3.Connection,
    app_id: str,
    status: ApplicationStatus,
    *,
    candidate_id: str | None = None,
    fit_score: float | None = None,
    days_to_update: float = 0,
    **candidate: object,
) -> None:
    cid = candidate_id or f"c-{app_id}"
    applied_at = datetime(2024, 5, 1, 9)
    insert_candidate(db, Candidate(id=cid, created_at=applied_at, **candidate))  # type: ignore[arg-type]
    insert_application(db, Application(
        id=app_id,
        candidate_id=cid,
        job_variant_id="job-1",
        company_id="acme",
        status=status,
        fit_score=fit_score,
        applied_at=applied_at,
        last_updated=applied_at + timedelta(days=days_to_update),
    ))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestTimeToFill:
    def test_no_rows_all_zero(self, db: sqlite3.Connection) -> None:
        metrics = _engine(db).get_time_to_fill_metrics(AnalyticsQuery(company_id="none"))
        assert metrics.model_dump() == {
            "average_days": 0.0,
            "median_days": 0.0,
            "min_days": 0.0,
            "max_days": 0.0,
            "total_positions": 0,
            "filled_positions": 0,
            "open_positions": 0,
        }

    def test_statistics_over_row_averages(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _pipeline(store, DAY, total_applications=10, candidates_hired=2, avg_time_to_fill_days=20.0)
        _pipeline(store, DAY + timedelta(days=1), total_applications=5, candidates_hired=1, avg_time_to_fill_days=10.0)
        _pipeline(store, DAY + timedelta(days=2), total_applications=5)

        metrics = _engine(db).get_time_to_fill_metrics(ACME)

        assert metrics.average_days == pytest.approx(15.0)
        assert metrics.median_days == pytest.approx(15.0)
        assert metrics.min_days == 10.0
        assert metrics.max_days == 20.0
        assert metrics.total_positions == 20
        assert metrics.filled_positions == 3
        assert metrics.open_positions == 17

    def test_reads_rollups_only(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _pipeline(store, total_applications=10)
        _pipeline(store, job="job-1", total_applications=10)
        assert _engine(db).get_time_to_fill_metrics(ACME).total_positions == 10


class TestConversionRates:
    def test_funnel_ratios(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _funnel(store)
        rates = _engine(db).get_conversion_rates(ACME)
        assert rates.application_to_screening == pytest.approx(50.0)
        assert rates.screening_to_shortlist == pytest.approx(50.0)
        assert rates.shortlist_to_interview == pytest.approx(50.0)
        assert rates.interview_to_offer == pytest.approx(50.0)
        assert rates.offer_to_hire == pytest.approx(80.0)
        assert rates.overall_conversion == pytest.approx(5.0)

    def test_zero_denominators(self, db: sqlite3.Connection) -> None:
        rates = _engine(db).get_conversion_rates(ACME)
        assert rates.overall_conversion == 0.0
        assert rates.offer_to_hire == 0.0


class TestBottlenecks:
    def test_six_stages_sorted_by_drop_off(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _funnel(store)
        bottlenecks = _engine(db).get_bottlenecks(ACME)

        assert len(bottlenecks) == 6
        rates = [b.drop_off_rate for b in bottlenecks]
        assert rates == sorted(rates, reverse=True)
        by_stage = {b.stage: b for b in bottlenecks}
        assert by_stage[ApplicationStatus.INTERVIEW_COMPLETED].drop_off_rate == pytest.approx(37.5)
        assert by_stage[ApplicationStatus.OFFER_EXTENDED].drop_off_rate == pytest.approx(20.0)
        assert by_stage[ApplicationStatus.APPLIED].candidates_in_stage == 800

    def test_flag_rule(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _pipeline(
            store,
            total_applications=100,
            applications_screened=30,
            applications_shortlisted=20,
            avg_time_to_screen_days=9.0,
        )
        by_stage = {b.stage: b for b in _engine(db).get_bottlenecks(ACME)}
        # 70% drop-off exceeds the 50% threshold.
        assert by_stage[ApplicationStatus.APPLIED].is_bottleneck is True
        # 33% drop-off but 9 days in stage exceeds the 7 day limit.
        assert by_stage[ApplicationStatus.SCREENING].is_bottleneck is True
        assert by_stage[ApplicationStatus.SCREENING].average_time_in_stage == 9.0

    def test_empty_pipeline_uses_fixed_stage_times(self, db: sqlite3.Connection) -> None:
        settings = Settings(bottlenecks=BottleneckConfig(max_days_in_stage=2.0))
        by_stage = {b.stage: b for b in _engine(db, settings).get_bottlenecks(ACME)}
        assert all(b.drop_off_rate == 0.0 for b in by_stage.values())
        assert by_stage[ApplicationStatus.INTERVIEW_SCHEDULED].average_time_in_stage == 1.0
        assert by_stage[ApplicationStatus.OFFER_EXTENDED].is_bottleneck is True
        assert by_stage[ApplicationStatus.INTERVIEW_SCHEDULED].is_bottleneck is False

    def test_ties_keep_funnel_order(self, db: sqlite3.Connection) -> None:
        stages = [b.stage for b in _engine(db).get_bottlenecks(ACME)]
        assert stages == [
            ApplicationStatus.APPLIED,
            ApplicationStatus.SCREENING,
            ApplicationStatus.SHORTLISTED,
            ApplicationStatus.INTERVIEW_SCHEDULED,
            ApplicationStatus.INTERVIEW_COMPLETED,
            ApplicationStatus.OFFER_EXTENDED,
        ]


class TestSummary:
    def test_totals_and_active_positions(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        insert_job_variant(db, JobVariant(id="job-1", company_id="acme"))
        insert_job_variant(db, JobVariant(id="job-2", company_id="acme", is_active=False))
        insert_job_variant(db, JobVariant(id="job-3", company_id="beta"))
        _funnel(store)

        summary = _engine(db).get_analytics_summary(
            AnalyticsQuery(company_id="acme", start_date=date(2024, 5, 1), end_date=date(2024, 5, 31)),
        )

        assert summary.total_applications == 800
        assert summary.total_hires == 40
        assert summary.active_positions == 1
        assert summary.conversion_rates.overall_conversion == pytest.approx(5.0)
        assert len(summary.bottlenecks) == 6
        assert summary.date_range.start_date == date(2024, 5, 1)

    def test_default_window(self, db: sqlite3.Connection) -> None:
        summary = _engine(db).get_analytics_summary(AnalyticsQuery(end_date=date(2024, 5, 31)))
        assert summary.date_range.start_date == date(2024, 5, 1)
        assert summary.total_applications == 0


class TestTrends:
    def test_weekly_buckets(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _pipeline(store, date(2024, 5, 13), total_applications=3, candidates_hired=1, avg_time_to_fill_days=10.0)
        _pipeline(store, date(2024, 5, 15), total_applications=4, avg_time_to_fill_days=20.0)
        _pipeline(store, date(2024, 5, 20), total_applications=5, candidates_hired=2)

        trends = _engine(db).get_trend_data(AnalyticsQuery(
            company_id="acme",
            start_date=date(2024, 5, 1),
            end_date=date(2024, 5, 31),
            granularity=Granularity.WEEKLY,
        ))

        assert [(p.period, p.value) for p in trends.applications] == [
            (date(2024, 5, 13), 7),
            (date(2024, 5, 20), 5),
        ]
        assert [p.value for p in trends.hires] == [1, 2]
        assert [(p.period, p.value) for p in trends.time_to_fill] == [(date(2024, 5, 13), 15.0)]

    def test_window_defaults_to_trend_days(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _pipeline(store, date(2024, 1, 1), total_applications=1)
        _pipeline(store, date(2024, 5, 1), total_applications=2)
        trends = _engine(db).get_trend_data(AnalyticsQuery(company_id="acme", end_date=date(2024, 5, 31)), days=60)
        assert [p.period for p in trends.applications] == [date(2024, 5, 1)]


class TestStagePerformance:
    def test_by_target_stage_in_funnel_order(self, db: sqlite3.Connection) -> None:
        _add_applicant(db, "a1", ApplicationStatus.INTERVIEW_SCHEDULED)
        _add_applicant(db, "a2", ApplicationStatus.SCREENING)
        base = datetime(2024, 5, 1, 9)
        for app_id, stage, days in (
            ("a1", ApplicationStatus.INTERVIEW_SCHEDULED, 6),
            ("a1", ApplicationStatus.SCREENING, 2),
            ("a2", ApplicationStatus.SCREENING, 4),
        ):
            insert_stage_transition(db, StageTransition(
                application_id=app_id, to_stage=stage, changed_at=base + timedelta(days=days),
            ))

        performance = _engine(db).get_stage_performance(ACME)

        assert [p.stage for p in performance] == [
            ApplicationStatus.SCREENING,
            ApplicationStatus.INTERVIEW_SCHEDULED,
        ]
        assert performance[0].total_candidates == 2
        assert performance[0].average_time_in_stage == pytest.approx(3.0)

    def test_no_applications(self, db: sqlite3.Connection) -> None:
        assert _engine(db).get_stage_performance(ACME) == []


class TestCalculateTimeToFill:
    def test_mean_of_hired(self, db: sqlite3.Connection) -> None:
        _add_applicant(db, "a1", ApplicationStatus.HIRED, days_to_update=10)
        _add_applicant(db, "a2", ApplicationStatus.HIRED, days_to_update=30)
        _add_applicant(db, "a3", ApplicationStatus.REJECTED, days_to_update=90)
        assert _engine(db).calculate_time_to_fill("acme") == pytest.approx(20.0)

    def test_no_hires(self, db: sqlite3.Connection) -> None:
        assert _engine(db).calculate_time_to_fill("acme", "job-1") == 0.0


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def _source(store: MetricsStore, source: str, day: date = DAY, **patch: object) -> None:
    store.upsert_source(SourceIdentity("acme", source, day), patch)


class TestSourcePerformance:
    def test_sums_across_days(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _source(store, "referral", DAY, total_candidates=10, hired_candidates=2, quality_score=80.0, cost_per_hire=1000)
        _source(store, "referral", DAY + timedelta(days=1), total_candidates=30, hired_candidates=2,
                quality_score=40.0, cost_per_hire=2000)

        [referral] = _engine(db).get_source_performance(ACME)

        assert referral.total_candidates == 40
        assert referral.hired_candidates == 4
        assert referral.conversion_rate == pytest.approx(10.0)
        assert referral.quality_score == pytest.approx(50.0)
        assert referral.cost_per_hire == pytest.approx(1500.0)
        assert referral.roi == pytest.approx(50.0 * 10.0 / 1500.0)

    def test_ordered_by_conversion(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _source(store, "board", total_candidates=100, hired_candidates=1)
        _source(store, "referral", total_candidates=10, hired_candidates=3)
        assert [s.source for s in _engine(db).get_source_performance(ACME)] == ["referral", "board"]

    def test_source_filter(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _source(store, "board", total_candidates=1)
        _source(store, "referral", total_candidates=1)
        result = _engine(db).get_source_performance(AnalyticsQuery(company_id="acme", source="board"))
        assert [s.source for s in result] == ["board"]


class TestTopSources:
    def test_ranked_by_roi_uncosted_last(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _source(store, "free", total_candidates=10, hired_candidates=5, quality_score=90.0)
        _source(store, "cheap", total_candidates=10, hired_candidates=1, quality_score=50.0, cost_per_hire=100)
        _source(store, "pricey", total_candidates=10, hired_candidates=1, quality_score=50.0, cost_per_hire=5000)

        top = _engine(db).get_top_performing_sources("acme")

        assert [s.source for s in top] == ["cheap", "pricey", "free"]

    def test_limit(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        for i in range(7):
            _source(store, f"s{i}", total_candidates=10, hired_candidates=1, quality_score=50.0, cost_per_hire=100 + i)
        engine = _engine(db)
        assert len(engine.get_top_performing_sources("acme")) == 5
        assert len(engine.get_top_performing_sources("acme", limit=2)) == 2
        assert len(engine.get_top_performing_sources("acme", limit=None)) == 7


class TestSourceDrillDowns:
    def test_conversion_counts_candidates_once(self, db: sqlite3.Connection) -> None:
        _add_applicant(db, "a1", ApplicationStatus.REJECTED, candidate_id="c1", source="referral")
        insert_application(db, Application(
            id="a1b", candidate_id="c1", company_id="acme", status=ApplicationStatus.HIRED,
            applied_at=datetime(2024, 5, 2), last_updated=datetime(2024, 5, 2),
        ))
        _add_applicant(db, "a2", ApplicationStatus.APPLIED, source="referral")
        _add_applicant(db, "a3", ApplicationStatus.APPLIED)

        rates = _engine(db).calculate_source_conversion_rates("acme")

        assert rates == {"referral": pytest.approx(50.0), "unknown": 0.0}

    def test_quality_score(self, db: sqlite3.Connection) -> None:
        _add_applicant(db, "a1", ApplicationStatus.APPLIED, source="board", fit_score=80)
        _add_applicant(db, "a2", ApplicationStatus.APPLIED, source="board")
        _add_applicant(db, "a3", ApplicationStatus.APPLIED, source="referral", fit_score=10)
        engine = _engine(db)
        assert engine.calculate_source_quality_score("board", "acme") == pytest.approx(40.0)
        assert engine.calculate_source_quality_score("missing", "acme") == 0.0


# ---------------------------------------------------------------------------
# Diversity
# ---------------------------------------------------------------------------


def _diversity(store: MetricsStore, day: date = DAY, **patch: object) -> None:
    store.upsert_diversity(MetricIdentity("acme", None, day), patch)


class TestDiversityAnalytics:
    def test_no_rows(self, db: sqlite3.Connection) -> None:
        analytics = _engine(db).get_diversity_analytics(ACME)
        assert analytics.total_applicants == 0
        assert analytics.diversity_index == 0.0
        assert analytics.bias_alerts == []

    def test_merges_rows_and_averages_bias(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _diversity(
            store,
            DAY,
            total_applicants=4,
            gender_distribution={"male": 2, "female": 2},
            hired_diversity=DemographicDistributions(gender={"female": 1}),
            bias_indicators=BiasIndicators(gender_bias=0.3, ethnicity_bias=0.1),
        )
        _diversity(
            store,
            DAY + timedelta(days=1),
            total_applicants=2,
            gender_distribution={"male": 2},
            hired_diversity=DemographicDistributions(gender={"male": 1}),
            bias_indicators=BiasIndicators(gender_bias=0.1, ethnicity_bias=0.1),
        )

        analytics = _engine(db).get_diversity_analytics(ACME)

        assert analytics.total_applicants == 6
        assert analytics.total_hired == 2
        assert analytics.gender_balance.applicants == {"male": 4, "female": 2}
        assert analytics.gender_balance.hired == {"female": 1, "male": 1}
        assert analytics.gender_balance.bias == pytest.approx(0.2)
        assert 0.0 < analytics.diversity_index < 1.0
        assert analytics.bias_alerts == ["Gender bias detected: 20.0%"]

    def test_alert_thresholds_per_axis(self, db: sqlite3.Connection, store: MetricsStore) -> None:
        _diversity(
            store,
            total_applicants=1,
            bias_indicators=BiasIndicators(ethnicity_bias=0.16, age_bias=0.2, education_bias=0.35),
        )
        alerts = _engine(db).get_diversity_analytics(ACME).bias_alerts
        # Age sits exactly on its threshold and is not reported.
        assert alerts == ["Ethnicity bias detected: 16.0%", "Education bias detected: 35.0%"]


class TestBiasIndicators:
    def test_hire_rate_disparity(self, db: sqlite3.Connection) -> None:
        for i in range(10):
            _add_applicant(db, f"m{i}", ApplicationStatus.HIRED if i < 8 else ApplicationStatus.APPLIED, gender="male")
            _add_applicant(db, f"f{i}", ApplicationStatus.HIRED if i < 2 else ApplicationStatus.APPLIED, gender="female")

        bias = _engine(db).calculate_bias_indicators("acme")

        assert bias.gender_bias == pytest.approx(0.6)
        # Every candidate shares the unknown ethnicity label.
        assert bias.ethnicity_bias == 0.0

    def test_no_records_is_zero(self, db: sqlite3.Connection) -> None:
        assert _engine(db).calculate_bias_indicators("acme", "job-1") == BiasIndicators()
