"""Tests for the database layer: init, raw writers, metric upserts and range queries."""

from datetime import date, datetime

import pytest

from hiring_analytics.core.db import (
    get_diversity_metrics,
    get_pipeline_metrics,
    get_source_performance,
    init_db,
    insert_application,
    insert_stage_transition,
    query_diversity_metrics,
    query_pipeline_metrics,
    query_source_performance,
    upsert_diversity_metrics,
    upsert_pipeline_metrics,
    upsert_source_performance,
)
from hiring_analytics.core.schemas import (
    Application,
    ApplicationStatus,
    BiasIndicators,
    DemographicDistributions,
    MetricIdentity,
    SourceIdentity,
    StageTransition,
)

DAY = date(2024, 3, 1)


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    return init_db(tmp_path / "test.db")


class TestInitDb:
    def test_creates_tables(self, db) -> None:  # type: ignore[no-untyped-def]
        tables = {
            row[0]
            for row in db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {
            "job_variants",
            "candidates",
            "applications",
            "stage_history",
            "pipeline_metrics",
            "source_performance",
            "diversity_metrics",
        } <= tables

    def test_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        p = tmp_path / "double.db"
        init_db(p).close()
        init_db(p).close()

    def test_creates_parent_dirs(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        p = tmp_path / "nested" / "dir" / "a.db"
        init_db(p).close()
        assert p.exists()

    def test_in_memory(self) -> None:
        conn = init_db(":memory:")
        assert conn.execute("SELECT COUNT(*) FROM applications").fetchone()[0] == 0


class TestRawWriters:
    def test_insert_application_replaces(self, db) -> None:  # type: ignore[no-untyped-def]
        app = Application(
            id="a1",
            candidate_id="c1",
            company_id="acme",
            status=ApplicationStatus.APPLIED,
            applied_at=datetime(2024, 3, 1, 9),
            last_updated=datetime(2024, 3, 1, 9),
        )
        insert_application(db, app)
        insert_application(db, app.model_copy(update={"status": ApplicationStatus.HIRED}))
        rows = db.execute("SELECT status FROM applications").fetchall()
        assert [r["status"] for r in rows] == ["hired"]

    def test_stage_transition_returns_rowid(self, db) -> None:  # type: ignore[no-untyped-def]
        rowid = insert_stage_transition(db, StageTransition(
            application_id="a1",
            to_stage=ApplicationStatus.SCREENING,
            changed_at=datetime(2024, 3, 2),
        ))
        assert rowid == 1


# ---------------------------------------------------------------------------
# Pipeline metrics
# ---------------------------------------------------------------------------


class TestPipelineUpsert:
    def test_insert_then_read(self, db) -> None:  # type: ignore[no-untyped-def]
        identity = MetricIdentity("acme", "job-1", DAY)
        upsert_pipeline_metrics(db, identity, {"total_applications": 10, "candidates_hired": 2})
        row = get_pipeline_metrics(db, identity)
        assert row is not None
        assert row.total_applications == 10
        assert row.candidates_hired == 2
        assert row.avg_time_to_fill_days is None

    def test_merge_keeps_absent_fields(self, db) -> None:  # type: ignore[no-untyped-def]
        identity = MetricIdentity("acme", "job-1", DAY)
        upsert_pipeline_metrics(db, identity, {"total_applications": 10, "candidates_hired": 2})
        upsert_pipeline_metrics(db, identity, {"candidates_hired": 3})
        row = get_pipeline_metrics(db, identity)
        assert row is not None
        assert row.total_applications == 10
        assert row.candidates_hired == 3

    def test_rollup_row_is_unique(self, db) -> None:  # type: ignore[no-untyped-def]
        identity = MetricIdentity("acme", None, DAY)
        upsert_pipeline_metrics(db, identity, {"total_applications": 1})
        upsert_pipeline_metrics(db, identity, {"total_applications": 2})
        count = db.execute("SELECT COUNT(*) FROM pipeline_metrics").fetchone()[0]
        assert count == 1
        row = get_pipeline_metrics(db, identity)
        assert row is not None
        assert row.job_variant_id is None
        assert row.total_applications == 2

    def test_unknown_column_rejected(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(ValueError, match="Unknown"):
            upsert_pipeline_metrics(db, MetricIdentity("acme", None, DAY), {"bogus; DROP": 1})

    def test_missing_row(self, db) -> None:  # type: ignore[no-untyped-def]
        assert get_pipeline_metrics(db, MetricIdentity("acme", None, DAY)) is None


class TestPipelineQuery:
    def _seed(self, db) -> None:  # type: ignore[no-untyped-def]
        for day in (date(2024, 3, 3), date(2024, 3, 1), date(2024, 3, 2)):
            upsert_pipeline_metrics(db, MetricIdentity("acme", None, day), {"total_applications": day.day})
            upsert_pipeline_metrics(db, MetricIdentity("acme", "job-1", day), {"total_applications": 100})
        upsert_pipeline_metrics(db, MetricIdentity("other", None, DAY), {"total_applications": 50})

    def test_company_reads_rollups_ordered(self, db) -> None:  # type: ignore[no-untyped-def]
        self._seed(db)
        rows = query_pipeline_metrics(db, company_id="acme")
        assert [r.date_bucket.day for r in rows] == [1, 2, 3]
        assert all(r.job_variant_id is None for r in rows)

    def test_job_variant_rows(self, db) -> None:  # type: ignore[no-untyped-def]
        self._seed(db)
        rows = query_pipeline_metrics(db, company_id="acme", job_variant_id="job-1")
        assert [r.total_applications for r in rows] == [100, 100, 100]

    def test_date_bounds_inclusive(self, db) -> None:  # type: ignore[no-untyped-def]
        self._seed(db)
        rows = query_pipeline_metrics(db, "acme", None, date(2024, 3, 2), date(2024, 3, 3))
        assert [r.date_bucket.day for r in rows] == [2, 3]

    def test_start_bound_alone(self, db) -> None:  # type: ignore[no-untyped-def]
        self._seed(db)
        rows = query_pipeline_metrics(db, "acme", date_from=date(2024, 3, 3))
        assert [r.date_bucket.day for r in rows] == [3]

    def test_no_company_reads_all_rollups(self, db) -> None:  # type: ignore[no-untyped-def]
        self._seed(db)
        rows = query_pipeline_metrics(db)
        assert {r.company_id for r in rows} == {"acme", "other"}
        assert len(rows) == 4


# ---------------------------------------------------------------------------
# Source performance
# ---------------------------------------------------------------------------


class TestSourcePerformance:
    def test_upsert_and_filter_by_source(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_source_performance(db, SourceIdentity("acme", "referral", DAY), {"total_candidates": 4})
        upsert_source_performance(db, SourceIdentity("acme", "linkedin", DAY), {"total_candidates": 9})
        rows = query_source_performance(db, company_id="acme", source="referral")
        assert len(rows) == 1
        assert rows[0].total_candidates == 4

    def test_nullable_cost(self, db) -> None:  # type: ignore[no-untyped-def]
        identity = SourceIdentity("acme", "referral", DAY)
        upsert_source_performance(db, identity, {"cost_per_hire": None, "roi": None})
        row = get_source_performance(db, identity)
        assert row is not None
        assert row.cost_per_hire is None
        assert row.conversion_rate == 0.0


# ---------------------------------------------------------------------------
# Diversity metrics
# ---------------------------------------------------------------------------


class TestDiversityMetrics:
    def test_json_round_trip(self, db) -> None:  # type: ignore[no-untyped-def]
        identity = MetricIdentity("acme", None, DAY)
        upsert_diversity_metrics(db, identity, {
            "total_applicants": 5,
            "gender_distribution": {"female": 3, "male": 2},
            "hired_diversity": DemographicDistributions(gender={"female": 1}),
            "bias_indicators": BiasIndicators(gender_bias=0.4),
        })
        row = get_diversity_metrics(db, identity)
        assert row is not None
        assert row.gender_distribution == {"female": 3, "male": 2}
        assert row.hired_diversity.gender == {"female": 1}
        assert row.bias_indicators.gender_bias == 0.4
        assert row.age_distribution == {}

    def test_query_rollups_only(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_diversity_metrics(db, MetricIdentity("acme", None, DAY), {"total_applicants": 5})
        upsert_diversity_metrics(db, MetricIdentity("acme", "job-1", DAY), {"total_applicants": 3})
        rows = query_diversity_metrics(db, company_id="acme")
        assert [r.total_applicants for r in rows] == [5]
