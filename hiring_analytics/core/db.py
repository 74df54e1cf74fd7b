"""SQLite database layer for raw recruiting records and derived metric rows.

Metric tables are keyed by their identity tuple and written with
``INSERT ... ON CONFLICT DO UPDATE`` so that an upsert is atomic per identity.
A company-wide rollup row stores ``job_variant_id = ''`` because SQLite treats
NULLs as distinct in primary keys; the empty string never leaves this module.
"""

import json
import sqlite3
from collections.abc import Mapping
from datetime import date
from pathlib import Path
from typing import Any

from hiring_analytics.core.schemas import (
    Application,
    BiasIndicators,
    Candidate,
    DemographicDistributions,
    DiversityMetricsRow,
    JobVariant,
    MetricIdentity,
    PipelineMetricsRow,
    SourceIdentity,
    SourcePerformanceRow,
    StageTransition,
)

_JOB_VARIANTS_TABLE = """
CREATE TABLE IF NOT EXISTS job_variants (
    id          TEXT    PRIMARY KEY,
    company_id  TEXT    NOT NULL,
    title       TEXT    NOT NULL DEFAULT '',
    is_active   INTEGER NOT NULL DEFAULT 1
);
"""

_CANDIDATES_TABLE = """
CREATE TABLE IF NOT EXISTS candidates (
    id          TEXT PRIMARY KEY,
    source      TEXT,
    gender      TEXT,
    ethnicity   TEXT,
    age         REAL,
    education   TEXT,
    created_at  TEXT NOT NULL
);
"""

_APPLICATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS applications (
    id              TEXT PRIMARY KEY,
    candidate_id    TEXT NOT NULL,
    job_variant_id  TEXT,
    company_id      TEXT NOT NULL,
    status          TEXT NOT NULL,
    fit_score       REAL,
    applied_at      TEXT NOT NULL,
    last_updated    TEXT NOT NULL
);
"""

_STAGE_HISTORY_TABLE = """
CREATE TABLE IF NOT EXISTS stage_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    application_id  TEXT NOT NULL,
    from_stage      TEXT,
    to_stage        TEXT NOT NULL,
    changed_at      TEXT NOT NULL
);
"""

_PIPELINE_METRICS_TABLE = """
CREATE TABLE IF NOT EXISTS pipeline_metrics (
    company_id                  TEXT    NOT NULL,
    job_variant_id              TEXT    NOT NULL DEFAULT '',
    date_bucket                 TEXT    NOT NULL,
    total_applications          INTEGER NOT NULL DEFAULT 0,
    applications_screened       INTEGER NOT NULL DEFAULT 0,
    applications_shortlisted    INTEGER NOT NULL DEFAULT 0,
    interviews_scheduled        INTEGER NOT NULL DEFAULT 0,
    interviews_completed        INTEGER NOT NULL DEFAULT 0,
    offers_extended             INTEGER NOT NULL DEFAULT 0,
    offers_accepted             INTEGER NOT NULL DEFAULT 0,
    candidates_hired            INTEGER NOT NULL DEFAULT 0,
    candidates_rejected         INTEGER NOT NULL DEFAULT 0,
    avg_time_to_screen_days     REAL,
    avg_time_to_interview_days  REAL,
    avg_time_to_offer_days      REAL,
    avg_time_to_fill_days       REAL,
    PRIMARY KEY (company_id, job_variant_id, date_bucket)
);
"""

_SOURCE_PERFORMANCE_TABLE = """
CREATE TABLE IF NOT EXISTS source_performance (
    company_id              TEXT    NOT NULL,
    source                  TEXT    NOT NULL,
    date_bucket             TEXT    NOT NULL,
    total_candidates        INTEGER NOT NULL DEFAULT 0,
    qualified_candidates    INTEGER NOT NULL DEFAULT 0,
    interviewed_candidates  INTEGER NOT NULL DEFAULT 0,
    hired_candidates        INTEGER NOT NULL DEFAULT 0,
    quality_score           REAL,
    cost_per_hire           REAL,
    conversion_rate         REAL    NOT NULL DEFAULT 0.0,
    roi                     REAL,
    PRIMARY KEY (company_id, source, date_bucket)
);
"""

_DIVERSITY_METRICS_TABLE = """
CREATE TABLE IF NOT EXISTS diversity_metrics (
    company_id              TEXT    NOT NULL,
    job_variant_id          TEXT    NOT NULL DEFAULT '',
    date_bucket             TEXT    NOT NULL,
    total_applicants        INTEGER NOT NULL DEFAULT 0,
    gender_distribution     TEXT    NOT NULL DEFAULT '{}',
    ethnicity_distribution  TEXT    NOT NULL DEFAULT '{}',
    age_distribution        TEXT    NOT NULL DEFAULT '{}',
    education_distribution  TEXT    NOT NULL DEFAULT '{}',
    hired_diversity         TEXT    NOT NULL DEFAULT '{}',
    bias_indicators         TEXT    NOT NULL DEFAULT '{}',
    PRIMARY KEY (company_id, job_variant_id, date_bucket)
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_applications_company ON applications (company_id, applied_at)",
    "CREATE INDEX IF NOT EXISTS idx_applications_variant ON applications (job_variant_id, applied_at)",
    "CREATE INDEX IF NOT EXISTS idx_stage_history_app ON stage_history (application_id)",
)

PIPELINE_COLUMNS = frozenset({
    "total_applications",
    "applications_screened",
    "applications_shortlisted",
    "interviews_scheduled",
    "interviews_completed",
    "offers_extended",
    "offers_accepted",
    "candidates_hired",
    "candidates_rejected",
    "avg_time_to_screen_days",
    "avg_time_to_interview_days",
    "avg_time_to_offer_days",
    "avg_time_to_fill_days",
})

SOURCE_COLUMNS = frozenset({
    "total_candidates",
    "qualified_candidates",
    "interviewed_candidates",
    "hired_candidates",
    "quality_score",
    "cost_per_hire",
    "conversion_rate",
    "roi",
})

DIVERSITY_COLUMNS = frozenset({
    "total_applicants",
    "gender_distribution",
    "ethnicity_distribution",
    "age_distribution",
    "education_distribution",
    "hired_diversity",
    "bias_indicators",
})

_JSON_COLUMNS = DIVERSITY_COLUMNS - {"total_applicants"}

_ROLLUP = ""


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection.

    The connection may be shared between threads; callers serialize access
    (see ``MetricsStore``).
    """
    if str(path) != ":memory:":
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    for ddl in (
        _JOB_VARIANTS_TABLE,
        _CANDIDATES_TABLE,
        _APPLICATIONS_TABLE,
        _STAGE_HISTORY_TABLE,
        _PIPELINE_METRICS_TABLE,
        _SOURCE_PERFORMANCE_TABLE,
        _DIVERSITY_METRICS_TABLE,
        *_INDEXES,
    ):
        conn.execute(ddl)
    conn.commit()
    return conn


# ---------------------------------------------------------------------------
# Raw record writers (operational data feeds, fixtures, demo seeding)
# ---------------------------------------------------------------------------


def insert_job_variant(conn: sqlite3.Connection, variant: JobVariant) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO job_variants (id, company_id, title, is_active) VALUES (?, ?, ?, ?)",
        (variant.id, variant.company_id, variant.title, int(variant.is_active)),
    )
    conn.commit()


def insert_candidate(conn: sqlite3.Connection, candidate: Candidate) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO candidates
            (id, source, gender, ethnicity, age, education, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            candidate.id,
            candidate.source,
            candidate.gender,
            candidate.ethnicity,
            candidate.age,
            candidate.education,
            candidate.created_at.isoformat(),
        ),
    )
    conn.commit()


def insert_application(conn: sqlite3.Connection, application: Application) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO applications
            (id, candidate_id, job_variant_id, company_id, status, fit_score,
             applied_at, last_updated)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            application.id,
            application.candidate_id,
            application.job_variant_id,
            application.company_id,
            application.status.value,
            application.fit_score,
            application.applied_at.isoformat(),
            application.last_updated.isoformat(),
        ),
    )
    conn.commit()


def insert_stage_transition(conn: sqlite3.Connection, transition: StageTransition) -> int:
    """Append a stage-history entry. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO stage_history (application_id, from_stage, to_stage, changed_at)
        VALUES (?, ?, ?, ?)
        """,
        (
            transition.application_id,
            transition.from_stage.value if transition.from_stage else None,
            transition.to_stage.value,
            transition.changed_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


# ---------------------------------------------------------------------------
# Metric rows
# ---------------------------------------------------------------------------


def upsert_pipeline_metrics(
    conn: sqlite3.Connection,
    identity: MetricIdentity,
    patch: Mapping[str, Any],
) -> None:
    """Insert or merge a pipeline row. Fields absent from ``patch`` keep their value."""
    _upsert(
        conn,
        "pipeline_metrics",
        {
            "company_id": identity.company_id,
            "job_variant_id": identity.job_variant_id or _ROLLUP,
            "date_bucket": identity.date_bucket.isoformat(),
        },
        patch,
        PIPELINE_COLUMNS,
    )


def upsert_source_performance(
    conn: sqlite3.Connection,
    identity: SourceIdentity,
    patch: Mapping[str, Any],
) -> None:
    _upsert(
        conn,
        "source_performance",
        {
            "company_id": identity.company_id,
            "source": identity.source,
            "date_bucket": identity.date_bucket.isoformat(),
        },
        patch,
        SOURCE_COLUMNS,
    )


def upsert_diversity_metrics(
    conn: sqlite3.Connection,
    identity: MetricIdentity,
    patch: Mapping[str, Any],
) -> None:
    _upsert(
        conn,
        "diversity_metrics",
        {
            "company_id": identity.company_id,
            "job_variant_id": identity.job_variant_id or _ROLLUP,
            "date_bucket": identity.date_bucket.isoformat(),
        },
        patch,
        DIVERSITY_COLUMNS,
    )


def get_pipeline_metrics(
    conn: sqlite3.Connection,
    identity: MetricIdentity,
) -> PipelineMetricsRow | None:
    row = conn.execute(
        """
        SELECT * FROM pipeline_metrics
        WHERE company_id = ? AND job_variant_id = ? AND date_bucket = ?
        """,
        (identity.company_id, identity.job_variant_id or _ROLLUP, identity.date_bucket.isoformat()),
    ).fetchone()
    return _pipeline_from_row(row) if row is not None else None


def get_diversity_metrics(
    conn: sqlite3.Connection,
    identity: MetricIdentity,
) -> DiversityMetricsRow | None:
    row = conn.execute(
        """
        SELECT * FROM diversity_metrics
        WHERE company_id = ? AND job_variant_id = ? AND date_bucket = ?
        """,
        (identity.company_id, identity.job_variant_id or _ROLLUP, identity.date_bucket.isoformat()),
    ).fetchone()
    return _diversity_from_row(row) if row is not None else None


def get_source_performance(
    conn: sqlite3.Connection,
    identity: SourceIdentity,
) -> SourcePerformanceRow | None:
    row = conn.execute(
        """
        SELECT * FROM source_performance
        WHERE company_id = ? AND source = ? AND date_bucket = ?
        """,
        (identity.company_id, identity.source, identity.date_bucket.isoformat()),
    ).fetchone()
    return _source_from_row(row) if row is not None else None


def query_pipeline_metrics(
    conn: sqlite3.Connection,
    company_id: str | None = None,
    job_variant_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[PipelineMetricsRow]:
    """Return pipeline rows in scope, ordered by date bucket.

    ``job_variant_id=None`` selects company-wide rollup rows only.
    """
    sql, params = _range_sql(
        "pipeline_metrics",
        {"company_id": company_id, "job_variant_id": job_variant_id or _ROLLUP},
        date_from,
        date_to,
    )
    return [_pipeline_from_row(r) for r in conn.execute(sql, params).fetchall()]


def query_source_performance(
    conn: sqlite3.Connection,
    company_id: str | None = None,
    source: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[SourcePerformanceRow]:
    sql, params = _range_sql(
        "source_performance",
        {"company_id": company_id, "source": source},
        date_from,
        date_to,
    )
    return [_source_from_row(r) for r in conn.execute(sql, params).fetchall()]


def query_diversity_metrics(
    conn: sqlite3.Connection,
    company_id: str | None = None,
    job_variant_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[DiversityMetricsRow]:
    """Return diversity rows in scope; ``job_variant_id=None`` selects rollups."""
    sql, params = _range_sql(
        "diversity_metrics",
        {"company_id": company_id, "job_variant_id": job_variant_id or _ROLLUP},
        date_from,
        date_to,
    )
    return [_diversity_from_row(r) for r in conn.execute(sql, params).fetchall()]


def _upsert(
    conn: sqlite3.Connection,
    table: str,
    key: dict[str, str],
    patch: Mapping[str, Any],
    allowed: frozenset[str],
) -> None:
    unknown = set(patch) - allowed
    if unknown:
        msg = f"Unknown {table} columns: {sorted(unknown)}"
        raise ValueError(msg)

    values = {col: _encode(col, val) for col, val in patch.items()}
    columns = [*key, *values]
    placeholders = ", ".join("?" for _ in columns)
    conflict = ", ".join(key)
    if values:
        assignments = ", ".join(f"{col} = excluded.{col}" for col in values)
        action = f"DO UPDATE SET {assignments}"
    else:
        action = "DO NOTHING"

    # Table and column names come from the whitelists above, never from callers.
    conn.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT({conflict}) {action}",
        (*key.values(), *values.values()),
    )
    conn.commit()


def _encode(column: str, value: Any) -> Any:
    if column not in _JSON_COLUMNS:
        return value
    if hasattr(value, "model_dump"):
        value = value.model_dump()
    return json.dumps(value, sort_keys=True)


def _range_sql(
    table: str,
    equals: dict[str, str | None],
    date_from: date | None,
    date_to: date | None,
) -> tuple[str, list[str]]:
    clauses: list[str] = []
    params: list[str] = []
    for column, value in equals.items():
        if value is not None:
            clauses.append(f"{column} = ?")
            params.append(value)
    if date_from is not None:
        clauses.append("date_bucket >= ?")
        params.append(date_from.isoformat())
    if date_to is not None:
        clauses.append("date_bucket <= ?")
        params.append(date_to.isoformat())
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return f"SELECT * FROM {table}{where} ORDER BY date_bucket ASC", params


def _pipeline_from_row(row: sqlite3.Row) -> PipelineMetricsRow:
    data = dict(row)
    data["job_variant_id"] = data["job_variant_id"] or None
    return PipelineMetricsRow.model_validate(data)


def _source_from_row(row: sqlite3.Row) -> SourcePerformanceRow:
    return SourcePerformanceRow.model_validate(dict(row))


def _diversity_from_row(row: sqlite3.Row) -> DiversityMetricsRow:
    data = dict(row)
    data["job_variant_id"] = data["job_variant_id"] or None
    for column in _JSON_COLUMNS:
        data[column] = json.loads(data[column])
    data["hired_diversity"] = DemographicDistributions.model_validate(data["hired_diversity"])
    data["bias_indicators"] = BiasIndicators.model_validate(data["bias_indicators"])
    return DiversityMetricsRow.model_validate(data)
