"""SQLite implementation of the raw-record port."""

import logging
import sqlite3
import threading
from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import date
from typing import Any

from hiring_analytics.core.errors import UpstreamDataError
from hiring_analytics.core.schemas import (
    ApplicantRecord,
    Application,
    ApplicationStatus,
    Candidate,
    JobVariant,
    SourcedCandidate,
    StageTransition,
)
from hiring_analytics.records.base import RecordSource

logger = logging.getLogger(__name__)

# SQLite caps host parameters per statement; stage history is fetched in chunks.
_IN_CHUNK = 500

_APPLICANT_SELECT = """
SELECT a.id, a.candidate_id, a.job_variant_id, a.company_id, a.status, a.fit_score,
       a.applied_at, a.last_updated,
       c.id AS c_id, c.source AS c_source, c.gender AS c_gender,
       c.ethnicity AS c_ethnicity, c.age AS c_age, c.education AS c_education,
       c.created_at AS c_created_at
FROM applications a
LEFT JOIN candidates c ON c.id = a.candidate_id
"""


class SqliteRecordSource(RecordSource):
    """Reads applications, candidates, job variants and stage history from SQLite."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        lock: AbstractContextManager[Any] | None = None,
    ) -> None:
        self._conn = conn
        self._lock = lock if lock is not None else threading.RLock()

    def list_company_ids(self) -> list[str]:
        rows = self._fetch(
            """
            SELECT company_id FROM job_variants
            UNION
            SELECT company_id FROM applications
            ORDER BY company_id
            """,
            [],
        )
        return [r["company_id"] for r in rows]

    def list_job_variants(self, company_id: str | None = None) -> list[JobVariant]:
        sql = "SELECT id, company_id, title, is_active FROM job_variants"
        params: list[Any] = []
        if company_id is not None:
            sql += " WHERE company_id = ?"
            params.append(company_id)
        sql += " ORDER BY company_id, id"
        return [
            JobVariant(
                id=r["id"],
                company_id=r["company_id"],
                title=r["title"],
                is_active=bool(r["is_active"]),
            )
            for r in self._fetch(sql, params)
        ]

    def fetch_applications(
        self,
        *,
        company_id: str | None = None,
        job_variant_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        status: ApplicationStatus | None = None,
    ) -> list[Application]:
        where, params = _application_filters(company_id, job_variant_id, date_from, date_to)
        if status is not None:
            where.append("status = ?")
            params.append(status.value)
        sql = "SELECT * FROM applications"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY applied_at, id"
        return [_application_from_row(r) for r in self._fetch(sql, params)]

    def fetch_applicants(
        self,
        *,
        company_id: str | None = None,
        job_variant_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[ApplicantRecord]:
        where, params = _application_filters(
            company_id, job_variant_id, date_from, date_to, alias="a."
        )
        sql = _APPLICANT_SELECT
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY a.applied_at, a.id"
        return [
            ApplicantRecord(
                application=_application_from_row(r),
                candidate=_candidate_from_row(r, prefix="c_") if r["c_id"] else None,
            )
            for r in self._fetch(sql, params)
        ]

    def fetch_sourced_candidates(
        self,
        *,
        company_id: str | None = None,
        created_on: date | None = None,
    ) -> list[SourcedCandidate]:
        candidate_where: list[str] = []
        params: list[Any] = []
        if created_on is not None:
            candidate_where.append("DATE(created_at) = ?")
            params.append(created_on.isoformat())
        if company_id is not None:
            candidate_where.append(
                "id IN (SELECT candidate_id FROM applications WHERE company_id = ?)"
            )
            params.append(company_id)
        sql = "SELECT * FROM candidates"
        if candidate_where:
            sql += " WHERE " + " AND ".join(candidate_where)
        sql += " ORDER BY created_at, id"
        candidates = [_candidate_from_row(r) for r in self._fetch(sql, params)]

        result: list[SourcedCandidate] = []
        for candidate in candidates:
            app_sql = "SELECT * FROM applications WHERE candidate_id = ?"
            app_params: list[Any] = [candidate.id]
            if company_id is not None:
                app_sql += " AND company_id = ?"
                app_params.append(company_id)
            app_sql += " ORDER BY applied_at, id LIMIT 1"
            rows = self._fetch(app_sql, app_params)
            first = _application_from_row(rows[0]) if rows else None
            result.append(SourcedCandidate(candidate=candidate, first_application=first))
        return result

    def fetch_stage_history(self, application_ids: Sequence[str]) -> list[StageTransition]:
        ids = list(application_ids)
        transitions: list[StageTransition] = []
        for start in range(0, len(ids), _IN_CHUNK):
            chunk = ids[start:start + _IN_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self._fetch(
                f"""
                SELECT application_id, from_stage, to_stage, changed_at
                FROM stage_history
                WHERE application_id IN ({placeholders})
                ORDER BY changed_at, id
                """,
                chunk,
            )
            transitions.extend(
                StageTransition(
                    application_id=r["application_id"],
                    from_stage=r["from_stage"],
                    to_stage=r["to_stage"],
                    changed_at=r["changed_at"],
                )
                for r in rows
            )
        transitions.sort(key=lambda t: t.changed_at)
        return transitions

    def _fetch(self, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            logger.error("Raw record query failed: %s", e)
            msg = f"Failed to read raw records: {e}"
            raise UpstreamDataError(msg) from e


def _application_filters(
    company_id: str | None,
    job_variant_id: str | None,
    date_from: date | None,
    date_to: date | None,
    alias: str = "",
) -> tuple[list[str], list[Any]]:
    where: list[str] = []
    params: list[Any] = []
    if company_id is not None:
        where.append(f"{alias}company_id = ?")
        params.append(company_id)
    if job_variant_id is not None:
        where.append(f"{alias}job_variant_id = ?")
        params.append(job_variant_id)
    if date_from is not None:
        where.append(f"DATE({alias}applied_at) >= ?")
        params.append(date_from.isoformat())
    if date_to is not None:
        where.append(f"DATE({alias}applied_at) <= ?")
        params.append(date_to.isoformat())
    return where, params


def _application_from_row(row: sqlite3.Row) -> Application:
    return Application(
        id=row["id"],
        candidate_id=row["candidate_id"],
        job_variant_id=row["job_variant_id"],
        company_id=row["company_id"],
        status=row["status"],
        fit_score=row["fit_score"],
        applied_at=row["applied_at"],
        last_updated=row["last_updated"],
    )


def _candidate_from_row(row: sqlite3.Row, prefix: str = "") -> Candidate:
    return Candidate(
        id=row[f"{prefix}id"],
        source=row[f"{prefix}source"],
        gender=row[f"{prefix}gender"],
        ethnicity=row[f"{prefix}ethnicity"],
        age=row[f"{prefix}age"],
        education=row[f"{prefix}education"],
        created_at=row[f"{prefix}created_at"],
    )
