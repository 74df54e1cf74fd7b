"""Metrics store: keyed upsert and range access to the three metric families.

Writes to one identity are serialized by a lock stripe chosen from the
identity, and every statement runs under the connection lock. Pass the same
connection lock to every component that shares the SQLite connection.
"""

import logging
import sqlite3
import threading
from collections.abc import Hashable, Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from datetime import date
from typing import Any

from hiring_analytics.core.db import (
    get_diversity_metrics,
    get_pipeline_metrics,
    get_source_performance,
    query_diversity_metrics,
    query_pipeline_metrics,
    query_source_performance,
    upsert_diversity_metrics,
    upsert_pipeline_metrics,
    upsert_source_performance,
)
from hiring_analytics.core.schemas import (
    DiversityMetricsRow,
    MetricIdentity,
    PipelineMetricsRow,
    SourceIdentity,
    SourcePerformanceRow,
)

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 32


class MetricsStore:
    """Repository over the pipeline, source and diversity metric tables.

    Usage::

        store = MetricsStore(conn)
        store.upsert_pipeline(MetricIdentity("acme", None, day), {"candidates_hired": 3})
        rows = store.query_pipeline(company_id="acme", date_from=day, date_to=day)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        lock: AbstractContextManager[Any] | None = None,
    ) -> None:
        self._conn = conn
        self._conn_lock = lock if lock is not None else threading.RLock()
        self._stripes = tuple(threading.Lock() for _ in range(_LOCK_STRIPES))

    # -- writes -------------------------------------------------------------

    def upsert_pipeline(self, identity: MetricIdentity, patch: Mapping[str, Any]) -> None:
        with self._locked(("pipeline", identity)):
            upsert_pipeline_metrics(self._conn, identity, patch)
        logger.debug("Upserted pipeline row %s", identity)

    def upsert_source(self, identity: SourceIdentity, patch: Mapping[str, Any]) -> None:
        with self._locked(("source", identity)):
            upsert_source_performance(self._conn, identity, patch)
        logger.debug("Upserted source row %s", identity)

    def upsert_diversity(self, identity: MetricIdentity, patch: Mapping[str, Any]) -> None:
        with self._locked(("diversity", identity)):
            upsert_diversity_metrics(self._conn, identity, patch)
        logger.debug("Upserted diversity row %s", identity)

    # -- reads --------------------------------------------------------------

    def get_pipeline(self, identity: MetricIdentity) -> PipelineMetricsRow | None:
        with self._conn_lock:
            return get_pipeline_metrics(self._conn, identity)

    def get_source(self, identity: SourceIdentity) -> SourcePerformanceRow | None:
        with self._conn_lock:
            return get_source_performance(self._conn, identity)

    def get_diversity(self, identity: MetricIdentity) -> DiversityMetricsRow | None:
        with self._conn_lock:
            return get_diversity_metrics(self._conn, identity)

    def query_pipeline(
        self,
        company_id: str | None = None,
        job_variant_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[PipelineMetricsRow]:
        with self._conn_lock:
            return query_pipeline_metrics(self._conn, company_id, job_variant_id, date_from, date_to)

    def query_source(
        self,
        company_id: str | None = None,
        source: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[SourcePerformanceRow]:
        with self._conn_lock:
            return query_source_performance(self._conn, company_id, source, date_from, date_to)

    def query_diversity(
        self,
        company_id: str | None = None,
        job_variant_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[DiversityMetricsRow]:
        with self._conn_lock:
            return query_diversity_metrics(self._conn, company_id, job_variant_id, date_from, date_to)

    @contextmanager
    def _locked(self, key: Hashable) -> Iterator[None]:
        stripe = self._stripes[hash(key) % len(self._stripes)]
        with stripe, self._conn_lock:
            yield
