"""Exceptions raised by the analytics engine."""

from datetime import date


class AnalyticsError(Exception):
    """Base class for analytics engine failures."""


class UpstreamDataError(AnalyticsError):
    """Fetching raw records from an operational store failed."""


class AggregationError(AnalyticsError):
    """Aggregating one company / job variant failed.

    Carries enough context to re-run exactly the failed entity.
    """

    def __init__(
        self,
        message: str,
        *,
        company_id: str | None,
        job_variant_id: str | None,
        date_bucket: date,
    ) -> None:
        super().__init__(message)
        self.company_id = company_id
        self.job_variant_id = job_variant_id
        self.date_bucket = date_bucket
