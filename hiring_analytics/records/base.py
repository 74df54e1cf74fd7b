"""Abstract read-model port for raw recruiting records."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date

from hiring_analytics.core.schemas import (
    ApplicantRecord,
    Application,
    ApplicationStatus,
    JobVariant,
    SourcedCandidate,
    StageTransition,
)


class RecordSource(ABC):
    """Base class that every raw-record backend must implement.

    Date bounds are inclusive and compare calendar days. Implementations raise
    ``UpstreamDataError`` when the underlying store cannot be read.
    """

    @abstractmethod
    def list_company_ids(self) -> list[str]:
        """Return every company that owns a job variant or an application."""

    @abstractmethod
    def list_job_variants(self, company_id: str | None = None) -> list[JobVariant]:
        """Return job variants, optionally restricted to one company."""

    @abstractmethod
    def fetch_applications(
        self,
        *,
        company_id: str | None = None,
        job_variant_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        status: ApplicationStatus | None = None,
    ) -> list[Application]:
        """Return applications filtered by owner, ``applied_at`` day and status."""

    @abstractmethod
    def fetch_applicants(
        self,
        *,
        company_id: str | None = None,
        job_variant_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[ApplicantRecord]:
        """Return applications joined with their candidates."""

    @abstractmethod
    def fetch_sourced_candidates(
        self,
        *,
        company_id: str | None = None,
        created_on: date | None = None,
    ) -> list[SourcedCandidate]:
        """Return candidates with their earliest application.

        With ``company_id`` only candidates that applied to that company are
        returned, paired with their earliest application there.
        """

    @abstractmethod
    def fetch_stage_history(self, application_ids: Sequence[str]) -> list[StageTransition]:
        """Return stage transitions for the given applications, oldest first."""
