"""Core data models for the recruitment analytics engine.

Three groups live here:
  * read models consumed from the operational stores (applications, candidates,
    job variants, stage history),
  * derived metric rows written by the aggregation engine,
  * query and response value objects served to the reporting layer.

All models are frozen so cached payloads can be shared between callers.
"""

from datetime import date, datetime
from enum import Enum
from typing import Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ApplicationStatus(str, Enum):
    """Funnel stage of an application."""

    APPLIED = "applied"
    SCREENING = "screening"
    SHORTLISTED = "shortlisted"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETED = "interview_completed"
    OFFER_EXTENDED = "offer_extended"
    OFFER_ACCEPTED = "offer_accepted"
    HIRED = "hired"
    REJECTED = "rejected"


class AgeBucket(str, Enum):
    UNDER_25 = "under25"
    AGE_25_34 = "25-34"
    AGE_35_44 = "35-44"
    AGE_45_54 = "45-54"
    OVER_55 = "over55"
    UNKNOWN = "unknown"


class Granularity(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ExportFormat(str, Enum):
    CSV = "csv"
    PDF = "pdf"
    EXCEL = "excel"


class ReportSection(str, Enum):
    SUMMARY = "summary"
    PIPELINE = "pipeline"
    SOURCES = "sources"
    DIVERSITY = "diversity"
    TRENDS = "trends"


UNKNOWN = "unknown"

# Possible gender labels; the diversity index is normalized against this domain.
GENDER_CATEGORIES: tuple[str, ...] = (
    "male",
    "female",
    "non_binary",
    "prefer_not_to_say",
    UNKNOWN,
)

# Statuses that count as "interviewed" for source performance.
INTERVIEWED_STATUSES = frozenset({
    ApplicationStatus.INTERVIEW_SCHEDULED,
    ApplicationStatus.INTERVIEW_COMPLETED,
    ApplicationStatus.OFFER_EXTENDED,
    ApplicationStatus.HIRED,
})


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


class JobVariant(BaseModel):
    """A company's posting of a job, the finest pipeline grouping."""

    model_config = ConfigDict(frozen=True)

    id: str
    company_id: str
    title: str = ""
    is_active: bool = True


class Candidate(BaseModel):
    """A candidate with the demographic fields used for diversity metrics."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: str | None = None
    gender: str | None = None
    ethnicity: str | None = None
    age: float | None = None
    education: str | None = None
    created_at: datetime


class Application(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    candidate_id: str
    job_variant_id: str | None = None
    company_id: str
    status: ApplicationStatus
    fit_score: float | None = None
    applied_at: datetime
    last_updated: datetime


class StageTransition(BaseModel):
    """One entry of an application's stage history."""

    model_config = ConfigDict(frozen=True)

    application_id: str
    from_stage: ApplicationStatus | None = None
    to_stage: ApplicationStatus
    changed_at: datetime


class ApplicantRecord(BaseModel):
    """An application joined with its candidate (None when the candidate is gone)."""

    model_config = ConfigDict(frozen=True)

    application: Application
    candidate: Candidate | None = None


class SourcedCandidate(BaseModel):
    """A candidate paired with their earliest application, if any."""

    model_config = ConfigDict(frozen=True)

    candidate: Candidate
    first_application: Application | None = None


# ---------------------------------------------------------------------------
# Metric rows
# ---------------------------------------------------------------------------


class MetricIdentity(NamedTuple):
    """Identity of pipeline and diversity rows. ``job_variant_id=None`` is the rollup."""

    company_id: str
    job_variant_id: str | None
    date_bucket: date


class SourceIdentity(NamedTuple):
    company_id: str
    source: str
    date_bucket: date


class PipelineMetricsRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    company_id: str
    job_variant_id: str | None = None
    date_bucket: date
    total_applications: int = 0
    applications_screened: int = 0
    applications_shortlisted: int = 0
    interviews_scheduled: int = 0
    interviews_completed: int = 0
    offers_extended: int = 0
    offers_accepted: int = 0
    candidates_hired: int = 0
    candidates_rejected: int = 0
    avg_time_to_screen_days: float | None = None
    avg_time_to_interview_days: float | None = None
    avg_time_to_offer_days: float | None = None
    avg_time_to_fill_days: float | None = None

    @property
    def identity(self) -> MetricIdentity:
        return MetricIdentity(self.company_id, self.job_variant_id, self.date_bucket)


class SourcePerformanceRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    company_id: str
    source: str
    date_bucket: date
    total_candidates: int = 0
    qualified_candidates: int = 0
    interviewed_candidates: int = 0
    hired_candidates: int = 0
    quality_score: float | None = None
    cost_per_hire: float | None = None
    conversion_rate: float = 0.0
    roi: float | None = None

    @property
    def identity(self) -> SourceIdentity:
        return SourceIdentity(self.company_id, self.source, self.date_bucket)


class DemographicDistributions(BaseModel):
    """Label → count for each demographic axis."""

    model_config = ConfigDict(frozen=True)

    gender: dict[str, int] = Field(default_factory=dict)
    ethnicity: dict[str, int] = Field(default_factory=dict)
    age: dict[str, int] = Field(default_factory=dict)
    education: dict[str, int] = Field(default_factory=dict)


class BiasIndicators(BaseModel):
    model_config = ConfigDict(frozen=True)

    gender_bias: float = 0.0
    ethnicity_bias: float = 0.0
    age_bias: float = 0.0
    education_bias: float = 0.0


class DiversityMetricsRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    company_id: str
    job_variant_id: str | None = None
    date_bucket: date
    total_applicants: int = 0
    gender_distribution: dict[str, int] = Field(default_factory=dict)
    ethnicity_distribution: dict[str, int] = Field(default_factory=dict)
    age_distribution: dict[str, int] = Field(default_factory=dict)
    education_distribution: dict[str, int] = Field(default_factory=dict)
    hired_diversity: DemographicDistributions = Field(default_factory=DemographicDistributions)
    bias_indicators: BiasIndicators = Field(default_factory=BiasIndicators)

    @model_validator(mode="after")
    def hired_subset_of_applicants(self) -> "DiversityMetricsRow":
        pairs = (
            ("gender", self.gender_distribution, self.hired_diversity.gender),
            ("ethnicity", self.ethnicity_distribution, self.hired_diversity.ethnicity),
            ("age", self.age_distribution, self.hired_diversity.age),
            ("education", self.education_distribution, self.hired_diversity.education),
        )
        for axis, applicants, hired in pairs:
            missing = set(hired) - set(applicants)
            if missing:
                msg = f"hired {axis} labels not among applicants: {sorted(missing)}"
                raise ValueError(msg)
        return self

    @property
    def identity(self) -> MetricIdentity:
        return MetricIdentity(self.company_id, self.job_variant_id, self.date_bucket)


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


class AnalyticsQuery(BaseModel):
    """Filter dimensions shared by every analytics question."""

    model_config = ConfigDict(frozen=True)

    start_date: date | None = None
    end_date: date | None = None
    company_id: str | None = None
    job_variant_id: str | None = None
    source: str | None = None
    granularity: Granularity = Granularity.DAILY

    @model_validator(mode="after")
    def end_not_before_start(self) -> "AnalyticsQuery":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            msg = "end_date must not be before start_date"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TimeToFillMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    average_days: float = 0.0
    median_days: float = 0.0
    min_days: float = 0.0
    max_days: float = 0.0
    total_positions: int = 0
    filled_positions: int = 0
    open_positions: int = 0


class ConversionRates(BaseModel):
    """Sequential funnel ratios, each a percentage."""

    model_config = ConfigDict(frozen=True)

    application_to_screening: float = 0.0
    screening_to_shortlist: float = 0.0
    shortlist_to_interview: float = 0.0
    interview_to_offer: float = 0.0
    offer_to_hire: float = 0.0
    overall_conversion: float = 0.0


class PipelineBottleneck(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: ApplicationStatus
    drop_off_rate: float
    average_time_in_stage: float
    candidates_in_stage: int
    is_bottleneck: bool


class StagePerformance(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: ApplicationStatus
    total_candidates: int
    average_time_in_stage: float


class SourceAnalytics(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    total_candidates: int
    qualified_candidates: int
    interviewed_candidates: int
    hired_candidates: int
    conversion_rate: float
    quality_score: float
    cost_per_hire: float | None = None
    roi: float | None = None


class CategoryBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    applicants: dict[str, int] = Field(default_factory=dict)
    hired: dict[str, int] = Field(default_factory=dict)
    bias: float = 0.0


class DiversityAnalytics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_applicants: int = 0
    total_hired: int = 0
    diversity_index: float = 0.0
    gender_balance: CategoryBalance = Field(default_factory=CategoryBalance)
    ethnicity_balance: CategoryBalance = Field(default_factory=CategoryBalance)
    age_balance: CategoryBalance = Field(default_factory=CategoryBalance)
    education_balance: CategoryBalance = Field(default_factory=CategoryBalance)
    bias_alerts: list[str] = Field(default_factory=list)


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: date
    end_date: date


class AnalyticsSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    time_to_fill: TimeToFillMetrics
    conversion_rates: ConversionRates
    bottlenecks: list[PipelineBottleneck]
    total_applications: int
    total_hires: int
    active_positions: int
    date_range: DateRange


class TrendPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    period: date
    value: float


class TrendData(BaseModel):
    model_config = ConfigDict(frozen=True)

    applications: list[TrendPoint] = Field(default_factory=list)
    hires: list[TrendPoint] = Field(default_factory=list)
    time_to_fill: list[TrendPoint] = Field(default_factory=list)


class DashboardData(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: AnalyticsSummary
    pipeline_bottlenecks: list[PipelineBottleneck]
    source_performance: list[SourceAnalytics]
    diversity_analytics: DiversityAnalytics
    trend_data: TrendData
    last_updated: datetime


class BiasDetection(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str
    threshold: float
    actual_value: float
    severity: Literal["low", "medium", "high"]
    description: str
    recommendation: str


class DiversityReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    company_id: str
    date_range: DateRange
    overall_diversity_index: float
    bias_indicators: list[BiasDetection]
    recommendations: list[str]


class ReportPayload(BaseModel):
    """Section data handed to an export renderer. Unrequested sections stay None."""

    model_config = ConfigDict(frozen=True)

    summary: AnalyticsSummary | None = None
    bottlenecks: list[PipelineBottleneck] | None = None
    stage_performance: list[StagePerformance] | None = None
    sources: list[SourceAnalytics] | None = None
    diversity: DiversityAnalytics | None = None
    trends: TrendData | None = None


class ReportResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    report_id: str
    format: ExportFormat
    sections: list[ReportSection]
    download_url: str


class AggregationOutcome(BaseModel):
    """Result of aggregating one company in an isolated run."""

    model_config = ConfigDict(frozen=True)

    company_id: str
    succeeded: bool
    error: str | None = None


class CacheStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: int
    keys: list[str]
