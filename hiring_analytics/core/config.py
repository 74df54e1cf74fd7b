"""Configuration models and YAML loader for the analytics engine."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/analytics.db"


class CacheConfig(BaseModel):
    """TTLs and size bound for the process-local analytics cache."""

    default_ttl_seconds: float = Field(default=300.0, ge=1.0)
    dashboard_ttl_seconds: float = Field(default=600.0, ge=1.0)
    max_entries: int = Field(default=1000, ge=1)


class AggregationConfig(BaseModel):
    """Knobs for the batch aggregation jobs."""

    qualified_fit_score: float = Field(default=70.0, ge=0.0, le=100.0)
    max_workers: int = Field(default=4, ge=1)
    source_cost_per_hire: dict[str, float] = Field(default_factory=dict)

    @field_validator("source_cost_per_hire")
    @classmethod
    def costs_not_negative(cls, v: dict[str, float]) -> dict[str, float]:
        for source, cost in v.items():
            if cost < 0:
                msg = f"cost per hire for '{source}' must not be negative"
                raise ValueError(msg)
        return v


class BottleneckConfig(BaseModel):
    """Thresholds for flagging a pipeline stage as a bottleneck."""

    drop_off_threshold: float = Field(default=50.0, ge=0.0, le=100.0)
    max_days_in_stage: float = Field(default=7.0, ge=0.0)
    interview_turnaround_days: float = Field(default=1.0, ge=0.0)
    offer_response_days: float = Field(default=3.0, ge=0.0)


class BiasThresholds(BaseModel):
    """Per-category bias thresholds in [0, 1]."""

    gender: float = Field(default=0.1, ge=0.0, le=1.0)
    ethnicity: float = Field(default=0.15, ge=0.0, le=1.0)
    age: float = Field(default=0.2, ge=0.0, le=1.0)
    education: float = Field(default=0.3, ge=0.0, le=1.0)


class ReportingConfig(BaseModel):
    """Dashboard and report settings."""

    trend_days: int = Field(default=90, ge=1)
    default_window_days: int = Field(default=30, ge=1)
    output_dir: str = "data/reports"


class Settings(BaseModel):
    """Top-level settings loaded from YAML.

    ``diversity_alerts`` drives the alerts attached to aggregated diversity
    analytics; ``bias_detection`` drives the standalone bias-detection report.
    The two policies are configured separately.
    """

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    bottlenecks: BottleneckConfig = Field(default_factory=BottleneckConfig)
    diversity_alerts: BiasThresholds = Field(default_factory=BiasThresholds)
    bias_detection: BiasThresholds = Field(default_factory=BiasThresholds)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
