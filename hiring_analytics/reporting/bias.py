"""Bias-detection and diversity report builders.

Pure functions over already-computed indicators so the orchestrator decides
where the numbers come from.
"""

from typing import Literal

from hiring_analytics.core.config import BiasThresholds
from hiring_analytics.core.schemas import (
    BiasDetection,
    BiasIndicators,
    DateRange,
    DiversityAnalytics,
    DiversityReport,
)

Severity = Literal["low", "medium", "high"]

# (metric label, indicator field, threshold field, description, balanced advice, action advice)
_DETECTED_AXES = (
    (
        "Gender Bias",
        "gender_bias",
        "gender",
        "Measures gender representation bias in hiring decisions",
        "Gender representation appears balanced. Continue monitoring.",
        "Consider reviewing hiring practices to ensure gender-neutral evaluation criteria.",
    ),
    (
        "Ethnicity Bias",
        "ethnicity_bias",
        "ethnicity",
        "Measures ethnic diversity bias in hiring decisions",
        "Ethnic diversity appears adequate. Continue monitoring.",
        "Consider expanding recruitment channels to reach more diverse candidate pools.",
    ),
    (
        "Age Bias",
        "age_bias",
        "age",
        "Measures age-related bias in hiring decisions",
        "Age distribution appears balanced. Continue monitoring.",
        "Review job requirements and recruitment channels for potential age-related barriers.",
    ),
)

LOW_DIVERSITY_INDEX = 0.6
GENDER_BALANCE_LIMIT = 0.1


def severity_for(value: float, threshold: float) -> Severity:
    """``low`` up to the threshold, ``medium`` up to twice it, ``high`` beyond."""
    if value <= threshold:
        return "low"
    if value <= threshold * 2:
        return "medium"
    return "high"


def build_bias_detection(indicators: BiasIndicators, thresholds: BiasThresholds) -> list[BiasDetection]:
    """One entry per gender / ethnicity / age indicator, graded against ``thresholds``."""
    detections = []
    for metric, field, threshold_field, description, balanced, action in _DETECTED_AXES:
        value = abs(getattr(indicators, field))
        threshold = getattr(thresholds, threshold_field)
        detections.append(BiasDetection(
            metric=metric,
            threshold=threshold,
            actual_value=value,
            severity=severity_for(value, threshold),
            description=description,
            recommendation=balanced if value < threshold else action,
        ))
    return detections


def diversity_recommendations(analytics: DiversityAnalytics) -> list[str]:
    recommendations = []
    if analytics.diversity_index < LOW_DIVERSITY_INDEX:
        recommendations.append(
            "Consider expanding recruitment channels to reach more diverse candidates"
        )
    if analytics.gender_balance.bias > GENDER_BALANCE_LIMIT:
        recommendations.append(
            "Review job descriptions and requirements for gender-neutral language"
        )
    if analytics.bias_alerts:
        recommendations.append("Address identified bias alerts through targeted interventions")
    if not recommendations:
        recommendations.append(
            "Diversity metrics are within acceptable ranges. Continue monitoring."
        )
    return recommendations


def build_diversity_report(
    company_id: str,
    date_range: DateRange,
    analytics: DiversityAnalytics,
    indicators: BiasIndicators,
    thresholds: BiasThresholds,
) -> DiversityReport:
    return DiversityReport(
        company_id=company_id,
        date_range=date_range,
        overall_diversity_index=analytics.diversity_index,
        bias_indicators=build_bias_detection(indicators, thresholds),
        recommendations=diversity_recommendations(analytics),
    )
