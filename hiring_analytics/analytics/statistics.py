"""Pure bucketing and statistics helpers.

Every function is total over well-formed input: empty or degenerate input
yields a defined zero value instead of raising.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta

from hiring_analytics.core.schemas import AgeBucket, Granularity

_SECONDS_PER_DAY = 86_400.0


def categorize_age(age: float | None) -> AgeBucket:
    """Map a raw age to its bucket. Missing or non-positive ages are unknown."""
    if age is None or math.isnan(age) or age <= 0:
        return AgeBucket.UNKNOWN
    if age < 25:
        return AgeBucket.UNDER_25
    if age < 35:
        return AgeBucket.AGE_25_34
    if age < 45:
        return AgeBucket.AGE_35_44
    if age < 55:
        return AgeBucket.AGE_45_54
    return AgeBucket.OVER_55


def period_start(day: date, granularity: Granularity) -> date:
    """First day of the period containing ``day`` (weeks start on Monday)."""
    if granularity is Granularity.WEEKLY:
        return day - timedelta(days=day.weekday())
    if granularity is Granularity.MONTHLY:
        return day.replace(day=1)
    if granularity is Granularity.QUARTERLY:
        return day.replace(month=3 * ((day.month - 1) // 3) + 1, day=1)
    if granularity is Granularity.YEARLY:
        return day.replace(month=1, day=1)
    return day


def shannon_diversity_index(distribution: Mapping[str, int], num_categories: int) -> float:
    """Normalized Shannon entropy of ``distribution`` in [0, 1].

    Args:
        distribution: Label → count. Zero counts are ignored.
        num_categories: Size of the label domain the entropy is normalized
            against. Values below the number of observed labels are raised to
            it so the result never exceeds 1.
    """
    counts = [c for c in distribution.values() if c > 0]
    total = sum(counts)
    arity = max(num_categories, len(counts))
    if total == 0 or arity < 2:
        return 0.0

    entropy = 0.0
    for count in counts:
        p = count / total
        entropy -= p * math.log(p)
    return max(0.0, min(entropy / math.log(arity), 1.0))


def category_bias(applicant_dist: Mapping[str, int], hired_dist: Mapping[str, int]) -> float:
    """Largest gap between a category's hire share and its applicant share.

    A screening signal in [0, 1], not a significance test.
    """
    total_applicants = sum(applicant_dist.values())
    total_hired = sum(hired_dist.values())
    if total_applicants == 0 or total_hired == 0:
        return 0.0

    max_bias = 0.0
    for category, count in applicant_dist.items():
        applicant_rate = count / total_applicants
        hired_rate = hired_dist.get(category, 0) / total_hired
        max_bias = max(max_bias, abs(hired_rate - applicant_rate))
    return max_bias


def hire_rate_disparity(grouped: Mapping[str, tuple[int, int]]) -> float:
    """Spread between the highest and lowest per-category hire rate, in [-1, 1].

    Args:
        grouped: Category → (applications, hires).

    The spread is reported as negative when the best hire rate is at most 50%,
    which marks the result as carrying no bias signal. Fewer than two
    categories with records yield 0.
    """
    rates = [hires / total for total, hires in grouped.values() if total > 0]
    if len(rates) < 2:
        return 0.0
    highest = max(rates)
    spread = highest - min(rates)
    return spread if highest > 0.5 else -spread


def group_hire_counts(pairs: Iterable[tuple[str, bool]]) -> dict[str, tuple[int, int]]:
    """Fold (category, was_hired) pairs into category → (applications, hires)."""
    grouped: dict[str, tuple[int, int]] = {}
    for category, hired in pairs:
        total, hires = grouped.get(category, (0, 0))
        grouped[category] = (total + 1, hires + int(hired))
    return grouped


def median(sorted_values: Sequence[float]) -> float:
    """Median of an ascending sequence; even lengths average the middle pair."""
    n = len(sorted_values)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2 == 0:
        return (sorted_values[mid - 1] + sorted_values[mid]) / 2
    return float(sorted_values[mid])


def percentile(sorted_values: Sequence[float], quantile: float) -> float:
    """Linearly interpolated percentile of an ascending sequence, ``quantile`` in [0, 1]."""
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])

    quantile = max(0.0, min(quantile, 1.0))
    position = quantile * (len(sorted_values) - 1)
    lower_index = math.floor(position)
    upper_index = min(lower_index + 1, len(sorted_values) - 1)
    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]
    weight = position - lower_index
    return lower_value + (upper_value - lower_value) * weight


def mean(values: Sequence[float]) -> float | None:
    """Arithmetic mean, or None for an empty sequence."""
    if not values:
        return None
    return sum(values) / len(values)


def rate(numerator: float, denominator: float) -> float:
    """``numerator / denominator`` as a percentage, 0 when the denominator is 0."""
    return numerator / denominator * 100 if denominator > 0 else 0.0


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / _SECONDS_PER_DAY


def merge_counts(target: dict[str, int], source: Mapping[str, int]) -> None:
    """Add ``source`` counts into ``target`` in place."""
    for label, count in source.items():
        target[label] = target.get(label, 0) + count
