"""
Statistics engine - mean, deviation, confidence interval and median per metric
"""

from __future__ import annotations

import math
from typing import Callable, Sequence, Tuple, TypeVar

from models import Metric, MetricSet, PageSummary, StatisticResult, Strategy

T = TypeVar("T")

# z-value for a two-sided 95% confidence level
Z_VALUE = 1.96


class InsufficientDataError(ValueError):
    """Raised when a statistic is requested over zero samples."""


def _require_samples(samples: Sequence[float], what: str) -> None:
    if len(samples) == 0:
        raise InsufficientDataError(f"Cannot compute {what} of an empty sample")


def mean(samples: Sequence[float]) -> float:
    _require_samples(samples, "mean")
    return sum(samples) / len(samples)


def variance(samples: Sequence[float], sample_mean: float) -> float:
    """Population variance around an already computed mean."""
    _require_samples(samples, "variance")
    return sum((sample_mean - value) ** 2 for value in samples) / len(samples)


def std_deviation(samples: Sequence[float], sample_mean: float) -> float:
    return math.sqrt(variance(samples, sample_mean))


def confidence_interval(sample_mean: float, deviation: float, number_of_runs: int) -> Tuple[float, float]:
    """
    95% interval for the mean given a known standard deviation.

    margin = z * deviation / sqrt(n)
    """
    if number_of_runs <= 0:
        raise InsufficientDataError("Cannot compute a confidence interval over zero runs")
    margin = Z_VALUE * (deviation / math.sqrt(number_of_runs))
    return sample_mean - margin, sample_mean + margin


def median(samples: Sequence[float]) -> float:
    """
    Middle of the sorted samples.

    Even-length samples average sorted[mid] and sorted[mid + 1], with
    mid = n // 2. Two samples have no mid + 1 and yield sorted[1].
    """
    _require_samples(samples, "median")
    ordered = sorted(samples)
    mid = len(ordered) // 2

    if len(ordered) % 2 == 1:
        return ordered[mid]
    if mid + 1 >= len(ordered):
        return ordered[mid]
    return (ordered[mid] + ordered[mid + 1]) / 2


# === Per-metric application ===

def apply_per_metric(metric_set: MetricSet, fn: Callable[[Metric, Sequence[float]], T]) -> StatisticResult[T]:
    """Apply fn to every metric's samples, keeping the metric keys"""
    return StatisticResult({metric: fn(metric, metric_set[metric]) for metric in metric_set})


def calculate_mean(metric_set: MetricSet) -> StatisticResult[float]:
    return apply_per_metric(metric_set, lambda _, samples: mean(samples))


def calculate_variance(metric_set: MetricSet, set_mean: StatisticResult[float]) -> StatisticResult[float]:
    return apply_per_metric(metric_set, lambda metric, samples: variance(samples, set_mean[metric]))


def calculate_deviation(metric_set: MetricSet, set_mean: StatisticResult[float]) -> StatisticResult[float]:
    return apply_per_metric(metric_set, lambda metric, samples: std_deviation(samples, set_mean[metric]))


def calculate_confidence_interval(
    metric_set: MetricSet,
    set_mean: StatisticResult[float],
    set_deviation: StatisticResult[float],
) -> StatisticResult[Tuple[float, float]]:
    # n is the number of samples actually collected, not the number requested
    runs = metric_set.run_count
    return apply_per_metric(
        metric_set,
        lambda metric, _: confidence_interval(set_mean[metric], set_deviation[metric], runs),
    )


def calculate_median(metric_set: MetricSet) -> StatisticResult[float]:
    return apply_per_metric(metric_set, lambda _, samples: median(samples))


def summarize(metric_set: MetricSet, url: str, strategy: Strategy, requested_runs: int) -> PageSummary:
    """Compute every statistic the reporters need for one page"""
    if metric_set.is_empty:
        raise InsufficientDataError(f"No successful runs for {url} ({strategy})")

    set_mean = calculate_mean(metric_set)
    set_deviation = calculate_deviation(metric_set, set_mean)
    return PageSummary(
        url=url,
        strategy=strategy,
        success_runs=metric_set.run_count,
        requested_runs=requested_runs,
        mean=set_mean,
        std_dev=set_deviation,
        confidence_interval=calculate_confidence_interval(metric_set, set_mean, set_deviation),
        median=calculate_median(metric_set),
    )
