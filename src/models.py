"""
Data models for PSI Tests
Defines metrics, per-run records, metric sets and summary rows
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, Iterable, Iterator, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class Metric(str, Enum):
    """Lighthouse measurements tracked for every run"""

    CUMULATIVE_LAYOUT_SHIFT = "cumulative_layout_shift"
    FIRST_CONTENTFUL_PAINT = "first_contentful_paint"
    JS_EXECUTION_TIME = "js_execution_time"
    LARGEST_CONTENTFUL_PAINT = "largest_contentful_paint"
    SPEED_INDEX = "speed_index"
    TIME_TO_INTERACTIVE = "time_to_interactive"
    TOTAL_BLOCKING_TIME = "total_blocking_time"
    SCORE = "score"

    @property
    def audit_id(self) -> Optional[str]:
        """Key under lighthouseResult.audits (None for the category score)"""
        return _AUDIT_IDS.get(self)

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def is_timing(self) -> bool:
        return self is not Metric.SCORE


_AUDIT_IDS: Dict[Metric, str] = {
    Metric.CUMULATIVE_LAYOUT_SHIFT: "cumulative-layout-shift",
    Metric.FIRST_CONTENTFUL_PAINT: "first-contentful-paint",
    Metric.JS_EXECUTION_TIME: "bootup-time",
    Metric.LARGEST_CONTENTFUL_PAINT: "largest-contentful-paint",
    Metric.SPEED_INDEX: "speed-index",
    Metric.TIME_TO_INTERACTIVE: "interactive",
    Metric.TOTAL_BLOCKING_TIME: "total-blocking-time",
}

# Table order follows the historical report layout
_LABELS: Dict[Metric, str] = {
    Metric.CUMULATIVE_LAYOUT_SHIFT: "Cumulative Layout shift (CLS)",
    Metric.FIRST_CONTENTFUL_PAINT: "First Contentful Paint (FCP)",
    Metric.LARGEST_CONTENTFUL_PAINT: "Largest Contentful Paint (LCP)",
    Metric.TIME_TO_INTERACTIVE: "Time to Interactive (TTI)",
    Metric.TOTAL_BLOCKING_TIME: "Total Blocking Time (TBT)",
    Metric.SCORE: "Performance score",
    Metric.JS_EXECUTION_TIME: "JavaScript Execution Time",
    Metric.SPEED_INDEX: "Speed Index",
}

REPORT_ORDER: Tuple[Metric, ...] = tuple(_LABELS)


class Strategy(str, Enum):
    """Device class the PSI run emulates"""

    MOBILE = "mobile"
    DESKTOP = "desktop"

    def __str__(self) -> str:
        return self.value


class ResponseParseError(ValueError):
    """Raised when a PSI response body lacks the expected lighthouse fields."""


class RunRecord(BaseModel):
    """Metric values from a single PSI run"""

    model_config = ConfigDict(frozen=True)

    values: Dict[Metric, float]

    @classmethod
    def from_psi_response(cls, payload: Any) -> "RunRecord":
        """Map a runPagespeed JSON body onto metric values"""
        if not isinstance(payload, dict):
            raise ResponseParseError(f"Unexpected response type: {type(payload).__name__}")

        lighthouse = payload.get("lighthouseResult")
        if not isinstance(lighthouse, dict):
            raise ResponseParseError("Missing lighthouseResult")

        audits = lighthouse.get("audits") or {}
        values: Dict[Metric, float] = {}
        for metric in Metric:
            if metric is Metric.SCORE:
                raw = ((lighthouse.get("categories") or {}).get("performance") or {}).get("score")
                source = "categories.performance.score"
            else:
                raw = (audits.get(metric.audit_id) or {}).get("numericValue")
                source = f"audits.{metric.audit_id}.numericValue"
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise ResponseParseError(f"Missing or non-numeric {source}")
            try:
                value = float(raw)
            except (OverflowError, ValueError):
                raise ResponseParseError(f"Out of range {source}") from None
            if not math.isfinite(value):
                raise ResponseParseError(f"Non-finite {source}")
            values[metric] = value

        return cls(values=values)

    @classmethod
    def empty(cls) -> "RunRecord":
        """All-zero placeholder record"""
        return cls(values={metric: 0.0 for metric in Metric})

    @property
    def is_empty(self) -> bool:
        return all(self.values[m] == 0 for m in Metric if m.is_timing)

    def __getitem__(self, metric: Metric) -> float:
        return self.values[metric]


@dataclass(frozen=True)
class FetchSuccess:
    run_index: int
    record: RunRecord


@dataclass(frozen=True)
class FetchFailure:
    run_index: int
    reason: str


FetchOutcome = Union[FetchSuccess, FetchFailure]


class MetricSet(Mapping[Metric, Tuple[float, ...]]):
    """
    Samples per metric for one (url, strategy) collection cycle.

    Every sequence has the same length: the number of successful runs.
    """

    __slots__ = ("_samples",)

    def __init__(self, samples: Mapping[Metric, Sequence[float]]):
        missing = [m.value for m in Metric if m not in samples]
        if missing:
            raise ValueError(f"MetricSet missing metrics: {', '.join(missing)}")

        frozen = {metric: tuple(float(v) for v in samples[metric]) for metric in Metric}
        lengths = {len(values) for values in frozen.values()}
        if len(lengths) > 1:
            raise ValueError(f"MetricSet sequences have different lengths: {sorted(lengths)}")
        self._samples = frozen

    @classmethod
    def from_records(cls, records: Iterable[RunRecord]) -> "MetricSet":
        records = list(records)
        return cls({metric: [record[metric] for record in records] for metric in Metric})

    @property
    def run_count(self) -> int:
        return len(self._samples[Metric.SCORE])

    @property
    def is_empty(self) -> bool:
        return self.run_count == 0

    def __getitem__(self, metric: Metric) -> Tuple[float, ...]:
        return self._samples[metric]

    def __iter__(self) -> Iterator[Metric]:
        return iter(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def __repr__(self) -> str:
        return f"<MetricSet: {self.run_count} runs>"


class StatisticResult(Mapping[Metric, T], Generic[T]):
    """One aggregate value per metric, keyed like the MetricSet it came from"""

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[Metric, T]):
        self._values = dict(values)

    def __getitem__(self, metric: Metric) -> T:
        return self._values[metric]

    def __iter__(self) -> Iterator[Metric]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        inner = ", ".join(f"{m.value}={v!r}" for m, v in self._values.items())
        return f"StatisticResult({inner})"


@dataclass(frozen=True)
class PageSummary:
    """Statistics for one page/strategy pair, ready for reporting"""

    url: str
    strategy: Strategy
    success_runs: int
    requested_runs: int
    mean: StatisticResult[float]
    std_dev: StatisticResult[float]
    confidence_interval: StatisticResult[Tuple[float, float]]
    median: StatisticResult[float]

    @property
    def failed_runs(self) -> int:
        return max(self.requested_runs - self.success_runs, 0)


class BatchRow(BaseModel):
    """Score summary for one URL across both strategies"""

    url: str
    desktop_mean: float = 0.0
    desktop_median: float = 0.0
    mobile_mean: float = 0.0
    mobile_median: float = 0.0
    failed: bool = False
    attempts: int = 1
    completed_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def placeholder(cls, url: str, attempts: int) -> "BatchRow":
        """Zero-valued row for a URL that never produced a full result"""
        return cls(url=url, failed=True, attempts=attempts)

    def __str__(self) -> str:
        if self.failed:
            return f"{self.url} - FAILED after {self.attempts} attempts"
        return (
            f"{self.url} - desktop {self.desktop_mean:.3f}/{self.desktop_median:.3f}, "
            f"mobile {self.mobile_mean:.3f}/{self.mobile_median:.3f}"
        )


@dataclass
class BatchReport:
    """Outcome of a full batch run"""

    rows: list[BatchRow] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    retry_passes_run: int = 0

    @property
    def succeeded(self) -> list[BatchRow]:
        return [row for row in self.rows if not row.failed]
