"""
Batch Runner - tests a list of URLs on mobile and desktop, retrying failures
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from aggregation import InsufficientDataError, mean, median
from collector import CollectionResult
from models import BatchReport, BatchRow, Metric, Strategy
from run_metrics import RunMetrics

logger = logging.getLogger(__name__)

RowCallback = Callable[[BatchRow], None]


def load_urls(path: Path) -> List[str]:
    """Read one URL per line, skipping blanks and # comments"""
    urls: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            urls.append(line)
    logger.info(f"Loaded {len(urls)} URLs from {path}")
    return urls


def _is_full(result: CollectionResult) -> bool:
    scores = result.metric_set[Metric.SCORE]
    return result.is_complete and all(score != 0 for score in scores)


class BatchRunner:
    """
    Runs every URL through the collector, one URL at a time.

    A URL succeeds when both strategies return all requested runs with
    non-zero scores. Failed URLs get `retry_passes` more attempts; each pass
    walks the failed list from the end. Rows are handed to `on_row` as soon
    as a URL concludes.
    """

    def __init__(
        self,
        collector,
        runs: int,
        retry_passes: int = 2,
        on_row: Optional[RowCallback] = None,
        metrics: Optional[RunMetrics] = None,
    ):
        if runs < 1:
            raise ValueError(f"runs must be positive, got {runs}")
        if retry_passes < 0:
            raise ValueError(f"retry_passes must be non-negative, got {retry_passes}")
        self.collector = collector
        self.runs = runs
        self.retry_passes = retry_passes
        self.on_row = on_row
        self.metrics = metrics or RunMetrics(mode="batch")

    async def _collect(self, url: str, strategy: Strategy) -> CollectionResult:
        result = await self.collector.collect(url, strategy, self.runs)
        self.metrics.inc("runs_requested", self.runs)
        self.metrics.inc("runs_failed", self.runs - result.success_runs)
        return result

    async def test_url(self, url: str) -> Optional[BatchRow]:
        """Score mean and median per strategy, or None when the URL failed"""
        try:
            mobile = await self._collect(url, Strategy.MOBILE)
            desktop = await self._collect(url, Strategy.DESKTOP)
        except ValueError as exc:
            logger.error(f"Cannot test {url}: {exc}")
            return None

        if not (_is_full(mobile) and _is_full(desktop)):
            logger.warning(
                f"{url}: incomplete result (mobile {mobile.success_runs}/{self.runs}, "
                f"desktop {desktop.success_runs}/{self.runs})"
            )
            return None

        try:
            mobile_scores = mobile.metric_set[Metric.SCORE]
            desktop_scores = desktop.metric_set[Metric.SCORE]
            return BatchRow(
                url=url,
                desktop_mean=mean(desktop_scores),
                desktop_median=median(desktop_scores),
                mobile_mean=mean(mobile_scores),
                mobile_median=median(mobile_scores),
            )
        except InsufficientDataError as exc:
            logger.warning(f"{url}: {exc}")
            return None

    def _emit(self, report: BatchReport, row: BatchRow) -> None:
        report.rows.append(row)
        if self.on_row is not None:
            self.on_row(row)

    async def _attempt(self, url: str, attempts: List[int], index: int) -> Optional[BatchRow]:
        attempts[index] += 1
        row = await self.test_url(url)
        if row is not None:
            row = row.model_copy(update={"attempts": attempts[index]})
        self.metrics.record_event(
            "url_tested",
            url=url,
            attempt=attempts[index],
            success=row is not None,
            completed_at=row.completed_at.isoformat() if row is not None else None,
        )
        return row

    async def run(self, urls: Sequence[str]) -> BatchReport:
        report = BatchReport()
        attempts = [0] * len(urls)
        failed: List[int] = []
        self.metrics.inc("urls_total", len(urls))

        for index, url in enumerate(urls):
            row = await self._attempt(url, attempts, index)
            if row is None:
                logger.info(f"{url} failed, queued for retry")
                failed.append(index)
                continue
            self._emit(report, row)

        for pass_number in range(1, self.retry_passes + 1):
            if not failed:
                break
            report.retry_passes_run = pass_number
            logger.info(f"Retry pass {pass_number}/{self.retry_passes}: {len(failed)} URLs")
            for position in reversed(range(len(failed))):
                index = failed[position]
                self.metrics.inc("retry_attempts")
                row = await self._attempt(urls[index], attempts, index)
                if row is None:
                    continue
                del failed[position]
                self._emit(report, row)

        for index in failed:
            url = urls[index]
            logger.error(f"{url} failed after {attempts[index]} attempts")
            report.failed.append(url)
            self._emit(report, BatchRow.placeholder(url, attempts[index]))

        self.metrics.inc("urls_succeeded", len(urls) - len(failed))
        self.metrics.inc("urls_failed", len(failed))
        self.metrics.set_gauge("runs_per_strategy", self.runs)
        self.metrics.set_gauge("retry_passes_run", report.retry_passes_run)
        return report
