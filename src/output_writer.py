"""
Output Writer - renders page statistics as markdown/JSON and batch rows as CSV
"""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from models import REPORT_ORDER, BatchRow, Metric, PageSummary

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Store",
    "Desktop - Media",
    "Desktop - Mediana",
    "Mobile - Media",
    "Mobile - Mediana",
]


def check_file_availability(path: Path) -> Path:
    """
    Return `path`, or the first free "name (N).ext" sibling when it exists.

    Example:
      out.csv and "out (1).csv" exist -> "out (2).csv"
    """
    path = Path(path)
    if not path.exists():
        return path

    index = 1
    candidate = path.with_name(f"{path.stem} ({index}){path.suffix}")
    while candidate.exists():
        index += 1
        candidate = path.with_name(f"{path.stem} ({index}){path.suffix}")
    return candidate


class OutputWriter:
    """Formats a single page summary for the console"""

    def _precision(self, metric: Metric) -> tuple[int, int]:
        # (mean digits, deviation/interval digits)
        if metric is Metric.SCORE:
            return 3, 6
        return 2, 2

    def _escape_md_cell(self, value: str) -> str:
        return (value or "").replace("|", "\\|").replace("\n", " ").strip()

    def render_markdown(self, summary: PageSummary) -> str:
        lines = [
            f"Page result - {summary.url} ({summary.strategy}, {summary.success_runs}/{summary.requested_runs} runs)",
            "| Metric | Mean | Standard deviation | Confidence Interval (95%) |",
            "|--------|--------|--------|--------|",
        ]
        for metric in REPORT_ORDER:
            mean_digits, spread_digits = self._precision(metric)
            low, high = summary.confidence_interval[metric]
            row = [
                self._escape_md_cell(metric.label),
                f"{summary.mean[metric]:.{mean_digits}f}",
                f"{summary.std_dev[metric]:.{spread_digits}f}",
                f"[{low:.{spread_digits}f}, {high:.{spread_digits}f}]",
            ]
            lines.append("| " + " | ".join(row) + " |")
        return "\n".join(lines)

    def summary_to_dict(self, summary: PageSummary) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": summary.url,
            "strategy": summary.strategy.value,
            "success_runs": summary.success_runs,
        }
        for metric in Metric:
            low, high = summary.confidence_interval[metric]
            payload[metric.value] = {
                "mean": summary.mean[metric],
                "std_dev": summary.std_dev[metric],
                "confidence_interval": [low, high],
                "median": summary.median[metric],
            }
        return payload

    def render_json(self, summary: PageSummary) -> str:
        return json.dumps(self.summary_to_dict(summary), indent=2)

    def render(self, summary: PageSummary, output_format: str) -> str:
        if output_format == "md":
            return self.render_markdown(summary)
        if output_format == "json":
            return self.render_json(summary)
        raise ValueError(f"Unknown output format: {output_format}")


class BatchCsvWriter:
    """Appends one CSV row per URL, flushing after each so partial batches survive"""

    def __init__(self, path: Path):
        self.path = check_file_availability(path)
        self._file: Optional[TextIO] = None
        self._writer = None

    def __enter__(self) -> "BatchCsvWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file)
        self._writer.writerow(CSV_HEADER)
        self._file.flush()
        logger.info(f"CSV output: {self.path}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def write_row(self, row: BatchRow) -> None:
        if self._writer is None:
            raise RuntimeError("BatchCsvWriter used outside of a with block")
        self._writer.writerow(
            [
                row.url,
                f"{row.desktop_mean:.3f}",
                f"{row.desktop_median:.3f}",
                f"{row.mobile_mean:.3f}",
                f"{row.mobile_median:.3f}",
            ]
        )
        self._file.flush()


def format_failed_report(failed: List[str]) -> str:
    if not failed:
        return "✅ All URLs completed"
    lines = [f"❌ {len(failed)} URLs failed after all retries:"]
    lines.extend(f"  - {url}" for url in failed)
    return "\n".join(lines)
