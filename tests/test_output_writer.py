"""Tests for report rendering and batch CSV output."""

from __future__ import annotations

import csv
import json

import pytest

from aggregation import summarize
from conftest import make_record
from models import BatchRow, Metric, MetricSet, Strategy
from output_writer import CSV_HEADER, BatchCsvWriter, OutputWriter, check_file_availability, format_failed_report


def _summary():
    records = [make_record(score=s) for s in (0.8, 0.9, 1.0)]
    return summarize(MetricSet.from_records(records), "https://example.com", Strategy.MOBILE, requested_runs=4)


def test_check_file_availability_free_path(tmp_path) -> None:
    target = tmp_path / "out.csv"
    assert check_file_availability(target) == target


def test_check_file_availability_numbers_existing(tmp_path) -> None:
    target = tmp_path / "out.csv"
    target.touch()
    assert check_file_availability(target) == tmp_path / "out (1).csv"

    (tmp_path / "out (1).csv").touch()
    assert check_file_availability(target) == tmp_path / "out (2).csv"


def test_markdown_table_has_a_row_per_metric() -> None:
    text = OutputWriter().render(_summary(), "md")
    lines = text.splitlines()

    assert lines[0].startswith("Page result - https://example.com")
    assert lines[1] == "| Metric | Mean | Standard deviation | Confidence Interval (95%) |"
    assert len(lines) == 3 + len(Metric)
    score_line = next(line for line in lines if line.startswith("| Performance score"))
    assert "| 0.900 |" in score_line


def test_json_output_fields() -> None:
    payload = json.loads(OutputWriter().render(_summary(), "json"))

    assert payload["url"] == "https://example.com"
    assert payload["success_runs"] == 3
    assert payload["strategy"] == "mobile"
    for metric in Metric:
        entry = payload[metric.value]
        assert set(entry) == {"mean", "std_dev", "confidence_interval", "median"}
        low, high = entry["confidence_interval"]
        assert low <= entry["mean"] <= high
    assert payload["score"]["mean"] == pytest.approx(0.9)


def test_unknown_format_rejected() -> None:
    with pytest.raises(ValueError):
        OutputWriter().render(_summary(), "html")


def test_batch_csv_writer_streams_rows(tmp_path) -> None:
    target = tmp_path / "output.csv"
    target.write_text("previous run\n", encoding="utf-8")

    with BatchCsvWriter(target) as writer:
        assert writer.path == tmp_path / "output (1).csv"
        writer.write_row(BatchRow(url="https://a.com", desktop_mean=0.91234, desktop_median=0.9,
                                  mobile_mean=0.5, mobile_median=0.4996))
        # flushed before the writer is closed
        partial = writer.path.read_text(encoding="utf-8")
        assert "https://a.com" in partial
        writer.write_row(BatchRow.placeholder("https://down.com", attempts=3))

    with open(tmp_path / "output (1).csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))

    assert rows[0] == CSV_HEADER
    assert rows[0] == ["Store", "Desktop - Media", "Desktop - Mediana", "Mobile - Media", "Mobile - Mediana"]
    assert rows[1] == ["https://a.com", "0.912", "0.900", "0.500", "0.500"]
    assert rows[2] == ["https://down.com", "0.000", "0.000", "0.000", "0.000"]
    assert target.read_text(encoding="utf-8") == "previous run\n"


def test_write_row_outside_context_fails(tmp_path) -> None:
    writer = BatchCsvWriter(tmp_path / "output.csv")
    with pytest.raises(RuntimeError):
        writer.write_row(BatchRow(url="https://a.com"))


def test_failed_report() -> None:
    assert "All URLs completed" in format_failed_report([])
    text = format_failed_report(["https://down.com"])
    assert "1 URLs failed" in text
    assert "https://down.com" in text
