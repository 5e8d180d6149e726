"""End-to-end CLI tests with the collector swapped for a scripted one."""

from __future__ import annotations

import csv
import json

import pytest

import main
from collector import CollectionResult
from config_loader import TOKEN_ENV_VAR
from conftest import make_record
from models import MetricSet


class StubCollector:
    def __init__(self, config, token, client=None, runs_ok: bool = True):
        self.token = token
        self.runs_ok = runs_ok

    async def collect(self, url, strategy, runs):
        records = [make_record(score=0.5 + i / 10) for i in range(runs)] if self.runs_ok else []
        return CollectionResult(url=url, strategy=strategy, requested_runs=runs,
                                metric_set=MetricSet.from_records(records))


class EmptyCollector(StubCollector):
    def __init__(self, config, token, client=None):
        super().__init__(config, token, client, runs_ok=False)


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
    return tmp_path


@pytest.mark.parametrize(
    "argv",
    [
        ["https://example.com"],
        ["--token", "t"],
        ["--token", "t", "https://example.com", "--batch-file", "urls.txt"],
        ["--token", "t", "--strategy", "tablet", "https://example.com"],
        ["--token", "t", "--number-of-runs", "0", "https://example.com"],
    ],
)
def test_usage_errors_exit_before_network(argv, monkeypatch) -> None:
    def no_network(*args, **kwargs):  # pragma: no cover
        raise AssertionError("collector must not be created")

    monkeypatch.setattr(main, "AuditCollector", no_network)
    with pytest.raises(SystemExit) as exc:
        main.main(argv)
    assert exc.value.code == 2


def test_missing_explicit_config_file(capsys) -> None:
    assert main.main(["--token", "t", "--config", "nope.yaml", "https://example.com"]) == 1
    assert "Config file not found" in capsys.readouterr().err


def test_single_page_json(monkeypatch, capsys) -> None:
    monkeypatch.setattr(main, "AuditCollector", StubCollector)

    code = main.main(["--token", "t", "-N", "3", "https://example.com"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["url"] == "https://example.com"
    assert payload["success_runs"] == 3
    assert payload["score"]["mean"] == pytest.approx(0.6)
    assert payload["score"]["median"] == pytest.approx(0.6)


def test_single_page_markdown_with_env_token(monkeypatch, capsys) -> None:
    monkeypatch.setenv(TOKEN_ENV_VAR, "env-token")
    monkeypatch.setattr(main, "AuditCollector", StubCollector)

    code = main.main(["-N", "2", "-O", "md", "-S", "desktop", "https://example.com"])

    out = capsys.readouterr().out
    assert code == 0
    assert "| Metric | Mean | Standard deviation | Confidence Interval (95%) |" in out
    assert "(desktop, 2/2 runs)" in out


def test_single_page_without_successful_runs(monkeypatch, capsys) -> None:
    monkeypatch.setattr(main, "AuditCollector", EmptyCollector)

    assert main.main(["--token", "t", "-N", "3", "https://example.com"]) == 1
    assert "No successful runs" in capsys.readouterr().err


def test_batch_writes_csv(isolated_cwd, monkeypatch, capsys) -> None:
    monkeypatch.setattr(main, "AuditCollector", StubCollector)
    urls = isolated_cwd / "urls.txt"
    urls.write_text("https://a.com\nhttps://b.com\n", encoding="utf-8")

    code = main.main(["--token", "t", "-N", "3", "--batch-file", str(urls), "--output-file", "out.csv"])

    assert code == 0
    with open(isolated_cwd / "out.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "Store"
    assert [row[0] for row in rows[1:]] == ["https://a.com", "https://b.com"]
    assert rows[1][1:] == ["0.600", "0.600", "0.600", "0.600"]
    assert "All URLs completed" in capsys.readouterr().out


def test_batch_reports_failed_urls(isolated_cwd, monkeypatch, capsys) -> None:
    monkeypatch.setattr(main, "AuditCollector", EmptyCollector)
    urls = isolated_cwd / "urls.txt"
    urls.write_text("https://down.com\n", encoding="utf-8")

    code = main.main(["--token", "t", "-N", "2", "--batch-file", str(urls)])

    out = capsys.readouterr().out
    assert code == 0
    assert "1 URLs failed" in out
    with open(isolated_cwd / "output.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[1] == ["https://down.com", "0.000", "0.000", "0.000", "0.000"]


def test_batch_file_unreadable(capsys) -> None:
    assert main.main(["--token", "t", "--batch-file", "missing.txt"]) == 1
    assert "Cannot read batch file" in capsys.readouterr().err


def test_batch_file_not_utf8(isolated_cwd, capsys) -> None:
    (isolated_cwd / "urls.txt").write_bytes(b"https://a.com\n\xff\xfe\xfa\n")

    assert main.main(["--token", "t", "--batch-file", "urls.txt"]) == 1
    assert "Cannot read batch file" in capsys.readouterr().err
