from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from config_loader import ConfigLoader
from models import Metric, RunRecord


def make_psi_payload(
    speed_index: float = 3200.0,
    score: float = 0.87,
    overrides: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """runPagespeed body with the fields the collector reads"""
    numeric = {
        "cumulative-layout-shift": 0.05,
        "first-contentful-paint": 1200.0,
        "bootup-time": 800.0,
        "largest-contentful-paint": 2400.0,
        "speed-index": speed_index,
        "interactive": 4100.0,
        "total-blocking-time": 150.0,
    }
    numeric.update(overrides or {})
    return {
        "lighthouseResult": {
            "audits": {audit_id: {"numericValue": value} for audit_id, value in numeric.items()},
            "categories": {"performance": {"score": score}},
        }
    }


def make_record(score: float = 0.9, speed_index: float = 3000.0) -> RunRecord:
    values = {metric: 100.0 for metric in Metric}
    values[Metric.SCORE] = score
    values[Metric.SPEED_INDEX] = speed_index
    return RunRecord(values=values)


@pytest.fixture
def config(tmp_path) -> ConfigLoader:
    return ConfigLoader(str(tmp_path / "missing.yaml"), required=False)
