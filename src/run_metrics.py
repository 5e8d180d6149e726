import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _render_template(template: str) -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return template.replace("{timestamp}", timestamp)


@dataclass
class RunMetrics:
    """
    Counters, gauges and per-URL events for one invocation.

    Batch runs tolerate partial failure, so this is where the failed runs and
    retried URLs end up instead of in the CSV.
    """

    mode: str
    started_at_iso: str = field(default_factory=_utc_now_iso)
    started_at_monotonic: float = field(default_factory=time.monotonic)
    duration_seconds: Optional[float] = None
    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, Any] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)
    output_path: Optional[Path] = None

    def inc(self, key: str, amount: int = 1) -> None:
        if not key:
            return
        self.counters[key] = self.counters.get(key, 0) + int(amount)

    def set_gauge(self, key: str, value: Any) -> None:
        if not key:
            return
        self.gauges[key] = value

    def record_event(self, kind: str, **data: Any) -> None:
        payload: dict[str, Any] = {"t": _utc_now_iso(), "kind": kind}
        payload.update({k: v for k, v in data.items() if v is not None})
        self.events.append(payload)

    def finish(self) -> None:
        if self.duration_seconds is None:
            self.duration_seconds = max(time.monotonic() - self.started_at_monotonic, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        duration = self.duration_seconds
        if duration is None:
            duration = max(time.monotonic() - self.started_at_monotonic, 0.0)
        payload: Dict[str, Any] = {
            "mode": self.mode,
            "started_at": self.started_at_iso,
            "duration_seconds": round(duration, 6),
            "counters": dict(self.counters),
            "events": list(self.events),
        }
        if self.gauges:
            payload["gauges"] = dict(self.gauges)
        return payload

    def write_json(self, template: str) -> Path:
        path = Path(_render_template(template or "output/run_metrics_{timestamp}.json"))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        self.output_path = path
        return path
