"""
Per-extraction diagnostics: phase timings, counters, gauges and a
timeline of events, attached to every ExtractionResult.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import StrategyOutcome


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ExtractionDiagnostics:
    """
    Collected while one cascade runs.

    Events are stamped with milliseconds since the run started, so a
    timeline can be read without comparing wall clocks. Time spent in each
    phase accumulates in `phase_ms`; the result is attached even when the
    run ends early (login wall, cancellation, lost session).
    """

    account_id: str
    started_at_iso: str = field(default_factory=_utc_now_iso)
    started_at_monotonic: float = field(default_factory=time.monotonic)
    duration_seconds: Optional[float] = None
    phase: str = "idle"
    phase_started_monotonic: float = field(default_factory=time.monotonic)
    phase_ms: Dict[str, int] = field(default_factory=dict)
    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at_monotonic) * 1000)

    def inc(self, key: str, amount: int = 1) -> None:
        self.counters[key] = self.counters.get(key, 0) + int(amount)

    def set_gauge(self, key: str, value: Any) -> None:
        self.gauges[key] = value

    def record_event(self, kind: str, **data: Any) -> None:
        event: Dict[str, Any] = {"at_ms": self.elapsed_ms(), "kind": kind}
        event.update((k, v) for k, v in data.items() if v is not None)
        self.events.append(event)

    def _close_phase(self) -> None:
        now = time.monotonic()
        spent = int((now - self.phase_started_monotonic) * 1000)
        self.phase_ms[self.phase] = self.phase_ms.get(self.phase, 0) + spent
        self.phase_started_monotonic = now

    def enter_phase(self, phase: str) -> None:
        if phase == self.phase:
            return
        self._close_phase()
        self.phase = phase
        self.record_event("phase", name=phase)

    def record_strategy(self, outcome: StrategyOutcome) -> None:
        self.inc("strategies_attempted")
        if outcome.error:
            self.inc("strategy_failures")
        self.record_event(
            "strategy",
            name=outcome.strategy.value,
            records=outcome.record_count,
            elapsed_ms=outcome.elapsed_ms,
            error=outcome.error,
        )

    def finish(self) -> None:
        if self.duration_seconds is not None:
            return
        self._close_phase()
        self.duration_seconds = max(time.monotonic() - self.started_at_monotonic, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        duration = self.duration_seconds
        if duration is None:
            duration = max(time.monotonic() - self.started_at_monotonic, 0.0)
        return {
            "account_id": self.account_id,
            "started_at": self.started_at_iso,
            "duration_seconds": round(duration, 6),
            "last_phase": self.phase,
            "phase_ms": dict(self.phase_ms),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "events": list(self.events),
        }


def write_diagnostics(results: List[Dict[str, Any]], template: str) -> Path:
    """Write the diagnostics of every account in a run to one JSON file."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = Path((template or "output/diagnostics_{timestamp}.json").replace("{timestamp}", timestamp))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(results, indent=2, sort_keys=True, default=str), encoding="utf-8")
    return path
