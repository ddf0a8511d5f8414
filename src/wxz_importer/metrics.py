"""Per-invocation import counters, written to the log as one line."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class MetricsRecorder:
    flush_interval_seconds: float = 30
    clock: Clock = field(default_factory=SystemClock)
    counters: dict[str, int] = field(default_factory=dict)
    seconds_by_type: dict[str, float] = field(default_factory=dict)
    records_by_type: dict[str, int] = field(default_factory=dict)
    last_flush_ts: float = field(init=False)

    def __post_init__(self) -> None:
        self.last_flush_ts = self.clock.time()

    def record_outcome(self, record_type: str, outcome: str, seconds: float = 0.0) -> None:
        """Count one finished record and the time spent on it."""
        self._inc(f"outcome.{outcome}")
        self._inc(f"type.{record_type}.{outcome}")
        self.records_by_type[record_type] = self.records_by_type.get(record_type, 0) + 1
        self.seconds_by_type[record_type] = self.seconds_by_type.get(record_type, 0.0) + seconds

    def record_event(self, code: str) -> None:
        self._inc(f"event.{code}")

    def get(self, key: str) -> int:
        return self.counters.get(key, 0)

    def seconds_per_record(self) -> dict[str, float]:
        return {
            record_type: round(self.seconds_by_type[record_type] / count, 4)
            for record_type, count in self.records_by_type.items()
            if count
        }

    def flush_if_due(self, context: dict[str, Any] | None = None, *, force: bool = False) -> bool:
        now = self.clock.time()
        if not force and (now - self.last_flush_ts) < self.flush_interval_seconds:
            return False
        if self.counters:
            payload: dict[str, Any] = {
                "counters": dict(sorted(self.counters.items())),
                "seconds_per_record": self.seconds_per_record(),
            }
            if context:
                payload["context"] = context
            logger.info("WXZ metrics %s", payload)
        self.counters.clear()
        self.seconds_by_type.clear()
        self.records_by_type.clear()
        self.last_flush_ts = now
        return True

    def _inc(self, key: str) -> None:
        self.counters[key] = self.counters.get(key, 0) + 1
