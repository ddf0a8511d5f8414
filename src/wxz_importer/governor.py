"""Execution budget for a single invocation."""

from __future__ import annotations

from dataclasses import dataclass, field

import psutil

from .clock import Clock, SystemClock


def current_rss_bytes() -> int:
    return int(psutil.Process().memory_info().rss)


@dataclass
class TimeGovernor:
    """Decides whether another record can start before the budget runs out.

    The estimate uses only this invocation's own rate: there must be room for
    ``headroom_records`` more records at the average time per record so far.
    """

    time_limit_seconds: float = 10.0
    headroom_records: int = 4
    memory_limit_bytes: int = 0
    clock: Clock = field(default_factory=SystemClock)
    completed: int = 0
    peak_memory_bytes: int = 0
    started_at: float = field(init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock.time()
        self.sample_memory()

    def elapsed(self) -> float:
        return self.clock.time() - self.started_at

    def record_completed(self) -> None:
        self.completed += 1
        self.sample_memory()

    def sample_memory(self) -> int:
        rss = current_rss_bytes()
        self.peak_memory_bytes = max(self.peak_memory_bytes, rss)
        return rss

    def exceeding_time_limit(self) -> bool:
        if self.time_limit_seconds == 0 or self.completed == 0:
            return False
        time_per_record = self.elapsed() / self.completed
        return time_per_record * (self.completed + self.headroom_records) > self.time_limit_seconds

    def exceeding_memory_limit(self) -> bool:
        if self.memory_limit_bytes <= 0:
            return False
        return self.sample_memory() > self.memory_limit_bytes

    def can_wait(self, seconds: float) -> bool:
        """True when sleeping ``seconds`` still ends inside the time limit."""
        if self.time_limit_seconds == 0:
            return True
        return self.elapsed() + seconds <= self.time_limit_seconds

    def can_continue(self) -> bool:
        return not (self.exceeding_time_limit() or self.exceeding_memory_limit())
