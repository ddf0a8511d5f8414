"""Persisted progress cursor: the only writer of shared import progress.

Every read-modify-write of the cursor happens while the option lock is held.
Slow work (validation, importers) runs between ``claim_next`` and
``complete``, outside the lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .clock import Clock, SystemClock
from .errors import ImporterError
from .lock import OptionLock
from .logging_utils import ImportLog
from .models import Claim, ClaimStatus, RecordType
from .store import OptionStore

logger = logging.getLogger(__name__)


@dataclass
class CursorState:
    record_type: RecordType | None
    index: int = -1
    in_flight: list[tuple[int, float]] = field(default_factory=list)
    reclaimed: list[int] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.record_type.value if self.record_type else None,
            "index": self.index,
            "in_flight": [[index, claimed_at] for index, claimed_at in self.in_flight],
            "reclaimed": list(self.reclaimed),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CursorState":
        try:
            raw_type = payload.get("type")
            record_type = RecordType(raw_type) if raw_type is not None else None
            return cls(
                record_type=record_type,
                index=int(payload.get("index", -1)),
                in_flight=[(int(item[0]), float(item[1])) for item in payload.get("in_flight") or []],
                reclaimed=[int(item) for item in payload.get("reclaimed") or []],
            )
        except (AttributeError, TypeError, ValueError, IndexError) as exc:
            raise ImporterError("CURSOR_INVALID", str(exc)) from exc

    @property
    def exhausted(self) -> bool:
        return self.record_type is None


class ProgressCursor:
    def __init__(
        self,
        store: OptionStore,
        key: str,
        lock: OptionLock,
        entry_index: dict[RecordType, list[int]],
        import_order: Sequence[RecordType],
        *,
        events: ImportLog,
        clock: Clock | None = None,
        in_flight_timeout_seconds: float = 30.0,
        drain_poll_seconds: float = 2.0,
        drain_attempts: int = 16,
    ) -> None:
        if not import_order:
            raise ValueError("IMPORT_ORDER_EMPTY")
        self.store = store
        self.key = key
        self.lock = lock
        self.entry_index = entry_index
        self.import_order = tuple(import_order)
        self.events = events
        self.clock = clock or SystemClock()
        self.in_flight_timeout_seconds = in_flight_timeout_seconds
        self.drain_poll_seconds = drain_poll_seconds
        self.drain_attempts = drain_attempts

    def claim_next(self, can_wait: Callable[[float], bool] | None = None) -> Claim | ClaimStatus:
        """Claim the next record, or report that the run is exhausted or busy.

        ``can_wait`` is asked before each drain sleep; a False answer gives up
        the wait early with ``ClaimStatus.BUSY``.
        """
        for attempt in range(self.drain_attempts + 1):
            if attempt:
                if can_wait is not None and not can_wait(self.drain_poll_seconds):
                    logger.info("WXZ drain wait stopped by the time budget attempt=%s", attempt)
                    break
                self.clock.sleep(self.drain_poll_seconds)
            with self.lock.held():
                state = self._load()
                now = self.clock.time()
                self._purge_stale(state, now)
                outcome = self._advance(state, now)
                self._save(state)
            if outcome is not None:
                return outcome
            logger.info(
                "WXZ waiting for in-flight claims type=%s count=%s attempt=%s",
                state.record_type.value if state.record_type else None,
                len(state.in_flight),
                attempt + 1,
            )
        return ClaimStatus.BUSY

    def complete(self, claim: Claim) -> bool:
        """Drop a finished claim from the in-flight set; False if it was no longer tracked."""
        with self.lock.held():
            state = self._load()
            if state.record_type != claim.record_type:
                self.events.warning(
                    "late-completion",
                    f"Completed {claim.record_type.value} #{claim.index} after the import moved on.",
                )
                return False
            entry = (claim.index, claim.claimed_at)
            if entry in state.in_flight:
                state.in_flight.remove(entry)
            elif claim.index in state.reclaimed:
                state.reclaimed.remove(claim.index)
            else:
                self.events.warning(
                    "late-completion",
                    f"Completed {claim.record_type.value} #{claim.index} after it was claimed again.",
                )
                return False
            self._save(state)
        return True

    def state(self) -> CursorState:
        return self._load()

    def reset(self) -> None:
        """Forget all progress. The caller holds the lock."""
        self.store.delete(self.key)

    def _advance(self, state: CursorState, now: float) -> Claim | ClaimStatus | None:
        if state.exhausted:
            return ClaimStatus.EXHAUSTED
        record_type = state.record_type
        if record_type not in self.import_order:
            raise ImporterError("CURSOR_TYPE_NOT_IN_ORDER", record_type.value)
        positions = self.entry_index.get(record_type, [])
        if state.reclaimed:
            index = min(state.reclaimed)
            state.reclaimed.remove(index)
            return self._claim(state, record_type, index, now)
        if state.index + 1 < len(positions):
            state.index += 1
            return self._claim(state, record_type, state.index, now)
        if state.in_flight:
            return None
        next_type = self._next_type(record_type)
        if next_type is None:
            state.record_type = None
            state.index = -1
            return ClaimStatus.EXHAUSTED
        logger.info("WXZ advancing type from=%s to=%s", record_type.value, next_type.value)
        state.record_type = next_type
        state.index = 0
        return self._claim(state, next_type, 0, now)

    def _claim(self, state: CursorState, record_type: RecordType, index: int, now: float) -> Claim:
        state.in_flight.append((index, now))
        return Claim(record_type=record_type, index=index, claimed_at=now)

    def _next_type(self, record_type: RecordType) -> RecordType | None:
        position = self.import_order.index(record_type)
        for candidate in self.import_order[position + 1 :]:
            if self.entry_index.get(candidate):
                return candidate
        return None

    def _purge_stale(self, state: CursorState, now: float) -> None:
        fresh: list[tuple[int, float]] = []
        for index, claimed_at in state.in_flight:
            age = now - claimed_at
            if age > self.in_flight_timeout_seconds:
                type_name = state.record_type.value if state.record_type else "?"
                self.events.warning(
                    "timed-out",
                    f"Claim of {type_name} #{index} timed out after {age:.1f}s and will be retried.",
                )
                if index not in state.reclaimed:
                    state.reclaimed.append(index)
            else:
                fresh.append((index, claimed_at))
        state.in_flight = fresh

    def _load(self) -> CursorState:
        payload = self.store.get(self.key)
        if payload is None:
            return CursorState(record_type=self.import_order[0])
        return CursorState.from_payload(payload)

    def _save(self, state: CursorState) -> None:
        self.store.set(self.key, state.to_payload())
