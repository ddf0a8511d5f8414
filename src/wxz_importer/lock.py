"""Best-effort mutual exclusion on top of the option store.

The lock key holds the acquisition timestamp. A key older than the staleness
threshold is taken over without a fencing token, so two holders can briefly
overlap after a takeover; the guarded section only advances the cursor.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from .clock import Clock, SystemClock
from .errors import ImporterError
from .logging_utils import ImportLog
from .retry import with_retry
from .store import OptionStore

logger = logging.getLogger(__name__)


class _LockBusy(Exception):
    pass


@dataclass(frozen=True)
class LockHandle:
    key: str
    acquired_at: float
    took_over: bool
    _release: Callable[[], None]

    def release(self) -> None:
        self._release()


class OptionLock:
    def __init__(
        self,
        store: OptionStore,
        key: str,
        *,
        clock: Clock | None = None,
        retries: int = 10,
        retry_delay_seconds: float = 0.5,
        stale_seconds: float = 5.0,
        events: ImportLog | None = None,
    ) -> None:
        self.store = store
        self.key = key
        self.clock = clock or SystemClock()
        self.retries = retries
        self.retry_delay_seconds = retry_delay_seconds
        self.stale_seconds = stale_seconds
        self.events = events

    def acquire(self) -> LockHandle:
        try:
            return with_retry(
                self._try_acquire,
                attempts=self.retries,
                base_delay_seconds=self.retry_delay_seconds,
                max_delay_seconds=self.retry_delay_seconds,
                retry_on=(_LockBusy,),
                sleep=self.clock.sleep,
            )
        except _LockBusy as exc:
            raise ImporterError("LOCK_UNAVAILABLE", str(exc)) from exc

    @contextmanager
    def held(self) -> Iterator[LockHandle]:
        handle = self.acquire()
        try:
            yield handle
        finally:
            handle.release()

    def release(self) -> None:
        self.store.delete(self.key)

    def _try_acquire(self) -> LockHandle:
        now = self.clock.time()
        if self.store.add(self.key, now):
            return LockHandle(key=self.key, acquired_at=now, took_over=False, _release=self.release)
        held_since = self.store.get(self.key)
        if held_since is None:
            # Released between our insert and read; retry on the next attempt.
            raise _LockBusy(f"{self.key} released during acquire")
        age = now - float(held_since)
        if age > self.stale_seconds:
            self.store.set(self.key, now)
            message = f"Lock {self.key} held for {age:.1f}s was taken over."
            if self.events is not None:
                self.events.warning("lock-takeover", message)
            else:
                logger.warning(message)
            return LockHandle(key=self.key, acquired_at=now, took_over=True, _release=self.release)
        raise _LockBusy(f"{self.key} held for {age:.1f}s")
