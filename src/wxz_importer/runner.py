"""Run loop: the stage machine driving one bounded invocation of an import."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

from .archive import Archive, WxzArchive, build_entry_index
from .clock import Clock, SystemClock
from .config import ImportProfile
from .cursor import ProgressCursor
from .errors import ImporterError
from .governor import TimeGovernor
from .importers import ImportContext, Importer, ImporterRegistry
from .lock import OptionLock
from .logging_utils import LOG_INFO, ImportLog, configure_logging
from .metrics import MetricsRecorder
from .models import Claim, ClaimStatus, RecordType, RunReport, Stage
from .schema import SchemaGate
from .store import OptionStore, build_option_store

logger = logging.getLogger(__name__)


class WxzImport:
    """Imports the records of one WXZ archive, resuming from shared state.

    Every invocation indexes the archive, then runs stages until the stage is
    ``finalize`` or the time governor asks it to stop. Stage and cursor live in
    the option store so the next invocation picks up at the next unclaimed
    record.
    """

    def __init__(
        self,
        archive: Archive,
        store: OptionStore,
        registry: ImporterRegistry,
        *,
        profile: ImportProfile | None = None,
        clock: Clock | None = None,
        events: ImportLog | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self.profile = profile or ImportProfile(profile_id="default")
        self.archive = archive
        self.store = store
        self.registry = registry
        self.clock = clock or SystemClock()
        self.events = events or ImportLog()
        self.metrics = metrics or MetricsRecorder(
            flush_interval_seconds=self.profile.metrics_flush_seconds, clock=self.clock
        )
        self.registry.require(self.profile.import_order)

        prefix = self.profile.option_prefix
        self.stage_key = f"{prefix}stage"
        self.cursor_key = f"{prefix}last_object"
        self.lock_key = f"{prefix}lock"

        schema_root = Path(self.profile.schema_root) if self.profile.schema_root else None
        self.gate = SchemaGate(self.events, schema_root=schema_root)
        self.lock = OptionLock(
            store,
            self.lock_key,
            clock=self.clock,
            retries=self.profile.lock_retries,
            retry_delay_seconds=self.profile.lock_retry_delay_seconds,
            stale_seconds=self.profile.lock_stale_seconds,
            events=self.events,
        )
        self.governor = TimeGovernor(
            time_limit_seconds=self.profile.time_limit_seconds,
            headroom_records=self.profile.headroom_records,
            memory_limit_bytes=self.profile.memory_limit_bytes,
            clock=self.clock,
        )
        self.entry_index: dict[RecordType, list[int]] = {}
        self.cursor: ProgressCursor | None = None
        self.imported = 0
        self.skipped = 0

    @classmethod
    def build(
        cls,
        profile: ImportProfile,
        archive_path: str | Path,
        importers: Mapping[RecordType | str, Importer],
        *,
        clock: Clock | None = None,
    ) -> "WxzImport":
        configure_logging(log_paths=profile.log_paths or None)
        archive = WxzArchive.open(archive_path)
        try:
            store = build_option_store(profile.store_kind, profile.store_path)
            return cls(archive, store, ImporterRegistry(importers), profile=profile, clock=clock)
        except Exception:
            archive.close()
            raise

    def run(self) -> RunReport:
        """Run one invocation; the archive is closed when it returns."""
        try:
            return self._run()
        finally:
            self.archive.close()

    def _run(self) -> RunReport:
        self.entry_index = build_entry_index(self.archive)
        self.cursor = ProgressCursor(
            self.store,
            self.cursor_key,
            self.lock,
            self.entry_index,
            self.profile.import_order,
            events=self.events,
            clock=self.clock,
            in_flight_timeout_seconds=self.profile.in_flight_timeout_seconds,
            drain_poll_seconds=self.profile.drain_poll_seconds,
            drain_attempts=self.profile.drain_attempts,
        )
        stopped_reason: str | None = None
        try:
            while self.governor.can_continue():
                stage = self.stage()
                if stage is Stage.START:
                    self.pre_import()
                elif stage is Stage.OBJECTS:
                    stopped_reason = self.import_objects()
                    if stopped_reason:
                        break
                else:
                    break
            else:
                stopped_reason = "budget"
        except ImporterError as exc:
            if exc.code != "LOCK_UNAVAILABLE":
                raise
            self.events.error("lock-unavailable", f"Could not acquire {self.lock_key}; yielding until the next run.")
            stopped_reason = "lock-unavailable"
        return self._report(stopped_reason)

    def stage(self) -> Stage:
        raw = self.store.get(self.stage_key, Stage.START.value)
        try:
            return Stage(raw)
        except ValueError as exc:
            raise ImporterError("STAGE_INVALID", str(raw)) from exc

    def pre_import(self) -> None:
        with self.lock.held():
            if self.stage() is not Stage.START:
                return
            self.events.log("pre-import", "Starting the pre-import stage.", LOG_INFO)
            self._require_cursor().reset()
            self.store.set(self.stage_key, Stage.OBJECTS.value)

    def import_objects(self) -> str | None:
        """Import records until they run out; returns why it stopped early, if it did."""
        cursor = self._require_cursor()
        while self.governor.can_continue():
            outcome = cursor.claim_next(can_wait=self.governor.can_wait)
            if outcome is ClaimStatus.EXHAUSTED:
                self.store.set(self.stage_key, Stage.FINALIZE.value)
                self.events.log("objects-done", "All records have been imported.", LOG_INFO)
                return None
            if outcome is ClaimStatus.BUSY:
                self.events.warning("in-flight-wait", "Records are still in flight elsewhere; yielding.")
                return "busy"
            self.import_record(outcome)
        return "budget"

    def import_record(self, claim: Claim) -> None:
        position = self.entry_index[claim.record_type][claim.index]
        file_path = self.archive.name(position)
        started = self.clock.time()
        validation = self.gate.validate(self.archive.read(position), claim.record_type, file_path)
        if validation.valid:
            context = ImportContext(
                record_type=claim.record_type,
                index=claim.index,
                file_path=file_path,
                events=self.events,
                metrics=self.metrics,
            )
            try:
                self.registry.dispatch(claim.record_type, validation.document, context)
            except Exception as exc:
                self.events.error("import-exception", f"Importing {file_path} failed: {exc}")
                outcome = "import-exception"
                self.skipped += 1
            else:
                outcome = "imported"
                self.imported += 1
        else:
            outcome = validation.code or "invalid"
            self.skipped += 1
        self._require_cursor().complete(claim)
        self.metrics.record_outcome(claim.record_type.value, outcome, self.clock.time() - started)
        self.governor.record_completed()
        self.metrics.flush_if_due(context={"archive": getattr(self.archive, "path", None)})

    def reset_state(self) -> None:
        """Forget stage, cursor and lock so the next invocation starts a new run."""
        for key in (self.stage_key, self.cursor_key, self.lock_key):
            self.store.delete(key)

    def _require_cursor(self) -> ProgressCursor:
        if self.cursor is None:
            raise ImporterError("CURSOR_NOT_READY")
        return self.cursor

    def _report(self, stopped_reason: str | None) -> RunReport:
        self.governor.sample_memory()
        report = RunReport(
            stage=self.stage(),
            processed=self.governor.completed,
            imported=self.imported,
            skipped=self.skipped,
            elapsed_seconds=self.governor.elapsed(),
            peak_memory_bytes=self.governor.peak_memory_bytes,
            stopped_reason=stopped_reason,
        )
        self.metrics.flush_if_due(context={"stage": report.stage.value}, force=True)
        logger.info(
            "WXZ run stage=%s processed=%s imported=%s skipped=%s elapsed=%.3fs stopped=%s",
            report.stage.value,
            report.processed,
            report.imported,
            report.skipped,
            report.elapsed_seconds,
            stopped_reason,
        )
        logger.info("PEAK USAGE %s", report.peak_memory_bytes)
        return report
