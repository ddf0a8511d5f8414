import threading
from pathlib import Path
from typing import Any

import pytest

from wxz_importer.archive import WxzArchive
from wxz_importer.clock import SystemClock
from wxz_importer.config import ImportProfile
from wxz_importer.errors import ImporterError
from wxz_importer.importers import ImporterRegistry
from wxz_importer.logging_utils import ImportLog
from wxz_importer.models import RecordType, Stage
from wxz_importer.runner import WxzImport
from wxz_importer.store import MemoryOptionStore

from wxz_support import FakeClock, RecordingImporter, post, term


def _import(
    archive_path: Path,
    store: MemoryOptionStore,
    calls: list,
    clock: FakeClock,
    *,
    cost: float = 0.0,
    **profile_overrides: Any,
) -> WxzImport:
    profile = ImportProfile(profile_id="test", **profile_overrides)
    importer = RecordingImporter(calls, clock=clock, cost=cost)
    registry = ImporterRegistry({RecordType.TERMS: importer, RecordType.POSTS: importer})
    return WxzImport(WxzArchive.open(archive_path), store, registry, profile=profile, clock=clock)


def test_mixed_archive_dispatches_only_valid_records(make_archive, clock: FakeClock) -> None:
    path = make_archive(
        [
            ("terms/1.json", term(1)),
            ("terms/2.json", b"{broken"),
            ("posts/1.json", {"id": 1, "type": "post"}),
            ("posts/2.json", post(2)),
        ]
    )
    store = MemoryOptionStore()
    calls: list = []
    run = _import(path, store, calls, clock)

    report = run.run()

    assert calls == [("terms", 1), ("posts", 2)]
    assert run.events.codes("warning") == ["invalid-json", "schema-violation"]
    assert run.events.codes("error") == []
    assert report.stage is Stage.FINALIZE
    assert (report.processed, report.imported, report.skipped) == (4, 2, 2)
    assert report.stopped_reason is None
    assert store.get("wp_import_stage") == "finalize"
    assert store.get("wp_import_lock") is None
    assert store.get("wp_import_last_object")["type"] is None


def test_interrupted_runs_resume_at_next_record(make_archive, clock: FakeClock) -> None:
    entries = [(f"terms/{i}.json", term(i)) for i in range(1, 6)]
    entries += [(f"posts/{i}.json", post(i)) for i in range(1, 3)]
    path = make_archive(entries)
    store = MemoryOptionStore()
    calls: list = []

    reports = []
    for _ in range(20):
        report = _import(path, store, calls, clock, cost=3.0).run()
        reports.append(report)
        if report.stage is Stage.FINALIZE:
            break

    assert calls == [("terms", i) for i in range(1, 6)] + [("posts", 1), ("posts", 2)]
    assert [r.processed for r in reports] == [1] * 7 + [0]
    assert all(r.stopped_reason == "budget" for r in reports[:-1])
    assert reports[0].stage is Stage.OBJECTS
    assert reports[-1].stage is Stage.FINALIZE


def test_users_are_indexed_but_not_dispatched(make_archive, clock: FakeClock) -> None:
    path = make_archive([("users/1.json", {"id": 1, "username": "admin"}), ("terms/1.json", term(1))])
    calls: list = []
    run = _import(path, MemoryOptionStore(), calls, clock)

    run.run()

    assert run.entry_index[RecordType.USERS] == [0]
    assert calls == [("terms", 1)]


def test_users_imported_when_ordered_and_registered(make_archive, clock: FakeClock) -> None:
    path = make_archive([("terms/1.json", term(1)), ("users/4.json", {"id": 4, "username": "editor"})])
    calls: list = []
    importer = RecordingImporter(calls)
    registry = ImporterRegistry({"users": importer, "terms": importer})
    profile = ImportProfile(profile_id="users", import_order=(RecordType.USERS, RecordType.TERMS))

    WxzImport(WxzArchive.open(path), MemoryOptionStore(), registry, profile=profile, clock=clock).run()

    assert calls == [("users", 4), ("terms", 1)]


def test_import_order_requires_importers(make_archive, clock: FakeClock) -> None:
    path = make_archive([("terms/1.json", term(1))])
    registry = ImporterRegistry({RecordType.TERMS: RecordingImporter([])})
    with pytest.raises(ImporterError) as exc:
        WxzImport(WxzArchive.open(path), MemoryOptionStore(), registry, clock=clock)
    assert exc.value.code == "IMPORTER_MISSING"


def test_finished_run_stays_finished_until_reset(make_archive, clock: FakeClock) -> None:
    path = make_archive([("terms/1.json", term(1))])
    store = MemoryOptionStore()
    calls: list = []
    _import(path, store, calls, clock).run()

    again = _import(path, store, calls, clock)
    assert again.run().processed == 0
    assert calls == [("terms", 1)]

    again.reset_state()
    _import(path, store, calls, clock).run()
    assert calls == [("terms", 1), ("terms", 1)]


def test_held_lock_ends_invocation_without_changing_stage(make_archive, clock: FakeClock) -> None:
    path = make_archive([("terms/1.json", term(1))])
    store = MemoryOptionStore()
    store.set("wp_import_lock", clock.now)
    calls: list = []

    report = _import(path, store, calls, clock, lock_retries=2).run()

    assert report.stopped_reason == "lock-unavailable"
    assert report.stage is Stage.START
    assert calls == []
    assert store.get("wp_import_stage") is None


def test_failing_importer_skips_record_and_run_finishes(make_archive, clock: FakeClock) -> None:
    path = make_archive([("terms/1.json", term(1)), ("terms/2.json", term(2)), ("posts/1.json", post(1))])
    store = MemoryOptionStore()
    calls: list = []

    class _RejectsFirstTerm:
        def run(self, document: Any, context: Any) -> None:
            if context.record_type is RecordType.TERMS and document["id"] == 1:
                raise RuntimeError("duplicate slug")
            calls.append((context.record_type.value, document["id"]))

    importer = _RejectsFirstTerm()
    registry = ImporterRegistry({RecordType.TERMS: importer, RecordType.POSTS: importer})
    run = WxzImport(WxzArchive.open(path), store, registry, clock=clock)

    report = run.run()

    assert calls == [("terms", 2), ("posts", 1)]
    assert run.events.codes("error") == ["import-exception"]
    failures = [event.message for event in run.events.events if event.code == "import-exception"]
    assert failures == ["Importing terms/1.json failed: duplicate slug"]
    assert (report.processed, report.imported, report.skipped) == (3, 2, 1)
    assert report.stage is Stage.FINALIZE
    assert store.get("wp_import_last_object")["in_flight"] == []

    clock.advance(31)
    again = WxzImport(WxzArchive.open(path), store, registry, clock=clock)
    assert again.run().processed == 0
    assert calls == [("terms", 2), ("posts", 1)]


def test_other_invocations_claim_blocks_type_change(make_archive, clock: FakeClock) -> None:
    path = make_archive([("terms/1.json", term(1)), ("posts/1.json", post(1))])
    store = MemoryOptionStore()
    calls: list = []
    store.set("wp_import_stage", "objects")
    store.set("wp_import_last_object", {"type": "terms", "index": 0, "in_flight": [[0, clock.now]]})

    run = _import(path, store, calls, clock, drain_attempts=2)
    report = run.run()

    assert report.stopped_reason == "busy"
    assert report.stage is Stage.OBJECTS
    assert calls == []
    assert "in-flight-wait" in run.events.codes("warning")


def test_drain_wait_stays_inside_time_budget(make_archive, clock: FakeClock) -> None:
    path = make_archive([("terms/1.json", term(1)), ("posts/1.json", post(1))])
    store = MemoryOptionStore()
    calls: list = []
    store.set("wp_import_stage", "objects")
    store.set("wp_import_last_object", {"type": "terms", "index": 0, "in_flight": [[0, clock.now]]})

    report = _import(path, store, calls, clock).run()

    assert report.stopped_reason == "busy"
    assert report.elapsed_seconds <= 10
    assert clock.sleeps == [2.0] * 5
    assert calls == []


def test_build_from_profile(make_archive, tmp_path: Path) -> None:
    path = make_archive([("terms/1.json", term(1)), ("posts/1.json", post(1))])
    profile = ImportProfile(profile_id="built", store_kind="sqlite", store_path=str(tmp_path / "options.db"))
    calls: list = []
    importer = RecordingImporter(calls)

    run = WxzImport.build(profile, path, {"terms": importer, "posts": importer})
    report = run.run()

    assert run.archive.closed
    assert report.stage is Stage.FINALIZE
    assert report.peak_memory_bytes > 0
    assert calls == [("terms", 1), ("posts", 1)]


def test_build_with_unreadable_archive_creates_no_state(tmp_path: Path) -> None:
    db_path = tmp_path / "options.db"
    profile = ImportProfile(profile_id="built", store_kind="sqlite", store_path=str(db_path))
    with pytest.raises(ImporterError) as exc:
        WxzImport.build(profile, tmp_path / "missing.wxz", {"terms": RecordingImporter([]), "posts": RecordingImporter([])})
    assert exc.value.code == "ARCHIVE_OPEN_FAILED"
    assert not db_path.exists()


def test_build_closes_archive_when_wiring_fails(make_archive, monkeypatch: pytest.MonkeyPatch) -> None:
    path = make_archive([("terms/1.json", term(1))])
    closed: list = []
    original_close = WxzArchive.close

    def _close(self: WxzArchive) -> None:
        closed.append(self.path)
        original_close(self)

    monkeypatch.setattr(WxzArchive, "close", _close)
    with pytest.raises(ImporterError) as exc:
        WxzImport.build(ImportProfile(profile_id="built"), path, {"terms": RecordingImporter([])})
    assert exc.value.code == "IMPORTER_MISSING"
    assert closed == [str(path)]


def test_concurrent_invocations_import_each_record_once(make_archive) -> None:
    entries = [(f"terms/{i}.json", term(i)) for i in range(1, 13)]
    entries += [(f"posts/{i}.json", post(i)) for i in range(1, 13)]
    path = make_archive(entries)
    store = MemoryOptionStore()
    calls: list = []
    guard = threading.Lock()

    class _Guarded:
        def run(self, document: Any, context: Any) -> None:
            with guard:
                calls.append((context.record_type.value, document["id"]))

    profile = ImportProfile(
        profile_id="race",
        time_limit_seconds=0,
        lock_retries=5000,
        lock_retry_delay_seconds=0.001,
        drain_poll_seconds=0.005,
        drain_attempts=2000,
    )
    errors: list[Exception] = []

    def _invoke() -> None:
        try:
            registry = ImporterRegistry({RecordType.TERMS: _Guarded(), RecordType.POSTS: _Guarded()})
            WxzImport(WxzArchive.open(path), store, registry, profile=profile, clock=SystemClock()).run()
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=_invoke) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(calls) == sorted([("terms", i) for i in range(1, 13)] + [("posts", i) for i in range(1, 13)])
    first_post = next(i for i, call in enumerate(calls) if call[0] == "posts")
    assert all(call[0] == "posts" for call in calls[first_post:])
    assert store.get("wp_import_stage") == "finalize"


def test_event_lines_use_level_and_code(caplog: pytest.LogCaptureFixture) -> None:
    events = ImportLog()
    with caplog.at_level("WARNING", logger="wxz_importer.events"):
        events.warning("schema-violation", "The data in posts/1.json can not be validated against the schema.")
    assert "[warning][schema-violation] The data in posts/1.json" in caplog.text
