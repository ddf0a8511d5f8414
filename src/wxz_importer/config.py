"""Importer configuration loaders (wiring + policy)."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import DEFAULT_IMPORT_ORDER, RecordType, parse_record_types

DEFAULT_OPTION_PREFIX = "wp_import_"
_STORE_KINDS = {"memory", "local", "sqlite"}


@dataclass(frozen=True)
class ImportProfile:
    profile_id: str
    store_kind: str = "memory"
    store_path: str | None = None
    option_prefix: str = DEFAULT_OPTION_PREFIX
    schema_root: str | None = None
    log_paths: list[str] = field(default_factory=list)
    import_order: tuple[RecordType, ...] = DEFAULT_IMPORT_ORDER
    time_limit_seconds: float = 10.0
    headroom_records: int = 4
    memory_limit_bytes: int = 0
    lock_retries: int = 10
    lock_retry_delay_seconds: float = 0.5
    lock_stale_seconds: float = 5.0
    in_flight_timeout_seconds: float = 30.0
    drain_poll_seconds: float = 2.0
    drain_attempts: int = 16
    metrics_flush_seconds: int = 30

    @classmethod
    def load(cls, path: Path) -> "ImportProfile":
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"PROFILE_INVALID: {path}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportProfile":
        wiring = data.get("wiring") or {}
        policy = data.get("policy") or {}
        store = wiring.get("store") or {}
        store_kind = str(_resolve_env(store.get("kind")) or "memory").strip().lower()
        if store_kind not in _STORE_KINDS:
            raise ValueError(f"STORE_KIND_UNSUPPORTED: {store_kind}")
        store_path = _resolve_env(store.get("path"))
        if store_kind != "memory" and not store_path:
            raise ValueError(f"STORE_PATH_REQUIRED: {store_kind}")
        import_order = policy.get("import_order")
        if import_order is None:
            order = DEFAULT_IMPORT_ORDER
        else:
            order = parse_record_types(list(import_order))
        if not order:
            raise ValueError("IMPORT_ORDER_EMPTY")
        profile = cls(
            profile_id=str(data.get("profile_id", "default")),
            store_kind=store_kind,
            store_path=store_path,
            option_prefix=str(wiring.get("option_prefix", DEFAULT_OPTION_PREFIX)),
            schema_root=_resolve_env(wiring.get("schema_root")),
            log_paths=[str(_resolve_env(item)) for item in wiring.get("log_paths") or []],
            import_order=order,
            time_limit_seconds=float(policy.get("time_limit_seconds", 10)),
            headroom_records=int(policy.get("headroom_records", 4)),
            memory_limit_bytes=int(policy.get("memory_limit_bytes", 0)),
            lock_retries=int(policy.get("lock_retries", 10)),
            lock_retry_delay_seconds=float(policy.get("lock_retry_delay_seconds", 0.5)),
            lock_stale_seconds=float(policy.get("lock_stale_seconds", 5)),
            in_flight_timeout_seconds=float(policy.get("in_flight_timeout_seconds", 30)),
            drain_poll_seconds=float(policy.get("drain_poll_seconds", 2)),
            drain_attempts=int(policy.get("drain_attempts", 16)),
            metrics_flush_seconds=int(policy.get("metrics_flush_seconds", 30)),
        )
        profile.check()
        return profile

    def check(self) -> None:
        if self.time_limit_seconds < 0:
            raise ValueError("TIME_LIMIT_NEGATIVE")
        if self.headroom_records < 0:
            raise ValueError("HEADROOM_NEGATIVE")
        if self.lock_retries < 1:
            raise ValueError("LOCK_RETRIES_INVALID")
        if self.lock_stale_seconds <= 0 or self.in_flight_timeout_seconds <= 0:
            raise ValueError("STALENESS_THRESHOLD_INVALID")
        if self.drain_attempts < 0:
            raise ValueError("DRAIN_ATTEMPTS_NEGATIVE")


_ENV_PATTERN = re.compile(r"^\$\{([A-Z0-9_]+)\}$")


def _resolve_env(value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    match = _ENV_PATTERN.match(value.strip())
    if not match:
        return value
    return os.getenv(match.group(1))
