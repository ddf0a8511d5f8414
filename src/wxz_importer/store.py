"""Option stores shared between invocations (memory, local files, sqlite)."""

from __future__ import annotations

import json
import os
import re
import sqlite3
import threading
import time
from contextlib import closing
from pathlib import Path
from typing import Any, Protocol

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


class OptionStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def add(self, key: str, value: Any) -> bool:
        """Store ``value`` only if ``key`` is absent; True when it was written."""
        ...


class MemoryOptionStore:
    """Process-local store; thread-safe so threads can stand in for invocations."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._values.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        data = _encode(value)
        with self._lock:
            self._values[key] = data

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def add(self, key: str, value: Any) -> bool:
        data = _encode(value)
        with self._lock:
            if key in self._values:
                return False
            self._values[key] = data
            return True


class LocalOptionStore:
    """One JSON file per key under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def _full_path(self, key: str) -> Path:
        _check_key(key)
        return self.root / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._full_path(key)
        if not path.exists():
            return default
        try:
            text = self._read_text_with_retry(path)
        except FileNotFoundError:
            return default
        return json.loads(text)["value"]

    def set(self, key: str, value: Any) -> None:
        path = self._full_path(key)
        tmp_path = path.with_suffix(f".{os.getpid()}.{threading.get_ident()}.tmp")
        tmp_path.write_text(_encode({"value": value}) + "\n", encoding="utf-8")
        os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        self._full_path(key).unlink(missing_ok=True)

    def add(self, key: str, value: Any) -> bool:
        path = self._full_path(key)
        data = _encode({"value": value}) + "\n"
        try:
            with path.open("x", encoding="utf-8") as handle:
                handle.write(data)
        except FileExistsError:
            return False
        return True

    def _read_text_with_retry(self, path: Path) -> str:
        last_err: Exception | None = None
        for _ in range(5):
            try:
                text = path.read_text(encoding="utf-8")
            except PermissionError as exc:
                last_err = exc
                time.sleep(0.05)
                continue
            # An exclusive create may be observed before its content lands.
            if text.strip():
                return text
            time.sleep(0.05)
        if last_err:
            raise last_err
        return path.read_text(encoding="utf-8")


class SqliteOptionStore:
    def __init__(self, db_path: Path, timeout_seconds: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout_seconds = timeout_seconds
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wxz_options (
                    option_name TEXT PRIMARY KEY,
                    option_value TEXT NOT NULL
                )
                """
            )

    def get(self, key: str, default: Any = None) -> Any:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT option_value FROM wxz_options WHERE option_name = ?",
                (key,),
            ).fetchone()
        if not row:
            return default
        return json.loads(row[0])

    def set(self, key: str, value: Any) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT OR REPLACE INTO wxz_options (option_name, option_value) VALUES (?, ?)",
                (key, _encode(value)),
            )

    def delete(self, key: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute("DELETE FROM wxz_options WHERE option_name = ?", (key,))

    def add(self, key: str, value: Any) -> bool:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO wxz_options (option_name, option_value) VALUES (?, ?)",
                (key, _encode(value)),
            )
            return cursor.rowcount == 1

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.timeout_seconds)


def build_option_store(kind: str, path: str | None = None) -> OptionStore:
    kind_norm = (kind or "memory").lower()
    if kind_norm == "memory":
        return MemoryOptionStore()
    if not path:
        raise ValueError(f"STORE_PATH_REQUIRED: {kind_norm}")
    if kind_norm == "local":
        return LocalOptionStore(Path(path))
    if kind_norm == "sqlite":
        return SqliteOptionStore(Path(path))
    raise ValueError(f"STORE_KIND_UNSUPPORTED: {kind_norm}")


def _encode(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=True, separators=(",", ":"))


def _check_key(key: str) -> None:
    if not _KEY_PATTERN.match(key):
        raise ValueError(f"OPTION_KEY_INVALID: {key}")
