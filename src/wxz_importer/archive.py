"""WXZ archive access and the per-invocation entry index."""

from __future__ import annotations

import logging
import posixpath
import zipfile
from pathlib import Path
from typing import Iterable, Protocol

from .errors import ImporterError
from .models import RecordType

logger = logging.getLogger(__name__)

RECORD_EXTENSION = "json"

EntryIndex = dict[RecordType, list[int]]


class Archive(Protocol):
    @property
    def count(self) -> int:
        ...

    def name(self, position: int) -> str:
        ...

    def read(self, position: int) -> bytes:
        ...

    def close(self) -> None:
        ...


class WxzArchive:
    """Random access to the named entries of a WXZ (zip) container."""

    def __init__(self, zip_file: zipfile.ZipFile, path: str | None = None) -> None:
        self._zip = zip_file
        self._infos = zip_file.infolist()
        self.path = path

    @classmethod
    def open(cls, path: str | Path) -> "WxzArchive":
        try:
            zip_file = zipfile.ZipFile(path)
        except (OSError, zipfile.BadZipFile) as exc:
            raise ImporterError("ARCHIVE_OPEN_FAILED", f"{path}: {exc}") from exc
        return cls(zip_file, path=str(path))

    @property
    def count(self) -> int:
        return len(self._infos)

    def name(self, position: int) -> str:
        return self._infos[position].filename

    def read(self, position: int) -> bytes:
        return self._zip.read(self._infos[position])

    @property
    def closed(self) -> bool:
        return self._zip.fp is None

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "WxzArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def classify_entry(name: str, types: Iterable[RecordType] = RecordType) -> RecordType | None:
    directory = posixpath.dirname(name)
    _, ext = posixpath.splitext(name)
    if ext != f".{RECORD_EXTENSION}":
        return None
    for record_type in types:
        if directory == record_type.value:
            return record_type
    return None


def build_entry_index(archive: Archive, types: Iterable[RecordType] = RecordType) -> EntryIndex:
    """Group archive positions by record type, keeping on-disk order within a type."""
    known = tuple(types)
    index: EntryIndex = {}
    for position in range(archive.count):
        record_type = classify_entry(archive.name(position), known)
        if record_type is None:
            continue
        index.setdefault(record_type, []).append(position)
    logger.info(
        "WXZ index built entries=%s indexed=%s",
        archive.count,
        {record_type.value: len(positions) for record_type, positions in index.items()},
    )
    return index
