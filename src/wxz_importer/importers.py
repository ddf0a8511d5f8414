"""Importer registry: one handler per record type."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol

from .errors import ImporterError
from .logging_utils import LOG_WARNING, ImportLog
from .metrics import MetricsRecorder
from .models import RecordType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportContext:
    """Handle passed to importers for the record being applied."""

    record_type: RecordType
    index: int
    file_path: str
    events: ImportLog
    metrics: MetricsRecorder

    def log(self, code: str, message: str, level: str = LOG_WARNING) -> None:
        self.events.log(code, message, level)
        self.metrics.record_event(code)


class Importer(Protocol):
    def run(self, document: Any, context: ImportContext) -> None:
        ...


class ImporterRegistry:
    def __init__(self, importers: Mapping[RecordType | str, Importer] | None = None) -> None:
        self._importers: dict[RecordType, Importer] = {}
        for record_type, importer in (importers or {}).items():
            self.register(record_type, importer)

    def register(self, record_type: RecordType | str, importer: Importer) -> None:
        self._importers[RecordType(record_type)] = importer

    def require(self, record_types: Iterable[RecordType]) -> None:
        missing = [record_type.value for record_type in record_types if record_type not in self._importers]
        if missing:
            raise ImporterError("IMPORTER_MISSING", ",".join(missing))

    def dispatch(self, record_type: RecordType, document: Any, context: ImportContext) -> None:
        importer = self._importers.get(record_type)
        if importer is None:
            raise ImporterError("IMPORTER_MISSING", record_type.value)
        logger.debug("WXZ dispatch type=%s index=%s path=%s", record_type.value, context.index, context.file_path)
        importer.run(document, context)
