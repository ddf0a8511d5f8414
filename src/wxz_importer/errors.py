"""Importer error taxonomy."""

from __future__ import annotations


class ImporterError(RuntimeError):
    """Failure that halts an invocation, identified by a stable code.

    Codes: ARCHIVE_OPEN_FAILED, LOCK_UNAVAILABLE, IMPORTER_MISSING,
    CURSOR_INVALID, CURSOR_TYPE_NOT_IN_ORDER, CURSOR_NOT_READY, STAGE_INVALID.
    Record-level problems never raise; they are logged and skipped.
    """

    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        message = f"{code}:{detail}" if detail else code
        super().__init__(message)
