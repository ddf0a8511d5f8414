"""Logging helpers for the WXZ importer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

LOG_INFO = "info"
LOG_WARNING = "warning"
LOG_ERROR = "error"

_LEVELS = {
    LOG_INFO: logging.INFO,
    LOG_WARNING: logging.WARNING,
    LOG_ERROR: logging.ERROR,
}

logger = logging.getLogger("wxz_importer.events")


def configure_logging(level: int = logging.INFO, log_paths: list[str] | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers = None
    if log_paths:
        handlers = [logging.StreamHandler()]
        for entry in log_paths:
            path = Path(entry)
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(path, encoding="utf-8"))
    kwargs = {
        "level": level,
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        "datefmt": "%Y-%m-%d %H:%M:%S",
    }
    if handlers:
        kwargs["handlers"] = handlers
    logging.basicConfig(**kwargs)


@dataclass(frozen=True)
class LogEvent:
    level: str
    code: str
    message: str

    def format(self) -> str:
        return f"[{self.level}][{self.code}] {self.message}"


@dataclass
class ImportLog:
    """Record-level event stream for one invocation."""

    events: list[LogEvent] = field(default_factory=list)

    def log(self, code: str, message: str, level: str = LOG_WARNING) -> LogEvent:
        if level not in _LEVELS:
            raise ValueError(f"LOG_LEVEL_UNSUPPORTED: {level}")
        event = LogEvent(level=level, code=code, message=message)
        self.events.append(event)
        logger.log(_LEVELS[level], "%s", event.format())
        return event

    def warning(self, code: str, message: str) -> LogEvent:
        return self.log(code, message, LOG_WARNING)

    def error(self, code: str, message: str) -> LogEvent:
        return self.log(code, message, LOG_ERROR)

    def codes(self, level: str | None = None) -> list[str]:
        return [event.code for event in self.events if level is None or event.level == level]
