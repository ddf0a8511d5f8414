"""Importer core models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

SCHEMA_PREFIX = "https://wordpress.org/schema/"


class RecordType(str, Enum):
    USERS = "users"
    TERMS = "terms"
    POSTS = "posts"
    META = "meta"

    @property
    def schema_id(self) -> str:
        return SCHEMA_IDS[self]


SCHEMA_IDS: dict[RecordType, str] = {
    RecordType.USERS: f"{SCHEMA_PREFIX}user.json",
    RecordType.POSTS: f"{SCHEMA_PREFIX}post.json",
    RecordType.META: f"{SCHEMA_PREFIX}meta.json",
    RecordType.TERMS: f"{SCHEMA_PREFIX}term.json",
}

DEFAULT_IMPORT_ORDER: tuple[RecordType, ...] = (RecordType.TERMS, RecordType.POSTS)


class Stage(str, Enum):
    START = "start"
    OBJECTS = "objects"
    FINALIZE = "finalize"


class ClaimStatus(str, Enum):
    EXHAUSTED = "exhausted"
    BUSY = "busy"


@dataclass(frozen=True)
class Claim:
    record_type: RecordType
    index: int
    claimed_at: float


@dataclass(frozen=True)
class Validation:
    valid: bool
    code: str | None = None
    detail: str | None = None
    document: Any = None


@dataclass(frozen=True)
class RunReport:
    stage: Stage
    processed: int
    imported: int
    skipped: int
    elapsed_seconds: float
    peak_memory_bytes: int
    stopped_reason: str | None = None


def parse_record_types(values: list[str] | tuple[str, ...]) -> tuple[RecordType, ...]:
    types: list[RecordType] = []
    for value in values:
        try:
            record_type = RecordType(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"UNKNOWN_RECORD_TYPE: {value}") from exc
        if record_type in types:
            raise ValueError(f"DUPLICATE_RECORD_TYPE: {value}")
        types.append(record_type)
    return tuple(types)
