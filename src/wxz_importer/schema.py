"""Record validation against the WXZ JSON schemas."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.exceptions import NoSuchResource
from referencing.jsonschema import DRAFT202012

from .logging_utils import ImportLog
from .models import SCHEMA_PREFIX, RecordType, Validation

BUNDLED_SCHEMA_ROOT = Path(__file__).resolve().parent / "schemas"


class SchemaGate:
    """Parses raw record bytes and validates them; failures become log events."""

    def __init__(self, events: ImportLog, schema_root: Path | None = None) -> None:
        self.events = events
        self.root = schema_root or BUNDLED_SCHEMA_ROOT
        self._resources: dict[str, Resource[Any]] = {}
        self._validators: dict[RecordType, Draft202012Validator] = {}
        self._registry: Registry = Registry(retrieve=self._retrieve_resource)

    def validate(self, raw: bytes, record_type: RecordType, file_path: str) -> Validation:
        document = _parse(raw)
        if document is None:
            self.events.warning("invalid-json", f"Invalid JSON in {file_path}")
            return Validation(valid=False, code="invalid-json", detail="malformed")
        try:
            errors = self.errors_for(record_type, document)
        except Exception as exc:
            self.events.error("validation-exception", f"Validating {file_path} failed: {exc}")
            return Validation(valid=False, code="validation-exception", detail=str(exc))
        if errors:
            detail = "; ".join(errors)
            self.events.warning(
                "schema-violation",
                f"The data in {file_path} can not be validated against the schema: {detail}",
            )
            return Validation(valid=False, code="schema-violation", detail=detail)
        return Validation(valid=True, document=document)

    def errors_for(self, record_type: RecordType, document: Any) -> list[str]:
        validator = self._validator(record_type)
        errors = sorted(validator.iter_errors(document), key=lambda e: [str(part) for part in e.path])
        return [_describe(error) for error in errors]

    def _validator(self, record_type: RecordType) -> Draft202012Validator:
        cached = self._validators.get(record_type)
        if cached is not None:
            return cached
        retrieved = self._registry.get_or_retrieve(record_type.schema_id)
        self._registry = retrieved.registry
        validator = Draft202012Validator(retrieved.value.contents, registry=self._registry)
        self._validators[record_type] = validator
        return validator

    def _retrieve_resource(self, uri: str) -> Resource[Any]:
        if uri in self._resources:
            return self._resources[uri]
        path = self._uri_to_path(uri)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        resource = Resource.from_contents(data, default_specification=DRAFT202012)
        self._resources[uri] = resource
        return resource

    def _uri_to_path(self, uri: str) -> Path:
        if not uri.startswith(SCHEMA_PREFIX):
            raise NoSuchResource(uri)
        name = uri[len(SCHEMA_PREFIX) :].split("#", 1)[0]
        path = (self.root / name).resolve()
        if not path.exists():
            yaml_path = path.with_suffix(".schema.yaml")
            if yaml_path.exists():
                return yaml_path
            raise NoSuchResource(uri)
        return path


def _parse(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _describe(error: Any) -> str:
    location = "/".join(str(part) for part in error.path)
    if location:
        return f"{location}: {error.message}"
    return error.message
