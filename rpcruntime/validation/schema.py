from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from jsonschema import validators
from jsonschema.exceptions import SchemaError, ValidationError

__all__ = [
    "CompiledSchema",
    "InvalidJSONError",
    "SchemaViolation",
    "ValidatorProtocol",
    "compile_schema",
    "load_schema",
    "must_load_schema",
]

ROOT_FIELD = "(root)"


class ValidatorProtocol(Protocol):
    """Protocol representing a compiled JSON schema validator."""

    def iter_errors(self, instance: object) -> Any:
        """Yield validation errors for ``instance``."""


class InvalidJSONError(ValueError):
    """Raised when a body cannot be parsed as JSON before schema validation."""


@dataclass(frozen=True, slots=True)
class SchemaViolation:
    """One schema validation failure, in wire form."""

    field: str
    type: str
    message: str

    @classmethod
    def from_error(cls, error: ValidationError) -> SchemaViolation:
        path = ".".join(str(part) for part in error.absolute_path)
        return cls(field=path or ROOT_FIELD, type=str(error.validator), message=error.message)

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "type": self.type, "message": self.message}


class CompiledSchema:
    """A JSON schema checked and compiled once at registration time."""

    def __init__(self, schema: Mapping[str, Any], validator: ValidatorProtocol) -> None:
        self.schema = schema
        self._validator = validator

    def validate_bytes(self, body: bytes) -> list[SchemaViolation]:
        """Parse ``body`` and return violations in the validator's order.

        Raises :class:`InvalidJSONError` when ``body`` is not JSON.
        """

        try:
            instance = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidJSONError(f"request body is not valid JSON: {exc}") from exc
        return [SchemaViolation.from_error(err) for err in self._validator.iter_errors(instance)]


def _coerce_schema(schema: Mapping[str, Any] | str | bytes) -> dict[str, Any]:
    if isinstance(schema, (str, bytes)):
        parsed = json.loads(schema)
    else:
        parsed = dict(schema)
    if not isinstance(parsed, dict):
        raise SchemaError(f"schema must be a JSON object, got {type(parsed).__name__}")
    return parsed


def compile_schema(schema: Mapping[str, Any] | str | bytes | CompiledSchema) -> CompiledSchema:
    """Check ``schema`` against its metaschema and build a validator.

    Raises :class:`jsonschema.exceptions.SchemaError` or ``ValueError`` when the
    schema cannot be used.
    """

    if isinstance(schema, CompiledSchema):
        return schema
    parsed = _coerce_schema(schema)
    validator_cls = validators.validator_for(parsed)
    validator_cls.check_schema(parsed)
    return CompiledSchema(parsed, validator_cls(parsed))


def load_schema(path: str | Path) -> dict[str, Any]:
    """Read a JSON schema document from disk."""

    schema_path = Path(path)
    try:
        with schema_path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except OSError as exc:
        raise FileNotFoundError(f"cannot read schema file at {schema_path}: {exc}") from exc


def must_load_schema(path: str | Path) -> CompiledSchema:
    """Load and compile a schema, failing loudly at init time."""

    try:
        return compile_schema(load_schema(path))
    except (OSError, ValueError, SchemaError) as exc:
        raise RuntimeError(f"cannot load schema file at {path}: {exc}") from exc
