"""Error taxonomy shared by every transport.

Handlers raise :class:`ErrorValue` for expected failures. Only the ``code``,
``message`` and ``meta`` fields ever reach the wire; ``cause`` stays on the
server for logging.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import pydantic_core
from pydantic import BaseModel, ConfigDict

__all__ = [
    "ERR_CODE_ACCESS_DENIED",
    "ERR_CODE_BAD_REQUEST",
    "ERR_CODE_DOWNSTREAM",
    "ERR_CODE_FORBIDDEN",
    "ERR_CODE_INVALID_AUTHENTICATION",
    "ERR_CODE_INVALID_BODY",
    "ERR_CODE_INVALID_TOKEN",
    "ERR_CODE_METHOD_NOT_FOUND",
    "ERR_CODE_MISSING_BODY",
    "ERR_CODE_NO_AUTHENTICATION",
    "ERR_CODE_SCHEMA_FAILURE",
    "ERR_CODE_UNKNOWN",
    "ERROR_CODES",
    "ConfigError",
    "ContextCancelled",
    "ErrorPayload",
    "ErrorValue",
    "MethodRegistrationError",
    "encode_error",
    "http_status_for",
    "matches",
]

ERR_CODE_BAD_REQUEST = "bad_request"
ERR_CODE_INVALID_BODY = "invalid_body"
ERR_CODE_SCHEMA_FAILURE = "schema_validation_failed"
ERR_CODE_MISSING_BODY = "missing_request_body"
ERR_CODE_NO_AUTHENTICATION = "no_authentication"
ERR_CODE_INVALID_AUTHENTICATION = "invalid_authentication"
ERR_CODE_INVALID_TOKEN = "invalid_token"
ERR_CODE_ACCESS_DENIED = "access_denied"
ERR_CODE_FORBIDDEN = "forbidden"
ERR_CODE_METHOD_NOT_FOUND = "method_not_found"
ERR_CODE_DOWNSTREAM = "downstream_request_failed"
ERR_CODE_UNKNOWN = "unknown"

_DEFAULT_HTTP_STATUS = 500


@dataclass(frozen=True)
class _CodeSpec:
    code: str
    description: str
    http_status: int


_SPECS: tuple[_CodeSpec, ...] = (
    _CodeSpec(ERR_CODE_BAD_REQUEST, "Request could not be understood", 400),
    _CodeSpec(ERR_CODE_INVALID_BODY, "Request body is malformed or unexpected", 400),
    _CodeSpec(ERR_CODE_SCHEMA_FAILURE, "Request body failed schema validation", 400),
    _CodeSpec(ERR_CODE_MISSING_BODY, "Request body is required", 400),
    _CodeSpec(ERR_CODE_NO_AUTHENTICATION, "No credentials were presented", 401),
    _CodeSpec(ERR_CODE_INVALID_AUTHENTICATION, "Credentials were rejected", 401),
    _CodeSpec(ERR_CODE_INVALID_TOKEN, "Access token failed verification", 401),
    _CodeSpec(ERR_CODE_ACCESS_DENIED, "Caller lacks a required scope", 401),
    _CodeSpec(ERR_CODE_FORBIDDEN, "Caller may not perform this action", 403),
    _CodeSpec(ERR_CODE_METHOD_NOT_FOUND, "No method is registered under that name", 500),
    _CodeSpec(ERR_CODE_DOWNSTREAM, "A call to another service failed", 500),
    _CodeSpec(ERR_CODE_UNKNOWN, "Unexpected server-side failure", 500),
)

_HTTP_STATUS_MAP: dict[str, int] = {entry.code: entry.http_status for entry in _SPECS}

ERROR_CODES: Sequence[str] = tuple(entry.code for entry in _SPECS)


def http_status_for(code: str) -> int:
    """Return the HTTP status for ``code``; unrecognised codes fall into 500."""

    return _HTTP_STATUS_MAP.get(code, _DEFAULT_HTTP_STATUS)


class ErrorPayload(BaseModel):
    """Wire projection of an :class:`ErrorValue`."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    code: str
    message: str | None = None
    meta: dict[str, Any] | None = None


class ErrorValue(Exception):
    """Structured error with a stable ``code``.

    Instances are treated as values: the ``with_*`` helpers return copies and
    never mutate the receiver.
    """

    def __init__(
        self,
        code: str,
        message: str | None = None,
        meta: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        if not code:
            raise ValueError("error code must be a non-empty string")
        super().__init__(code)
        self.code = code
        self.message = message or None
        self.meta = dict(meta) if meta else None
        self.cause = cause

    @classmethod
    def new(cls, code: str) -> ErrorValue:
        return cls(code)

    @classmethod
    def wrap(cls, code: str, cause: BaseException) -> ErrorValue:
        return cls(code, cause=cause)

    @classmethod
    def errorf(cls, fmt: str, *values: Any) -> ErrorValue:
        return cls(fmt % values if values else fmt)

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any] | ErrorPayload) -> ErrorValue:
        if not isinstance(payload, ErrorPayload):
            payload = ErrorPayload.model_validate(payload)
        return cls(payload.code, message=payload.message, meta=payload.meta)

    def with_message(self, message: str) -> ErrorValue:
        return type(self)(self.code, message=message, meta=self.meta, cause=self.cause)

    def with_meta(self, meta: Mapping[str, Any]) -> ErrorValue:
        return type(self)(self.code, message=self.message, meta=meta, cause=self.cause)

    def with_cause(self, cause: BaseException) -> ErrorValue:
        return type(self)(self.code, message=self.message, meta=self.meta, cause=cause)

    def http_status(self) -> int:
        return http_status_for(self.code)

    def wire_view(self) -> ErrorPayload:
        return ErrorPayload(code=self.code, message=self.message, meta=self.meta)

    def to_wire(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; empty optional fields are omitted."""

        return self.wire_view().model_dump(exclude_none=True)

    def to_json(self) -> bytes:
        return pydantic_core.to_json(self.to_wire())

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        parts = [repr(self.code)]
        if self.message:
            parts.append(f"message={self.message!r}")
        if self.meta:
            parts.append(f"meta={self.meta!r}")
        if self.cause is not None:
            parts.append(f"cause={self.cause!r}")
        return f"ErrorValue({', '.join(parts)})"


def matches(err: BaseException | None, exemplar: ErrorValue) -> bool:
    """Return ``True`` when ``err`` is an :class:`ErrorValue` with the exemplar's code."""

    return isinstance(err, ErrorValue) and err.code == exemplar.code


class MethodRegistrationError(RuntimeError):
    """Raised at init time when a method cannot be registered."""


class ContextCancelled(Exception):
    """Raised when work observes a cancelled or expired context."""


class ConfigError(ValueError):
    """Raised when runtime settings are invalid."""


_logger = logging.getLogger(__name__)


def encode_error(err: BaseException) -> tuple[int, bytes]:
    """Return the HTTP status and JSON body for ``err``.

    Anything but an :class:`ErrorValue` renders as ``unknown``. When ``meta``
    cannot be serialised the body keeps only ``code`` and ``message``.
    """

    if not isinstance(err, ErrorValue):
        err = ErrorValue.new(ERR_CODE_UNKNOWN)
    try:
        return err.http_status(), err.to_json()
    except (pydantic_core.PydanticSerializationError, TypeError, ValueError) as exc:
        _logger.error(
            "error meta not serialisable, dropping it",
            extra={"fields": {"err_code": err.code, "error": str(exc)}},
        )
        stripped = ErrorValue(err.code, message=err.message)
        return stripped.http_status(), stripped.to_json()
