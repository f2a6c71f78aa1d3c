"""Registration-time inspection of handler signatures.

Valid handlers take one of four shapes::

    def handler(ctx: Context, request: Req) -> Res | None
    def handler(ctx: Context, request: Req) -> None
    def handler(ctx: Context) -> Res | None
    def handler(ctx: Context) -> None

``Req`` and ``Res`` are records: pydantic models or dataclasses. Failures are
raised as exceptions by the handler, never returned.
"""

from __future__ import annotations

import dataclasses
import functools
import inspect
import types
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from rpcruntime.context import Context
from rpcruntime.validation import CompiledSchema

__all__ = ["HandlerShape", "HandlerShapeError", "is_record_type", "validate_handler"]

_NONE_TYPE = type(None)
_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


class HandlerShapeError(ValueError):
    """Raised when a handler does not fit one of the permitted shapes."""


@dataclass(frozen=True, slots=True)
class HandlerShape:
    request_type: type[Any] | None
    response_type: type[Any] | None
    is_async: bool

    @property
    def expects_request_body(self) -> bool:
        return self.request_type is not None

    @property
    def expects_response_body(self) -> bool:
        return self.response_type is not None


def is_record_type(tp: Any) -> bool:
    """Return ``True`` for pydantic model classes and dataclass classes."""

    if not isinstance(tp, type):
        return False
    return issubclass(tp, BaseModel) or dataclasses.is_dataclass(tp)


def _response_record(annotation: Any) -> type[Any] | None:
    """Return the record type of a return annotation, ``None`` for no body."""

    if annotation is None or annotation is _NONE_TYPE:
        return None
    if is_record_type(annotation):
        return annotation
    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        members = [arg for arg in typing.get_args(annotation) if arg is not _NONE_TYPE]
        if len(members) == 1 and is_record_type(members[0]):
            return members[0]
    raise HandlerShapeError(
        f"handler return must be None, a record or an optional record, {annotation!r} provided"
    )


def _describe(annotation: Any) -> str:
    return getattr(annotation, "__name__", repr(annotation))


def _hint_source(handler: Callable[..., Any]) -> Callable[..., Any]:
    if inspect.isfunction(handler) or inspect.ismethod(handler):
        return handler
    if isinstance(handler, functools.partial):
        return _hint_source(handler.func)
    return type(handler).__call__


def validate_handler(handler: Any, schema: CompiledSchema | None) -> HandlerShape:
    """Inspect ``handler`` and report whether it consumes and produces bodies."""

    if not callable(handler) or isinstance(handler, type):
        raise HandlerShapeError("handler must be a callable")

    target = _hint_source(handler)
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError) as exc:
        raise HandlerShapeError(f"handler signature cannot be inspected: {exc}") from exc

    params = list(signature.parameters.values())
    if any(param.kind not in _POSITIONAL for param in params):
        raise HandlerShapeError("handler arguments must all be positional")
    if len(params) < 1 or len(params) > 2:
        raise HandlerShapeError(f"handler must have 1 or 2 arguments, {len(params)} provided")

    try:
        hints = typing.get_type_hints(target)
    except Exception as exc:
        raise HandlerShapeError(f"handler annotations cannot be resolved: {exc}") from exc

    if "return" not in hints:
        raise HandlerShapeError("handler must declare a return annotation")

    first = hints.get(params[0].name)
    if not (isinstance(first, type) and issubclass(Context, first)):
        raise HandlerShapeError(
            f"handler first argument must accept Context, {_describe(first)} provided"
        )

    request_type: type[Any] | None = None
    if len(params) == 2:
        second = hints.get(params[1].name)
        if not is_record_type(second):
            raise HandlerShapeError(
                "handler second argument must be a record type (pydantic model or dataclass), "
                f"{_describe(second)} provided"
            )
        request_type = second
        if schema is None:
            raise HandlerShapeError("methods with a request type must provide a schema")

    response_type = _response_record(hints["return"])

    return HandlerShape(
        request_type=request_type,
        response_type=response_type,
        is_async=inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(target),
    )
