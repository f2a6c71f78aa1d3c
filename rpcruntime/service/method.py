from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from jsonschema.exceptions import SchemaError
from pydantic import TypeAdapter

from rpcruntime.errors import MethodRegistrationError
from rpcruntime.service.validate import HandlerShapeError, validate_handler
from rpcruntime.validation import CompiledSchema, compile_schema

__all__ = ["MethodDescriptor", "SchemaInput", "build_method"]

SchemaInput = Mapping[str, Any] | str | bytes | CompiledSchema


@dataclass(frozen=True, slots=True)
class MethodDescriptor:
    """A validated RPC method. Immutable once registered."""

    name: str
    handler: Callable[..., Any]
    schema: CompiledSchema | None
    request_type: type[Any] | None
    response_type: type[Any] | None
    is_async: bool
    _request_adapter: TypeAdapter[Any] | None = field(default=None, repr=False, compare=False)

    @property
    def expects_request_body(self) -> bool:
        return self.request_type is not None

    @property
    def expects_response_body(self) -> bool:
        return self.response_type is not None

    def decode_request(self, body: bytes) -> Any:
        """Decode ``body`` into a fresh request record."""

        if self._request_adapter is None:
            raise TypeError(f"method {self.name} does not accept a request body")
        return self._request_adapter.validate_json(body)


def build_method(
    name: str,
    handler: Callable[..., Any],
    schema: SchemaInput | None = None,
) -> MethodDescriptor:
    """Validate ``handler`` and ``schema`` and return a descriptor.

    Raises :class:`MethodRegistrationError` when either cannot be served.
    """

    if not name:
        raise MethodRegistrationError("runtime cannot add rpc method: name must not be empty")

    compiled: CompiledSchema | None = None
    if schema is not None:
        try:
            compiled = compile_schema(schema)
        except (SchemaError, ValueError, TypeError) as exc:
            raise MethodRegistrationError(
                f"runtime cannot parse schema for method {name}: {exc}"
            ) from exc

    try:
        shape = validate_handler(handler, compiled)
    except HandlerShapeError as exc:
        raise MethodRegistrationError(f"runtime cannot add rpc method {name}: {exc}") from exc

    adapter = TypeAdapter(shape.request_type) if shape.request_type is not None else None
    return MethodDescriptor(
        name=name,
        handler=handler,
        schema=compiled,
        request_type=shape.request_type,
        response_type=shape.response_type,
        is_async=shape.is_async,
        _request_adapter=adapter,
    )
