"""The invocation pipeline: validate, decode, call, normalise."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Final

import pydantic_core

from rpcruntime.context import Context
from rpcruntime.errors import (
    ERR_CODE_INVALID_BODY,
    ERR_CODE_SCHEMA_FAILURE,
    ERR_CODE_UNKNOWN,
    ErrorValue,
)
from rpcruntime.logging import ContextLogger, logger_from_context
from rpcruntime.service.method import MethodDescriptor
from rpcruntime.validation import InvalidJSONError

__all__ = ["NO_CONTENT", "NoContent", "encode_result", "invoke"]


class NoContent:
    """Marker for a successful call with nothing to serialise."""

    _instance: NoContent | None = None

    def __new__(cls) -> NoContent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_CONTENT"


NO_CONTENT: Final = NoContent()


def _duration_us(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1_000_000)


def _handled_error(req_logger: ContextLogger, err: ErrorValue, started_at: float) -> ErrorValue:
    entry = req_logger.entry.with_error(err).with_fields(
        err_code=err.code,
        handler_duration=_duration_us(started_at),
    )
    if err.cause is not None:
        entry = entry.with_field("err_cause", str(err.cause) or type(err.cause).__name__)
    if err.message:
        entry = entry.with_field("err_message", err.message)
    req_logger.update(entry)
    if err.code == ERR_CODE_UNKNOWN:
        entry.error("rpc request handled error")
    else:
        entry.warning("rpc request handled error")
    return err


async def _call_handler(method: MethodDescriptor, args: list[Any]) -> Any:
    if method.is_async:
        return await method.handler(*args)
    return await asyncio.to_thread(method.handler, *args)


async def invoke(ctx: Context, method: MethodDescriptor, body: bytes) -> Any:
    """Run ``method`` against the raw request ``body``.

    Returns :data:`NO_CONTENT` or the handler's response record. Every failure
    is raised as an :class:`ErrorValue`; handler exceptions that are not
    already ``ErrorValue`` instances are logged and replaced by ``unknown``.
    """

    started_at = time.perf_counter()
    req_logger = logger_from_context(ctx)
    req_logger.update(req_logger.entry.with_field("rpc_method", method.name))

    if method.schema is not None:
        try:
            violations = method.schema.validate_bytes(body)
        except InvalidJSONError as exc:
            raise _handled_error(
                req_logger, ErrorValue.wrap(ERR_CODE_INVALID_BODY, exc), started_at
            ) from exc
        if violations:
            err = ErrorValue.new(ERR_CODE_SCHEMA_FAILURE).with_meta(
                {"reasons": [violation.to_dict() for violation in violations]}
            )
            raise _handled_error(req_logger, err, started_at)

    if body and not method.expects_request_body:
        err = ErrorValue.new(ERR_CODE_INVALID_BODY).with_message("unexpected request body")
        raise _handled_error(req_logger, err, started_at)
    if not body and method.expects_request_body:
        err = ErrorValue.new(ERR_CODE_INVALID_BODY).with_message("expecting request body")
        raise _handled_error(req_logger, err, started_at)

    args: list[Any] = [ctx]
    if method.expects_request_body:
        try:
            args.append(method.decode_request(body))
        except ValueError as exc:
            err = ErrorValue.wrap(ERR_CODE_INVALID_BODY, exc).with_message("unable to parse body")
            raise _handled_error(req_logger, err, started_at) from exc

    try:
        result = await _call_handler(method, args)
    except ErrorValue as err:
        _handled_error(req_logger, err, started_at)
        raise
    except Exception as exc:
        entry = req_logger.entry.with_error(exc).with_field(
            "handler_duration", _duration_us(started_at)
        )
        req_logger.update(entry)
        entry.error("rpc request unhandled error", exc_info=exc)
        raise ErrorValue.new(ERR_CODE_UNKNOWN) from exc

    entry = req_logger.entry.with_field("handler_duration", _duration_us(started_at))
    req_logger.update(entry)
    entry.info("rpc request handled")

    if not method.expects_response_body or result is None:
        return NO_CONTENT
    return result


def encode_result(result: Any) -> bytes:
    """Serialise a handler's response record to JSON bytes."""

    return pydantic_core.to_json(result, by_alias=True)
