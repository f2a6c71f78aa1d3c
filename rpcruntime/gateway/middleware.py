"""Composable handlers for gateway deployments that do not use a Service."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol

from rpcruntime.context import Context
from rpcruntime.errors import ERR_CODE_INVALID_BODY, ERR_CODE_UNKNOWN, ErrorValue
from rpcruntime.gateway.adapter import error_response, result_response
from rpcruntime.gateway.events import GatewayEvent, GatewayResponse
from rpcruntime.logging import LogEntry, logger_from_context, set_logger
from rpcruntime.service import build_method, invoke
from rpcruntime.service.method import SchemaInput

__all__ = [
    "GatewayHandler",
    "Middleware",
    "json_error_handler",
    "json_handler",
    "request_logger_middleware",
    "text_error_handler",
    "with_middleware",
]


class GatewayHandler(Protocol):
    async def __call__(self, ctx: Context, event: GatewayEvent) -> GatewayResponse: ...


Middleware = Callable[[GatewayHandler], GatewayHandler]


def with_middleware(handler: GatewayHandler, *middlewares: Middleware) -> GatewayHandler:
    """Wrap ``handler``; the last middleware listed runs outermost."""

    for middleware in middlewares:
        handler = middleware(handler)
    return handler


def json_handler(handler: Callable[..., Any], schema: SchemaInput | None = None) -> GatewayHandler:
    """Expose a single handler function as a gateway handler.

    Errors propagate to the surrounding middleware rather than being rendered.
    """

    method = build_method(getattr(handler, "__name__", "handler"), handler, schema)

    async def handle(ctx: Context, event: GatewayEvent) -> GatewayResponse:
        try:
            body = event.body_bytes()
        except ValueError as exc:
            raise ErrorValue.wrap(ERR_CODE_INVALID_BODY, exc).with_message(
                "unable to decode body"
            ) from exc
        result = await invoke(ctx, method, body)
        return result_response(logger_from_context(ctx), result)

    return handle


def _duration_us(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1_000_000)


def request_logger_middleware(entry: LogEntry) -> Middleware:
    def middleware(inner: GatewayHandler) -> GatewayHandler:
        async def handle(ctx: Context, event: GatewayEvent) -> GatewayResponse:
            ctx = set_logger(
                ctx, entry.with_field("apig_request_id", event.request_context.request_id)
            )
            req_logger = logger_from_context(ctx)
            started_at = time.perf_counter()
            try:
                response = await inner(ctx, event)
            except ErrorValue as err:
                failed = req_logger.entry.with_error(err).with_field(
                    "handler_duration", _duration_us(started_at)
                )
                if err.cause is not None:
                    failed = failed.with_field("err_cause", str(err.cause))
                if err.message:
                    failed = failed.with_field("err_message", err.message)
                req_logger.update(failed)
                if err.code == ERR_CODE_UNKNOWN:
                    failed.error("request: handled error")
                else:
                    failed.warning("request: handled error")
                raise
            except Exception as exc:
                failed = req_logger.entry.with_error(exc).with_field(
                    "handler_duration", _duration_us(started_at)
                )
                req_logger.update(failed)
                failed.error("request: unhandled error", exc_info=exc)
                raise
            done = req_logger.entry.with_field("handler_duration", _duration_us(started_at))
            req_logger.update(done)
            done.info("request: handled success")
            return response

        return handle

    return middleware


def json_error_handler(inner: GatewayHandler) -> GatewayHandler:
    """Render raised errors as JSON error bodies."""

    async def handle(ctx: Context, event: GatewayEvent) -> GatewayResponse:
        try:
            return await inner(ctx, event)
        except Exception as exc:
            return error_response(exc)

    return handle


def text_error_handler(inner: GatewayHandler) -> GatewayHandler:
    """Render raised errors as their bare code in a ``text/plain`` body."""

    async def handle(ctx: Context, event: GatewayEvent) -> GatewayResponse:
        try:
            return await inner(ctx, event)
        except Exception as exc:
            err = exc if isinstance(exc, ErrorValue) else ErrorValue.new(ERR_CODE_UNKNOWN)
            return GatewayResponse(
                statusCode=err.http_status(),
                body=err.code,
                headers={"Content-Type": "text/plain; charset=utf-8"},
            )

    return handle
