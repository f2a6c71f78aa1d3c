"""Bind a :class:`Service` to HTTP gateway events."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

import pydantic_core

from rpcruntime.context import Context, set_request_id
from rpcruntime.errors import (
    ERR_CODE_INVALID_BODY,
    ERR_CODE_METHOD_NOT_FOUND,
    ERR_CODE_UNKNOWN,
    ErrorValue,
    encode_error,
)
from rpcruntime.gateway.events import GatewayEvent, GatewayResponse
from rpcruntime.logging import ContextLogger, logger_from_context, set_logger
from rpcruntime.service import NO_CONTENT, MethodDescriptor, Service, encode_result, invoke

__all__ = [
    "context_from_lambda",
    "error_response",
    "handle_api_gateway_event",
    "result_response",
    "wrap_api_gateway_http",
]

METHOD_PATH_PARAMETER = "method"


def error_response(err: BaseException) -> GatewayResponse:
    """Serialise ``err``; anything but an :class:`ErrorValue` becomes ``unknown``."""

    status, body = encode_error(err)
    return GatewayResponse.json_body(status, body)


def result_response(req_logger: ContextLogger, result: Any) -> GatewayResponse:
    if result is NO_CONTENT:
        return GatewayResponse.no_content()
    try:
        payload = encode_result(result)
    except (pydantic_core.PydanticSerializationError, TypeError, ValueError) as exc:
        req_logger.entry.with_error(exc).error(
            "wrap http api gateway: encoding response body failed"
        )
        return error_response(ErrorValue.wrap(ERR_CODE_UNKNOWN, exc))
    return GatewayResponse.json_body(200, payload)


def _resolve_method(
    service: Service, event: GatewayEvent, req_logger: ContextLogger
) -> MethodDescriptor | None:
    params = event.path_parameters or {}
    name = params.get(METHOD_PATH_PARAMETER)
    if name is None:
        if len(service) == 1:
            return next(iter(service))
        req_logger.entry.error(
            "wrap http api gateway: method path parameter not found"
        )
        return None
    method = service.get_method(name)
    if method is None:
        req_logger.entry.with_field("rpc_method", name).error(
            "wrap http api gateway: method not found"
        )
    return method


async def handle_api_gateway_event(
    service: Service,
    ctx: Context,
    event: GatewayEvent | Mapping[str, Any],
) -> GatewayResponse:
    """Dispatch one gateway event to the matching method of ``service``."""

    service.seal()
    if not isinstance(event, GatewayEvent):
        event = GatewayEvent.model_validate(event)

    request_id = event.request_context.request_id
    if request_id:
        ctx = set_request_id(ctx, request_id)
    ctx = set_logger(ctx, service.logger.with_field("request_id", request_id))
    req_logger = logger_from_context(ctx)

    try:
        if service.identity_provider is not None:
            ctx = service.identity_provider(ctx, event.raw_claims())

        method = _resolve_method(service, event, req_logger)
        if method is None:
            return error_response(ErrorValue.new(ERR_CODE_METHOD_NOT_FOUND))

        ctx = service.apply_context_providers(ctx)

        try:
            body = event.body_bytes()
        except ValueError as exc:
            raise ErrorValue.wrap(ERR_CODE_INVALID_BODY, exc).with_message(
                "unable to decode body"
            ) from exc

        result = await invoke(ctx, method, body)
    except ErrorValue as err:
        return error_response(err)
    except Exception as exc:
        req_logger.entry.with_error(exc).error("wrap http api gateway: request failed")
        return error_response(exc)

    return result_response(req_logger, result)


def context_from_lambda(lambda_context: Any = None) -> Context:
    """Build a root context honouring the function's remaining execution time."""

    ctx = Context.background()
    remaining = getattr(lambda_context, "get_remaining_time_in_millis", None)
    if callable(remaining):
        ctx, _ = ctx.with_timeout(max(remaining(), 0) / 1000.0)
    return ctx


def wrap_api_gateway_http(service: Service) -> Callable[[Mapping[str, Any], Any], dict[str, Any]]:
    """Return a synchronous function entry point for HTTP gateway events."""

    service.seal()

    def handler(event: Mapping[str, Any], lambda_context: Any = None) -> dict[str, Any]:
        ctx = context_from_lambda(lambda_context)
        response = asyncio.run(handle_api_gateway_event(service, ctx, event))
        return response.to_dict()

    return handler
