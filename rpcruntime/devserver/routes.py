from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pydantic_core
from fastapi import APIRouter
from starlette.requests import Request
from starlette.responses import Response

from rpcruntime.auth import AuthIdentity, Authenticator, set_identity
from rpcruntime.context import Context, set_request_id
from rpcruntime.errors import (
    ERR_CODE_METHOD_NOT_FOUND,
    ERR_CODE_NO_AUTHENTICATION,
    ERR_CODE_UNKNOWN,
    ErrorValue,
    encode_error,
)
from rpcruntime.logging import LogEntry, logger_from_context, set_logger
from rpcruntime.service import NO_CONTENT, MethodDescriptor, Service, encode_result, invoke

__all__ = ["CORS_HEADERS", "build_router", "error_response"]

JSON_MEDIA_TYPE = "application/json; charset=utf-8"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "DELETE,GET,HEAD,PUT,POST,PATCH,OPTIONS",
    "Access-Control-Allow-Headers": "Authorization,Content-Type,Host,Origin,Accept",
}


def error_response(err: BaseException) -> Response:
    status, body = encode_error(err)
    return Response(
        content=body,
        status_code=status,
        media_type=JSON_MEDIA_TYPE,
        headers=CORS_HEADERS,
    )


def _request_context(request: Request, fallback: LogEntry, timeout: float) -> Context:
    ctx, _ = Context.background().with_timeout(timeout)
    request_id = getattr(request.state, "request_id", "")
    if request_id:
        ctx = set_request_id(ctx, request_id)
    return set_logger(ctx, getattr(request.state, "log_entry", fallback))


def _authenticate(
    ctx: Context, request: Request, service: Service, authenticator: Authenticator
) -> Context:
    token = request.headers.get("authorization")
    if not token:
        raise ErrorValue.new(ERR_CODE_NO_AUTHENTICATION)
    claims = authenticator.authenticate(ctx, token)
    if service.identity_provider is not None:
        return service.identity_provider(ctx, claims)
    return set_identity(ctx, AuthIdentity.from_claims(claims))


def build_router(
    path: str,
    service: Service,
    *,
    timeout: float,
    authenticator: Authenticator | None = None,
) -> APIRouter:
    """Mount each method of ``service`` at ``POST /<path>/<method>``."""

    router = APIRouter(prefix=f"/{path.strip('/')}")

    async def _serve(request: Request, method: MethodDescriptor | None) -> Response:
        ctx = _request_context(request, service.logger, timeout)
        try:
            async with asyncio.timeout(timeout):
                if authenticator is not None:
                    ctx = _authenticate(ctx, request, service, authenticator)
                if method is None:
                    raise ErrorValue.new(ERR_CODE_METHOD_NOT_FOUND)
                ctx = service.apply_context_providers(ctx)
                body = await request.body()
                result = await invoke(ctx, method, body)
        except ErrorValue as err:
            return error_response(err)
        except TimeoutError:
            logger_from_context(ctx).entry.error("request timed out")
            return error_response(
                ErrorValue.new(ERR_CODE_UNKNOWN).with_message("request timed out")
            )
        except Exception as exc:
            logger_from_context(ctx).entry.with_error(exc).error("dev server: request failed")
            return error_response(exc)

        if result is NO_CONTENT:
            return Response(status_code=204, headers=CORS_HEADERS)
        try:
            payload = encode_result(result)
        except (pydantic_core.PydanticSerializationError, TypeError, ValueError) as exc:
            logger_from_context(ctx).entry.with_error(exc).error("encoding response failed")
            return error_response(ErrorValue.wrap(ERR_CODE_UNKNOWN, exc))
        return Response(
            content=payload, status_code=200, media_type=JSON_MEDIA_TYPE, headers=CORS_HEADERS
        )

    def _endpoint(method: MethodDescriptor) -> Callable[[Request], Awaitable[Response]]:
        async def endpoint(request: Request) -> Response:
            return await _serve(request, method)

        endpoint.__name__ = f"rpc_{method.name}"
        return endpoint

    for method in service:
        router.add_api_route(f"/{method.name}", _endpoint(method), methods=["POST"])

    async def options(request: Request, rest: str) -> Response:
        return Response(status_code=204, headers=CORS_HEADERS)

    async def unknown_method(request: Request, name: str) -> Response:
        return await _serve(request, None)

    router.add_api_route("/{rest:path}", options, methods=["OPTIONS"])
    router.add_api_route("/{name:path}", unknown_method, methods=["POST"])
    return router
