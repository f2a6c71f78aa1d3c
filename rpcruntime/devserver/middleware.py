"""Starlette middleware for the development server."""

from __future__ import annotations

from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from rpcruntime.errors import ERR_CODE_BAD_REQUEST, ErrorValue
from rpcruntime.logging import LogEntry

__all__ = ["JsonContentTypeMiddleware", "RequestContextMiddleware", "REQUEST_ID_HEADER"]

REQUEST_ID_HEADER = "X-Request-ID"

_ALLOWED_CONTENT_TYPES = ("application/json",)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id and a request-scoped log entry to every request."""

    def __init__(self, app: ASGIApp, *, logger: LogEntry) -> None:
        super().__init__(app)
        self._logger = logger

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        request.state.log_entry = self._logger.with_field("request_id", request_id)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class JsonContentTypeMiddleware(BaseHTTPMiddleware):
    """Reject request bodies that are not declared as JSON."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method in {"POST", "PUT", "PATCH"} and _has_body(request):
            content_type = request.headers.get("content-type", "")
            media_type = content_type.split(";", 1)[0].strip().lower()
            if media_type not in _ALLOWED_CONTENT_TYPES:
                err = ErrorValue.new(ERR_CODE_BAD_REQUEST).with_message(
                    f"unsupported content type {media_type or 'none'!r}"
                )
                return Response(
                    content=err.to_json(),
                    status_code=err.http_status(),
                    media_type="application/json; charset=utf-8",
                )
        return await call_next(request)


def _has_body(request: Request) -> bool:
    length = request.headers.get("content-length")
    if length is None:
        return "transfer-encoding" in request.headers
    try:
        return int(length) > 0
    except ValueError:
        return True
