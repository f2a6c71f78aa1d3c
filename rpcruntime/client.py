"""Typed client for calling other services' RPC methods over HTTP."""

from __future__ import annotations

from typing import Any, TypeVar, overload

import httpx
from pydantic import TypeAdapter, ValidationError

from rpcruntime.context import Context, get_request_id
from rpcruntime.errors import ERR_CODE_DOWNSTREAM, ErrorPayload, ErrorValue
from rpcruntime.logging import logger_from_context
from rpcruntime.service import encode_result

__all__ = ["CLIENT_VERSION", "DownstreamError", "RpcClient"]

CLIENT_VERSION = "0.1"
_USER_AGENT_TEMPLATE = "{client_name} (rpcruntime-rpc-client {version})"

R = TypeVar("R")


class DownstreamError(Exception):
    """A downstream call failed without returning a recognisable error body."""


class RpcClient:
    """POSTs JSON bodies to ``<base_url>/<method>``.

    Error bodies carrying a ``code`` are raised as :class:`ErrorValue` with the
    same code, message and meta, so the error taxonomy survives the hop. Any
    other failure becomes ``downstream_request_failed``.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str = "",
        client_name: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.client_name = client_name
        self._transport = transport
        self._timeout = timeout

    @property
    def user_agent(self) -> str:
        return _USER_AGENT_TEMPLATE.format(client_name=self.client_name, version=CLIENT_VERSION)

    def _headers(self, ctx: Context, has_body: bool) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}
        if has_body:
            headers["Content-Type"] = "application/json; charset=utf-8"
        if self.access_token:
            token = self.access_token
            if not token.lower().startswith("bearer "):
                token = f"Bearer {token}"
            headers["Authorization"] = token
        request_id = get_request_id(ctx)
        if request_id:
            headers["X-Parent-Request-ID"] = request_id
        return headers

    def _request_timeout(self, ctx: Context) -> float | None:
        remaining = ctx.remaining()
        if remaining is None:
            return self._timeout
        if self._timeout is None:
            return remaining
        return min(remaining, self._timeout)

    @overload
    async def call(self, ctx: Context, method: str, request: Any = ...) -> Any: ...

    @overload
    async def call(
        self, ctx: Context, method: str, request: Any = ..., *, response_type: type[R]
    ) -> R | None: ...

    async def call(
        self,
        ctx: Context,
        method: str,
        request: Any = None,
        *,
        response_type: type[Any] | None = None,
    ) -> Any:
        """Call ``method``. Returns the decoded response, or ``None`` for 204."""

        try:
            return await self._call(ctx, method, request, response_type)
        except ErrorValue:
            raise
        except Exception as exc:
            logger_from_context(ctx).entry.with_error(exc).with_fields(
                url=self.base_url, rpc_method=method
            ).warning("downstream rpc request failed")
            raise ErrorValue.wrap(ERR_CODE_DOWNSTREAM, exc) from exc

    async def _call(
        self,
        ctx: Context,
        method: str,
        request: Any,
        response_type: type[Any] | None,
    ) -> Any:
        ctx.raise_if_cancelled()
        content = encode_result(request) if request is not None else b""
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._request_timeout(ctx)
        ) as http:
            response = await http.post(
                f"{self.base_url}/{method}",
                content=content,
                headers=self._headers(ctx, request is not None),
            )

        body = response.content
        if response.status_code == 204:
            if body:
                raise DownstreamError("unexpected content for 204 response")
            return None

        if response.status_code == 200:
            if not body:
                raise DownstreamError("no body for 200 response")
            if response_type is None:
                return response.json()
            return TypeAdapter(response_type).validate_json(body)

        try:
            payload = ErrorPayload.model_validate_json(body)
        except ValidationError:
            payload = None
        if payload is not None and payload.code:
            raise ErrorValue.from_wire(payload)
        raise DownstreamError(f"{response.status_code} {response.reason_phrase}".strip())
