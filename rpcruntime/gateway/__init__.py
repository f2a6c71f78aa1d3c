"""HTTP gateway event bindings."""

from rpcruntime.gateway.adapter import (
    context_from_lambda,
    error_response,
    handle_api_gateway_event,
    wrap_api_gateway_http,
)
from rpcruntime.gateway.events import GatewayEvent, GatewayResponse
from rpcruntime.gateway.middleware import (
    GatewayHandler,
    json_error_handler,
    json_handler,
    request_logger_middleware,
    text_error_handler,
    with_middleware,
)

__all__ = [
    "GatewayEvent",
    "GatewayHandler",
    "GatewayResponse",
    "context_from_lambda",
    "error_response",
    "handle_api_gateway_event",
    "json_error_handler",
    "json_handler",
    "request_logger_middleware",
    "text_error_handler",
    "wrap_api_gateway_http",
    "with_middleware",
]
