"""Typed JSON-over-HTTP RPC runtime.

Register plain functions as methods on a :class:`Service`, then serve it
through the development server, an HTTP gateway function or a queue
consumer function.
"""

from rpcruntime.client import RpcClient
from rpcruntime.config import RuntimeSettings
from rpcruntime.context import Context, ContextKey, get_request_id, set_request_id
from rpcruntime.errors import ErrorPayload, ErrorValue, MethodRegistrationError
from rpcruntime.logging import create_logger, logger_from_context, set_logger
from rpcruntime.service import NO_CONTENT, MethodDescriptor, Service, invoke

__all__ = [
    "NO_CONTENT",
    "Context",
    "ContextKey",
    "ErrorPayload",
    "ErrorValue",
    "MethodDescriptor",
    "MethodRegistrationError",
    "RpcClient",
    "RuntimeSettings",
    "Service",
    "create_logger",
    "get_request_id",
    "invoke",
    "logger_from_context",
    "set_logger",
    "set_request_id",
]

__version__ = "0.1.0"
