"""Method registration, validation and invocation."""

from rpcruntime.service.invoke import NO_CONTENT, NoContent, encode_result, invoke
from rpcruntime.service.method import MethodDescriptor, build_method
from rpcruntime.service.service import ContextProvider, IdentityProvider, Service
from rpcruntime.service.validate import HandlerShapeError, is_record_type, validate_handler

__all__ = [
    "NO_CONTENT",
    "ContextProvider",
    "HandlerShapeError",
    "IdentityProvider",
    "MethodDescriptor",
    "NoContent",
    "Service",
    "build_method",
    "encode_result",
    "invoke",
    "is_record_type",
    "validate_handler",
]
