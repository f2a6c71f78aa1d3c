"""Development HTTP server built on FastAPI."""

from rpcruntime.devserver.app import DevServer, create_app
from rpcruntime.devserver.middleware import REQUEST_ID_HEADER, JsonContentTypeMiddleware, RequestContextMiddleware
from rpcruntime.devserver.routes import CORS_HEADERS, build_router, error_response

__all__ = [
    "CORS_HEADERS",
    "DevServer",
    "JsonContentTypeMiddleware",
    "REQUEST_ID_HEADER",
    "RequestContextMiddleware",
    "build_router",
    "create_app",
    "error_response",
]
