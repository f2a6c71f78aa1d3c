from __future__ import annotations

import asyncio

import uvicorn
from fastapi import FastAPI

from rpcruntime.auth import Authenticator
from rpcruntime.config import RuntimeSettings
from rpcruntime.logging import LogEntry, create_logger
from rpcruntime.service import Service
from rpcruntime.devserver.middleware import JsonContentTypeMiddleware, RequestContextMiddleware
from rpcruntime.devserver.routes import build_router

__all__ = ["DevServer", "create_app"]

_UVICORN_LOG_LEVELS = {
    "debug": "debug",
    "info": "info",
    "warn": "warning",
    "warning": "warning",
    "error": "error",
}


def create_app(settings: RuntimeSettings, *, logger: LogEntry | None = None) -> FastAPI:
    """Return a FastAPI application with the request middleware installed."""

    entry = logger or create_logger(
        settings.service_name, settings.log_format, settings.log_level
    )
    app = FastAPI(title=f"{settings.service_name} rpc", docs_url=None, openapi_url=None)
    # last added runs first
    app.add_middleware(JsonContentTypeMiddleware)
    app.add_middleware(RequestContextMiddleware, logger=entry)
    return app


class DevServer:
    """Local HTTP server hosting one or more services for development.

    Each service is mounted under its own path; methods are reached with
    ``POST /<path>/<method>``.
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        *,
        logger: LogEntry | None = None,
    ) -> None:
        self.settings = settings or RuntimeSettings()
        self.logger = logger or create_logger(
            self.settings.service_name, self.settings.log_format, self.settings.log_level
        )
        self.app = create_app(self.settings, logger=self.logger)
        self._authenticator: Authenticator | None = None
        self._paths: dict[str, Service] = {}

    def with_authenticator(self, authenticator: Authenticator) -> DevServer:
        self._authenticator = authenticator
        return self

    def add_service(self, path: str, service: Service, *, authenticate: bool = False) -> DevServer:
        key = path.strip("/")
        if not key:
            raise ValueError("service path must not be empty")
        if key in self._paths:
            raise ValueError(f"a service is already mounted at /{key}")
        if authenticate and self._authenticator is None:
            raise ValueError("authenticate requires an authenticator; call with_authenticator first")

        service.seal()
        self._paths[key] = service
        self.app.include_router(
            build_router(
                key,
                service,
                timeout=self.settings.request_timeout,
                authenticator=self._authenticator if authenticate else None,
            )
        )
        self.logger.with_fields(path=f"/{key}", methods=sorted(service.methods)).info(
            "service mounted"
        )
        return self

    @property
    def services(self) -> dict[str, Service]:
        return dict(self._paths)

    def listen(self) -> None:
        """Serve until interrupted."""

        asyncio.run(self.serve())

    async def serve(self) -> None:
        config = uvicorn.Config(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=_UVICORN_LOG_LEVELS[self.settings.log_level],
            access_log=False,
        )
        self.logger.with_fields(host=self.settings.host, port=self.settings.port).info(
            "dev server listening"
        )
        await uvicorn.Server(config).serve()
