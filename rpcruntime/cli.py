"""Command line entry point for the development server."""

from __future__ import annotations

import argparse
import importlib
import logging
from collections.abc import Callable
from typing import Any

from rpcruntime.config import RuntimeSettings
from rpcruntime.devserver import DevServer
from rpcruntime.errors import ConfigError
from rpcruntime.service import Service

__all__ = ["build_settings", "load_factory", "main", "parse_args"]

_LOG_LEVELS = ["debug", "info", "warn", "error"]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an rpcruntime service on a local HTTP server")
    parser.add_argument(
        "--app",
        required=True,
        help="Service factory as module:attribute, e.g. myservice.app:build",
    )
    parser.add_argument("--path", default=None, help="Mount path (defaults to the service name)")
    parser.add_argument("--host", default=None, help="HTTP host")
    parser.add_argument("--port", type=int, default=None, help="HTTP port")
    parser.add_argument("--log-level", choices=_LOG_LEVELS, default=None, help="Logging level")
    parser.add_argument("--log-format", choices=["json", "text"], default=None, help="Log format")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-request timeout in seconds",
    )
    return parser.parse_args(argv)


def load_factory(ref: str) -> Callable[..., Any]:
    """Resolve ``module:attribute`` to a callable or a :class:`Service`."""

    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"--app must look like module:attribute, got {ref!r}")
    module = importlib.import_module(module_name)
    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError:
            raise ConfigError(f"{module_name} has no attribute {attr!r}") from None
    return target


def _resolve_service(target: Any) -> Service:
    service = target if isinstance(target, Service) else target()
    if not isinstance(service, Service):
        raise ConfigError(f"--app must produce a Service, got {type(service).__name__}")
    return service


def build_settings(args: argparse.Namespace) -> RuntimeSettings:
    base = RuntimeSettings.from_env()
    return RuntimeSettings(
        service_name=base.service_name,
        log_format=args.log_format or base.log_format,
        log_level=args.log_level or base.log_level,
        host=args.host or base.host,
        port=args.port if args.port is not None else base.port,
        request_timeout=args.timeout if args.timeout is not None else base.request_timeout,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = build_settings(args)
        service = _resolve_service(load_factory(args.app))
    except ConfigError as exc:
        logging.getLogger("rpcruntime").error("invalid configuration: %s", exc)
        return 2

    server = DevServer(settings)
    server.add_service(args.path or service.name, service)
    try:
        server.listen()
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
