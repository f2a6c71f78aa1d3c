"""Runtime settings resolved from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from rpcruntime.errors import ConfigError
from rpcruntime.logging import parse_level

__all__ = ["ENV_PREFIX", "RuntimeSettings"]

ENV_PREFIX = "RPCRUNTIME_"

_LOG_FORMATS = ("json", "text")


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    """Settings shared by the development server and the function adapters."""

    service_name: str = "rpc"
    log_format: str = "json"
    log_level: str = "info"
    host: str = "127.0.0.1"
    port: int = 8000
    request_timeout: float = 60.0

    def __post_init__(self) -> None:
        if not self.service_name:
            raise ConfigError("service_name must not be empty")
        if self.log_format not in _LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {', '.join(_LOG_FORMATS)}")
        parse_level(self.log_level)
        if not 0 < self.port < 65536:
            raise ConfigError("port must be between 1 and 65535")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be a positive number of seconds")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RuntimeSettings:
        env = os.environ if environ is None else environ
        defaults = cls()

        def _get(name: str, default: str) -> str:
            value = env.get(f"{ENV_PREFIX}{name}")
            return value.strip() if value and value.strip() else default

        try:
            port = int(_get("PORT", str(defaults.port)))
            timeout = float(_get("REQUEST_TIMEOUT", str(defaults.request_timeout)))
        except ValueError as exc:
            raise ConfigError(f"invalid numeric setting: {exc}") from exc

        return cls(
            service_name=_get("SERVICE_NAME", defaults.service_name),
            log_format=_get("LOG_FORMAT", defaults.log_format).lower(),
            log_level=_get("LOG_LEVEL", defaults.log_level).lower(),
            host=_get("HOST", defaults.host),
            port=port,
            request_timeout=timeout,
        )
