from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from rpcruntime.context import Context
from rpcruntime.errors import MethodRegistrationError
from rpcruntime.logging import LogEntry, create_logger
from rpcruntime.service.method import MethodDescriptor, SchemaInput, build_method

__all__ = ["ContextProvider", "IdentityProvider", "Service"]

ContextProvider = Callable[[Context], Context]
IdentityProvider = Callable[[Context, Mapping[str, Any]], Context]


class Service:
    """A named collection of RPC methods plus request hooks.

    Methods are registered during process init. Once an adapter starts
    serving, the service is sealed and further registration fails.
    """

    def __init__(self, name: str = "rpc", *, logger: LogEntry | None = None) -> None:
        self.name = name
        self.logger = logger or create_logger(name)
        self._methods: dict[str, MethodDescriptor] = {}
        self._context_providers: list[ContextProvider] = []
        self._identity_provider: IdentityProvider | None = None
        self._sealed = False

    def add_method(
        self,
        name: str,
        handler: Callable[..., Any],
        schema: SchemaInput | None = None,
    ) -> Service:
        """Validate and register ``handler`` under ``name``."""

        if self._sealed:
            raise MethodRegistrationError(
                f"runtime cannot add rpc method {name}: service {self.name} is already serving"
            )
        if name in self._methods:
            raise MethodRegistrationError(
                f"runtime cannot add rpc method {name}: name is already registered"
            )
        self._methods[name] = build_method(name, handler, schema)
        return self

    def method(
        self, name: str | None = None, *, schema: SchemaInput | None = None
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of :meth:`add_method`; defaults to the function name."""

        def decorator(handler: Callable[..., Any]) -> Callable[..., Any]:
            self.add_method(name or handler.__name__, handler, schema)
            return handler

        return decorator

    def get_method(self, name: str) -> MethodDescriptor | None:
        return self._methods.get(name)

    @property
    def methods(self) -> Mapping[str, MethodDescriptor]:
        return MappingProxyType(self._methods)

    def __iter__(self) -> Iterator[MethodDescriptor]:
        return iter(self._methods.values())

    def __len__(self) -> int:
        return len(self._methods)

    def with_context_provider(self, provider: ContextProvider) -> Service:
        self._context_providers.append(provider)
        return self

    def with_identity_provider(self, provider: IdentityProvider) -> Service:
        self._identity_provider = provider
        return self

    @property
    def context_providers(self) -> tuple[ContextProvider, ...]:
        return tuple(self._context_providers)

    @property
    def identity_provider(self) -> IdentityProvider | None:
        return self._identity_provider

    def apply_context_providers(self, ctx: Context) -> Context:
        for provider in self._context_providers:
            ctx = provider(ctx)
        return ctx

    def seal(self) -> Service:
        """Mark the service as serving; the method table is read-only afterwards."""

        self._sealed = True
        return self

    @property
    def sealed(self) -> bool:
        return self._sealed
