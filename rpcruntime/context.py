"""Request-scoped context: typed values, deadlines and cancellation."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any, Generic, TypeVar, overload

from rpcruntime.errors import ContextCancelled

__all__ = [
    "Context",
    "ContextKey",
    "REQUEST_ID_KEY",
    "get_request_id",
    "set_request_id",
]

T = TypeVar("T")
D = TypeVar("D")


class ContextKey(Generic[T]):
    """Typed token used to store and retrieve a value on a :class:`Context`.

    Keys compare by identity, so two keys with the same name never collide.
    """

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r})"


class _CancelToken:
    """Cancellation flag that also observes its parent's flag."""

    __slots__ = ("_event", "_parent", "reason")

    def __init__(self, parent: _CancelToken | None = None) -> None:
        self._event = threading.Event()
        self._parent = parent
        self.reason: str | None = None

    def cancel(self, reason: str = "context cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def is_set(self) -> bool:
        token: _CancelToken | None = self
        while token is not None:
            if token._event.is_set():
                return True
            token = token._parent
        return False

    def cancel_reason(self) -> str | None:
        token: _CancelToken | None = self
        while token is not None:
            if token._event.is_set():
                return token.reason
            token = token._parent
        return None


class Context:
    """Immutable carrier for request-scoped values.

    Deriving a context never mutates the parent. Cancelling a derived context
    does not cancel its parent, but cancelling a parent is observed by every
    context derived from it.
    """

    __slots__ = ("_values", "_token", "_deadline")

    def __init__(
        self,
        values: dict[ContextKey[Any], Any] | None = None,
        *,
        token: _CancelToken | None = None,
        deadline: float | None = None,
    ) -> None:
        self._values: dict[ContextKey[Any], Any] = dict(values or {})
        self._token = token
        self._deadline = deadline

    @classmethod
    def background(cls) -> Context:
        return cls()

    def with_value(self, key: ContextKey[T], value: T) -> Context:
        values = dict(self._values)
        values[key] = value
        return Context(values, token=self._token, deadline=self._deadline)

    @overload
    def value(self, key: ContextKey[T]) -> T | None: ...

    @overload
    def value(self, key: ContextKey[T], default: D) -> T | D: ...

    def value(self, key: ContextKey[Any], default: Any = None) -> Any:
        return self._values.get(key, default)

    def with_cancel(self) -> tuple[Context, Callable[[], None]]:
        token = _CancelToken(self._token)
        child = Context(self._values, token=token, deadline=self._deadline)
        return child, token.cancel

    def with_deadline(self, deadline: float) -> tuple[Context, Callable[[], None]]:
        """Derive a context expiring at ``deadline`` (a ``time.monotonic`` value)."""

        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        token = _CancelToken(self._token)
        child = Context(self._values, token=token, deadline=deadline)
        return child, token.cancel

    def with_timeout(self, seconds: float) -> tuple[Context, Callable[[], None]]:
        return self.with_deadline(time.monotonic() + seconds)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` without a deadline."""

        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    @property
    def cancelled(self) -> bool:
        return self.err() is not None

    def err(self) -> ContextCancelled | None:
        if self._token is not None and self._token.is_set():
            return ContextCancelled(self._token.cancel_reason() or "context cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return ContextCancelled("context deadline exceeded")
        return None

    def raise_if_cancelled(self) -> None:
        err = self.err()
        if err is not None:
            raise err


REQUEST_ID_KEY: ContextKey[str] = ContextKey("request_id")


def get_request_id(ctx: Context) -> str:
    return ctx.value(REQUEST_ID_KEY, "")


def set_request_id(ctx: Context, request_id: str) -> Context:
    return ctx.with_value(REQUEST_ID_KEY, request_id)
