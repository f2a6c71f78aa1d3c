from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Optional

import pytest
from pydantic import BaseModel

from rpcruntime.context import Context, ContextKey
from rpcruntime.errors import MethodRegistrationError
from rpcruntime.service import Service, build_method, is_record_type


class EchoRequest(BaseModel):
    name: str


class EchoResponse(BaseModel):
    message: str


@dataclass
class StatusResponse:
    healthy: bool


def echo(ctx: Context, req: EchoRequest) -> EchoResponse | None:
    return EchoResponse(message=req.name)


def store(ctx: Context, req: EchoRequest) -> None:
    return None


def status(ctx: Context) -> StatusResponse:
    return StatusResponse(healthy=True)


def ping(ctx: Context) -> None:
    return None


async def async_status(ctx: Context) -> Optional[StatusResponse]:
    return None


def loose_context(ctx: object) -> None:
    return None


class Handlers:
    def echo(self, ctx: Context, req: EchoRequest) -> EchoResponse:
        return EchoResponse(message=req.name)


class CallableHandler:
    def __call__(self, ctx: Context) -> None:
        return None


def test_record_types() -> None:
    assert is_record_type(EchoRequest)
    assert is_record_type(StatusResponse)
    assert not is_record_type(dict)
    assert not is_record_type(EchoRequest(name="x"))


@pytest.mark.parametrize(
    ("handler", "with_schema", "expects_request", "expects_response"),
    [
        (echo, True, True, True),
        (store, True, True, False),
        (status, False, False, True),
        (ping, False, False, False),
        (async_status, False, False, True),
        (loose_context, False, False, False),
        (Handlers().echo, True, True, True),
        (CallableHandler(), False, False, False),
        (functools.partial(echo), True, True, True),
    ],
)
def test_valid_shapes(
    handler: Any,
    with_schema: bool,
    expects_request: bool,
    expects_response: bool,
    echo_schema: dict[str, object],
) -> None:
    method = build_method("m", handler, echo_schema if with_schema else None)
    assert method.expects_request_body is expects_request
    assert method.expects_response_body is expects_response


def test_async_handlers_are_detected() -> None:
    assert build_method("s", async_status).is_async
    assert not build_method("p", ping).is_async


def _no_context(req: EchoRequest) -> None:
    return None


def _wrong_first(ctx: int) -> None:
    return None


def _non_record_request(ctx: Context, req: dict) -> None:
    return None


def _too_many(ctx: Context, req: EchoRequest, extra: EchoRequest) -> None:
    return None


def _no_args() -> None:
    return None


def _no_return(ctx: Context):
    return None


def _bad_return(ctx: Context) -> int:
    return 1


def _union_return(ctx: Context) -> EchoResponse | StatusResponse:
    return StatusResponse(healthy=True)


def _keyword_only(ctx: Context, *, req: EchoRequest) -> None:
    return None


def _var_args(ctx: Context, *args: Any) -> None:
    return None


@pytest.mark.parametrize(
    ("handler", "fragment"),
    [
        (_no_context, "first argument must accept Context"),
        (_wrong_first, "first argument must accept Context"),
        (_non_record_request, "second argument must be a record type"),
        (_too_many, "1 or 2 arguments"),
        (_no_args, "1 or 2 arguments"),
        (_no_return, "return annotation"),
        (_bad_return, "handler return must be"),
        (_union_return, "handler return must be"),
        (_keyword_only, "positional"),
        (_var_args, "positional"),
        (EchoRequest, "must be a callable"),
        ("not callable", "must be a callable"),
    ],
)
def test_invalid_shapes_rejected(
    handler: Any, fragment: str, echo_schema: dict[str, object]
) -> None:
    with pytest.raises(MethodRegistrationError, match=fragment) as excinfo:
        build_method("broken", handler, echo_schema)
    assert "runtime cannot add rpc method broken" in str(excinfo.value)


def test_request_type_requires_schema() -> None:
    with pytest.raises(MethodRegistrationError, match="must provide a schema"):
        build_method("echo", echo)


def test_unparsable_schema_rejected() -> None:
    with pytest.raises(MethodRegistrationError, match="cannot parse schema for method echo"):
        build_method("echo", echo, "{not json")
    with pytest.raises(MethodRegistrationError, match="cannot parse schema"):
        build_method("echo", echo, {"type": 12})


def test_empty_name_rejected() -> None:
    with pytest.raises(MethodRegistrationError):
        build_method("", ping)


def test_service_registration(echo_schema: dict[str, object]) -> None:
    service = Service("svc").add_method("echo", echo, echo_schema).add_method("ping", ping)

    assert len(service) == 2
    assert sorted(service.methods) == ["echo", "ping"]
    assert service.get_method("echo") is not None
    assert service.get_method("missing") is None
    assert [m.name for m in service] == ["echo", "ping"]


def test_decorator_registration() -> None:
    service = Service("svc")

    @service.method()
    def health(ctx: Context) -> None:
        return None

    @service.method("stat")
    async def other(ctx: Context) -> StatusResponse:
        return StatusResponse(healthy=True)

    assert set(service.methods) == {"health", "stat"}
    assert health(Context.background()) is None


def test_duplicate_and_sealed_registration_fail() -> None:
    service = Service("svc").add_method("ping", ping)
    with pytest.raises(MethodRegistrationError, match="already registered"):
        service.add_method("ping", ping)

    service.seal()
    assert service.sealed
    with pytest.raises(MethodRegistrationError, match="already serving"):
        service.add_method("status", status)


def test_context_providers_run_in_order() -> None:
    key: ContextKey[list[str]] = ContextKey("trail")
    service = (
        Service("svc")
        .with_context_provider(lambda c: c.with_value(key, ["a"]))
        .with_context_provider(lambda c: c.with_value(key, [*c.value(key, []), "b"]))
    )
    assert service.apply_context_providers(Context.background()).value(key) == ["a", "b"]
    assert len(service.context_providers) == 2
    assert service.identity_provider is None
