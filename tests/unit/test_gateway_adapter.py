from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

import pytest
from pydantic import BaseModel

from rpcruntime.auth import get_identity, identity_from_claims_provider
from rpcruntime.context import Context, ContextKey
from rpcruntime.errors import ErrorValue
from rpcruntime.gateway import (
    GatewayEvent,
    GatewayResponse,
    error_response,
    handle_api_gateway_event,
    wrap_api_gateway_http,
)
from rpcruntime.logging import LogEntry
from rpcruntime.service import Service

TENANT: ContextKey[str] = ContextKey("tenant")


class EchoRequest(BaseModel):
    name: str


class EchoResponse(BaseModel):
    message: str
    tenant: str = ""
    subject: str = ""


def echo(ctx: Context, req: EchoRequest) -> EchoResponse:
    return EchoResponse(
        message=f"hello {req.name}",
        tenant=ctx.value(TENANT, ""),
        subject=get_identity(ctx).subject,
    )


def ping(ctx: Context) -> None:
    return None


def admin_only(ctx: Context) -> None:
    get_identity(ctx).must_have_scope("admin")


def explode(ctx: Context) -> None:
    raise RuntimeError("boom")


def dated_denial(ctx: Context) -> None:
    raise ErrorValue.new("forbidden").with_meta({"at": date(2024, 1, 1)})


def opaque_denial(ctx: Context) -> None:
    raise ErrorValue.new("forbidden").with_message("locked").with_meta({"lock": object()})


def _event(method: str | None, body: str | None = None, **extra: Any) -> dict[str, Any]:
    event: dict[str, Any] = {
        "body": body,
        "isBase64Encoded": False,
        "headers": {"content-type": "application/json"},
        "requestContext": {
            "requestId": "apig-req-1",
            "authorizer": {
                "jwt": {
                    "claims": {"sub": "user_1", "aud": "[svc-a svc-b]"},
                    "scopes": ["read", "write"],
                }
            },
        },
    }
    if method is not None:
        event["pathParameters"] = {"method": method}
    event.update(extra)
    return event


@pytest.fixture
def service(log_entry: LogEntry, echo_schema: dict[str, object]) -> Service:
    return (
        Service("gw", logger=log_entry)
        .add_method("echo", echo, echo_schema)
        .add_method("ping", ping)
        .add_method("admin", admin_only)
        .add_method("explode", explode)
        .add_method("dated", dated_denial)
        .add_method("opaque", opaque_denial)
        .with_identity_provider(identity_from_claims_provider)
        .with_context_provider(lambda ctx: ctx.with_value(TENANT, "acme"))
    )


def _dispatch(service: Service, event: Mapping[str, Any]) -> GatewayResponse:
    return asyncio.run(handle_api_gateway_event(service, Context.background(), event))


def test_echo_success(service: Service) -> None:
    response = _dispatch(service, _event("echo", '{"name":"alice"}'))
    assert response.status_code == 200
    assert response.headers["Content-Type"] == "application/json; charset=utf-8"
    assert json.loads(response.body) == {
        "message": "hello alice",
        "tenant": "acme",
        "subject": "user_1",
    }


def test_base64_body(service: Service) -> None:
    encoded = base64.b64encode(b'{"name":"bob"}').decode("ascii")
    response = _dispatch(service, _event("echo", encoded, isBase64Encoded=True))
    assert json.loads(response.body)["message"] == "hello bob"


def test_bad_base64_body(service: Service) -> None:
    response = _dispatch(service, _event("echo", "%%%", isBase64Encoded=True))
    assert response.status_code == 400
    assert json.loads(response.body) == {"code": "invalid_body", "message": "unable to decode body"}


def test_no_content(service: Service) -> None:
    response = _dispatch(service, _event("ping"))
    assert response.status_code == 204
    assert response.body == ""


def test_unknown_method(service: Service) -> None:
    response = _dispatch(service, _event("teleport"))
    assert response.status_code == 500
    assert json.loads(response.body) == {"code": "method_not_found"}


def test_missing_method_parameter_with_several_methods(service: Service) -> None:
    response = _dispatch(service, _event(None))
    assert json.loads(response.body) == {"code": "method_not_found"}


def test_single_method_service_needs_no_parameter(log_entry: LogEntry) -> None:
    single = Service("single", logger=log_entry).add_method("ping", ping)
    assert _dispatch(single, _event(None)).status_code == 204


def test_scopes_reach_identity(service: Service) -> None:
    response = _dispatch(service, _event("admin"))
    assert response.status_code == 401
    assert json.loads(response.body) == {"code": "access_denied"}


def test_unhandled_errors_are_masked(service: Service) -> None:
    response = _dispatch(service, _event("explode"))
    assert response.status_code == 500
    assert json.loads(response.body) == {"code": "unknown"}


def test_schema_failure(service: Service) -> None:
    response = _dispatch(service, _event("echo", "{}"))
    assert response.status_code == 400
    payload = json.loads(response.body)
    assert payload["code"] == "schema_validation_failed"
    assert payload["meta"]["reasons"][0]["type"] == "required"


def test_serving_seals_the_service(service: Service) -> None:
    _dispatch(service, _event("ping"))
    assert service.sealed


def test_raw_claims_normalisation() -> None:
    event = GatewayEvent.model_validate(_event("ping"))
    claims = event.raw_claims()
    assert claims["scope"] == "read write"
    assert claims["aud"] == ["svc-a", "svc-b"]
    assert claims["sub"] == "user_1"


def test_error_response_for_foreign_exceptions() -> None:
    response = error_response(ValueError("nope"))
    assert response.status_code == 500
    assert json.loads(response.body) == {"code": "unknown"}
    assert error_response(ErrorValue.new("forbidden")).status_code == 403


class _LambdaContext:
    def get_remaining_time_in_millis(self) -> int:
        return 5_000


def test_wrap_api_gateway_http_returns_proxy_dict(service: Service) -> None:
    handler = wrap_api_gateway_http(service)
    result = handler(_event("echo", '{"name":"carol"}'), _LambdaContext())
    assert result["statusCode"] == 200
    assert result["isBase64Encoded"] is False
    assert json.loads(result["body"])["message"] == "hello carol"


def test_error_meta_with_dates_is_rendered(service: Service) -> None:
    response = _dispatch(service, _event("dated"))
    assert response.status_code == 403
    assert response.headers["Content-Type"] == "application/json; charset=utf-8"
    assert json.loads(response.body) == {"code": "forbidden", "meta": {"at": "2024-01-01"}}


def test_unserialisable_error_meta_is_dropped(
    service: Service, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.ERROR, logger="rpcruntime.errors"):
        response = _dispatch(service, _event("opaque"))
    assert response.status_code == 403
    assert json.loads(response.body) == {"code": "forbidden", "message": "locked"}
    assert any(
        record.fields["err_code"] == "forbidden"  # type: ignore[attr-defined]
        for record in caplog.records
        if record.name == "rpcruntime.errors"
    )
