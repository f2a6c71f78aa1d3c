from __future__ import annotations

import asyncio
import base64
import time

import jwt
import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient
from pydantic import BaseModel

from rpcruntime.auth import Authenticator, get_identity
from rpcruntime.config import RuntimeSettings
from rpcruntime.context import Context, get_request_id
from rpcruntime.devserver import CORS_HEADERS, DevServer
from rpcruntime.errors import ErrorValue
from rpcruntime.logging import LogEntry
from rpcruntime.service import Service

SECRET = b"an-hmac-secret-that-is-long-enough-for-hs256"
ISSUER = "https://issuer.example"
KEYSET = {
    "keys": [
        {
            "kty": "oct",
            "kid": "k1",
            "alg": "HS256",
            "k": base64.urlsafe_b64encode(SECRET).rstrip(b"=").decode("ascii"),
        }
    ]
}


class EchoRecord(BaseModel):
    name: str


class WhoAmI(BaseModel):
    subject: str
    scopes: list[str]
    request_id: str


def ping(ctx: Context) -> None:
    return None


def echo(ctx: Context, req: EchoRecord) -> EchoRecord:
    return req


def status(ctx: Context) -> None:
    return None


def whoami(ctx: Context) -> WhoAmI:
    identity = get_identity(ctx)
    return WhoAmI(
        subject=identity.subject,
        scopes=list(identity.scopes),
        request_id=get_request_id(ctx),
    )


def denied(ctx: Context) -> None:
    raise ErrorValue.new("access_denied").with_message("admins only").with_meta({"scope": "admin"})


async def slow(ctx: Context) -> None:
    await asyncio.sleep(5)


def _token(**claims: object) -> str:
    now = int(time.time())
    payload = {"iss": ISSUER, "sub": "user_1", "scope": "read", "iat": now, "exp": now + 60}
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm="HS256", headers={"kid": "k1"})


@pytest.fixture
def svc(log_entry: LogEntry, echo_schema: dict[str, object]) -> Service:
    return (
        Service("svc", logger=log_entry)
        .add_method("ping", ping)
        .add_method("echo", echo, echo_schema)
        .add_method("status", status)
        .add_method("whoami", whoami)
        .add_method("denied", denied)
        .add_method("slow", slow)
    )


@pytest.fixture
def server(log_entry: LogEntry, svc: Service) -> DevServer:
    settings = RuntimeSettings(service_name="devtest", request_timeout=0.5)
    return DevServer(settings, logger=log_entry).add_service("svc", svc)


@pytest.fixture
def client(server: DevServer) -> TestClient:
    return TestClient(server.app)


def test_ping_returns_no_content(client: TestClient) -> None:
    response = client.post("/svc/ping")
    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["X-Request-ID"]


def test_echo_round_trips_record(client: TestClient) -> None:
    response = client.post("/svc/echo", json={"name": "alice"})
    assert response.status_code == 200
    assert response.json() == {"name": "alice"}
    assert response.headers["content-type"] == "application/json; charset=utf-8"
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_schema_failure(client: TestClient) -> None:
    response = client.post("/svc/echo", json={})
    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "schema_validation_failed"
    reasons = payload["meta"]["reasons"]
    assert reasons[0]["field"] == "(root)"
    assert reasons[0]["type"] == "required"
    assert "name" in reasons[0]["message"]


def test_body_forbidden(client: TestClient) -> None:
    response = client.post("/svc/status", json={"x": 1})
    assert response.status_code == 400
    assert response.json() == {"code": "invalid_body", "message": "unexpected request body"}


def test_unknown_method(client: TestClient) -> None:
    response = client.post("/svc/teleport")
    assert response.status_code == 500
    assert response.json() == {"code": "method_not_found"}


def test_handler_errors_keep_message_and_meta(client: TestClient) -> None:
    response = client.post("/svc/denied")
    assert response.status_code == 401
    assert response.json() == {
        "code": "access_denied",
        "message": "admins only",
        "meta": {"scope": "admin"},
    }


def test_non_json_content_type_rejected(client: TestClient) -> None:
    response = client.post(
        "/svc/echo", content=b"name=alice", headers={"Content-Type": "text/plain"}
    )
    assert response.status_code == 400
    assert response.json() == {
        "code": "bad_request",
        "message": "unsupported content type 'text/plain'",
    }


def test_request_id_is_honoured(client: TestClient) -> None:
    response = client.post("/svc/whoami", headers={"X-Request-ID": "given-id"})
    assert response.headers["X-Request-ID"] == "given-id"
    assert response.json()["request_id"] == "given-id"


def test_cors_preflight(client: TestClient) -> None:
    response = client.options("/svc/anything/at/all")
    assert response.status_code == 204
    for header, value in CORS_HEADERS.items():
        assert response.headers[header] == value


def test_request_timeout(client: TestClient) -> None:
    response = client.post("/svc/slow")
    assert response.status_code == 500
    assert response.json() == {"code": "unknown", "message": "request timed out"}


def test_services_are_sealed_once_mounted(server: DevServer, svc: Service) -> None:
    assert svc.sealed
    assert server.services == {"svc": svc}
    with pytest.raises(ValueError):
        server.add_service("/svc/", Service("other", logger=svc.logger))


@pytest.fixture
def secure_client(log_entry: LogEntry) -> TestClient:
    secure = Service("secure", logger=log_entry).add_method("whoami", whoami)
    server = (
        DevServer(RuntimeSettings(service_name="securetest"), logger=log_entry)
        .with_authenticator(Authenticator(KEYSET, ISSUER))
        .add_service("secure", secure, authenticate=True)
    )
    return TestClient(server.app)


def test_authentication_required(secure_client: TestClient) -> None:
    response = secure_client.post("/secure/whoami")
    assert response.status_code == 401
    assert response.json() == {"code": "no_authentication"}


def test_invalid_token_rejected(secure_client: TestClient) -> None:
    response = secure_client.post(
        "/secure/whoami", headers={"Authorization": f"Bearer {_token(exp=int(time.time()) - 600)}"}
    )
    assert response.status_code == 401
    assert response.json() == {"code": "invalid_token", "message": "expired"}


def test_identity_reaches_handler(secure_client: TestClient) -> None:
    response = secure_client.post(
        "/secure/whoami", headers={"Authorization": f"Bearer {_token()}"}
    )
    assert response.status_code == 200
    assert response.json()["subject"] == "user_1"
    assert response.json()["scopes"] == ["read"]


def test_authenticate_requires_authenticator(log_entry: LogEntry) -> None:
    server = DevServer(RuntimeSettings(service_name="noauth"), logger=log_entry)
    with pytest.raises(ValueError, match="authenticator"):
        server.add_service("x", Service("x", logger=log_entry), authenticate=True)
