from __future__ import annotations

import asyncio
import json
import logging

import pytest
from pydantic import BaseModel

from rpcruntime.context import Context
from rpcruntime.errors import ErrorValue
from rpcruntime.gateway import (
    GatewayEvent,
    GatewayHandler,
    GatewayResponse,
    json_error_handler,
    json_handler,
    request_logger_middleware,
    text_error_handler,
    with_middleware,
)
from rpcruntime.logging import LogEntry


class NoteRequest(BaseModel):
    text: str


class NoteResponse(BaseModel):
    length: int


NOTE_SCHEMA = {"type": "object", "required": ["text"], "properties": {"text": {"type": "string"}}}


def measure(ctx: Context, req: NoteRequest) -> NoteResponse:
    return NoteResponse(length=len(req.text))


def forbidden(ctx: Context) -> None:
    raise ErrorValue.new("forbidden")


def _event(body: str | None = None) -> GatewayEvent:
    return GatewayEvent.model_validate({"body": body, "requestContext": {"requestId": "r-9"}})


def _run(handler: GatewayHandler, event: GatewayEvent) -> GatewayResponse:
    return asyncio.run(handler(Context.background(), event))


def test_json_handler_success(log_entry: LogEntry, caplog: pytest.LogCaptureFixture) -> None:
    handler = with_middleware(
        json_handler(measure, NOTE_SCHEMA),
        json_error_handler,
        request_logger_middleware(log_entry),
    )
    with caplog.at_level(logging.DEBUG):
        response = _run(handler, _event('{"text":"four"}'))

    assert response.status_code == 200
    assert json.loads(response.body) == {"length": 4}
    record = next(r for r in caplog.records if r.getMessage() == "request: handled success")
    assert record.fields["apig_request_id"] == "r-9"
    assert "handler_duration" in record.fields


def test_errors_propagate_without_error_handler(log_entry: LogEntry) -> None:
    handler = with_middleware(json_handler(forbidden), request_logger_middleware(log_entry))
    with pytest.raises(ErrorValue):
        _run(handler, _event())


def test_json_error_handler_renders_codes(log_entry: LogEntry) -> None:
    handler = with_middleware(
        json_handler(forbidden), request_logger_middleware(log_entry), json_error_handler
    )
    response = _run(handler, _event())
    assert response.status_code == 403
    assert json.loads(response.body) == {"code": "forbidden"}


def test_text_error_handler_renders_plain_code() -> None:
    handler = with_middleware(json_handler(measure, NOTE_SCHEMA), text_error_handler)
    response = _run(handler, _event("{}"))
    assert response.status_code == 400
    assert response.body == "schema_validation_failed"
    assert response.headers["Content-Type"].startswith("text/plain")


def test_request_logger_logs_handled_errors(
    log_entry: LogEntry, caplog: pytest.LogCaptureFixture
) -> None:
    handler = with_middleware(
        json_handler(forbidden), request_logger_middleware(log_entry), json_error_handler
    )
    with caplog.at_level(logging.DEBUG):
        _run(handler, _event())
    record = next(r for r in caplog.records if r.getMessage() == "request: handled error")
    assert record.levelno == logging.WARNING
    assert record.fields["error"] == "forbidden"
