"""Bind one method of a :class:`Service` to batched queue events.

Every message in a batch is handled by its own worker. The first failure
cancels the shared group context; the batch then reports that failure once
all workers have returned, so the platform redelivers the whole batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

from rpcruntime.context import Context
from rpcruntime.consumer.events import QueueEvent, QueueMessage
from rpcruntime.errors import ERR_CODE_METHOD_NOT_FOUND, ErrorValue
from rpcruntime.gateway.adapter import context_from_lambda
from rpcruntime.logging import logger_from_context, set_logger
from rpcruntime.service import NO_CONTENT, MethodDescriptor, Service, invoke

__all__ = ["handle_queue_event", "wrap_queue_handler"]


class _FirstError:
    """Holds the first error reported by any worker in a group."""

    __slots__ = ("error", "_cancel")

    def __init__(self, cancel: Callable[[], None]) -> None:
        self.error: BaseException | None = None
        self._cancel = cancel

    def report(self, err: BaseException) -> None:
        if self.error is None:
            self.error = err
            self._cancel()


async def _worker(
    service: Service,
    method: MethodDescriptor,
    group_ctx: Context,
    message: QueueMessage,
    first_error: _FirstError,
) -> None:
    ctx = set_logger(group_ctx, service.logger.with_field("sqs_msg_id", message.message_id))
    msg_logger = logger_from_context(ctx)
    try:
        ctx = service.apply_context_providers(ctx)
        result = await invoke(ctx, method, message.body_bytes())
    except Exception as exc:
        first_error.report(exc)
        return
    if result is not NO_CONTENT and result is not None:
        msg_logger.entry.with_field("result", result).info("invocation result")


async def handle_queue_event(
    service: Service,
    method_name: str,
    ctx: Context,
    event: QueueEvent | Mapping[str, Any],
) -> None:
    """Invoke ``method_name`` once per message; raise the first failure."""

    service.seal()
    if not isinstance(event, QueueEvent):
        event = QueueEvent.model_validate(event)

    method = service.get_method(method_name)
    if method is None:
        service.logger.with_field("rpc_method", method_name).error(
            "wrap sqs handler: method not found"
        )
        raise ErrorValue.new(ERR_CODE_METHOD_NOT_FOUND)

    group_ctx, cancel = ctx.with_cancel()
    first_error = _FirstError(cancel)
    try:
        await asyncio.gather(
            *(_worker(service, method, group_ctx, message, first_error) for message in event.records)
        )
    finally:
        cancel()

    if first_error.error is not None:
        raise first_error.error


def wrap_queue_handler(service: Service, method_name: str) -> Callable[[Mapping[str, Any], Any], None]:
    """Return a synchronous function entry point for queue batch events."""

    service.seal()

    def handler(event: Mapping[str, Any], lambda_context: Any = None) -> None:
        ctx = context_from_lambda(lambda_context)
        asyncio.run(handle_queue_event(service, method_name, ctx, event))

    return handler
