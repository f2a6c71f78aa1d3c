"""Helpers for running work outside the lifetime of the current request."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Awaitable, Callable
from typing import Any

from rpcruntime.context import Context, get_request_id, set_request_id
from rpcruntime.logging import logger_from_context, set_logger

__all__ = ["fork_with_timeout"]

_background_tasks: set[asyncio.Task[Any]] = set()


def _forked_context(ctx: Context, timeout: float) -> tuple[Context, Callable[[], None]]:
    forked = set_logger(Context.background(), logger_from_context(ctx).entry)
    forked = set_request_id(forked, get_request_id(ctx))
    return forked.with_timeout(timeout)


def fork_with_timeout(
    ctx: Context,
    timeout: float,
    fn: Callable[[Context], Awaitable[None]] | Callable[[Context], None],
) -> asyncio.Task[Any] | threading.Thread:
    """Run ``fn`` detached from ``ctx``, keeping only its logger and request id.

    Coroutine functions are scheduled on the running event loop; plain
    functions run on a daemon thread. Failures are logged, never raised.
    """

    forked, cancel = _forked_context(ctx, timeout)

    def _report(exc: BaseException) -> None:
        logger_from_context(forked).entry.with_error(exc).error("forked context errored")

    if inspect.iscoroutinefunction(fn):

        async def _run_async() -> None:
            try:
                await asyncio.wait_for(fn(forked), timeout=timeout)
            except Exception as exc:
                _report(exc)
            finally:
                cancel()

        task = asyncio.get_running_loop().create_task(_run_async())
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    def _run_sync() -> None:
        try:
            fn(forked)
        except Exception as exc:
            _report(exc)
        finally:
            cancel()

    thread = threading.Thread(target=_run_sync, name="rpcruntime-fork", daemon=True)
    thread.start()
    return thread
