"""Bounded worker invocation.

Every call that crosses into a worker handler goes through
:func:`invoke_with_timeout`, which runs the handler as its own asyncio task
and races it against a timeout.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any

from agentloop.errors import AgentLoopError, WorkerNotFoundError, WorkerTimeoutError
from agentloop.types import Worker, WorkerResult

logger = logging.getLogger(__name__)


async def invoke_with_timeout(
    worker: Worker,
    context: dict[str, Any],
    timeout: float,
) -> WorkerResult:
    """Invoke *worker* with *context*, failing after *timeout* seconds.

    Raises :class:`WorkerTimeoutError` when the bound is exceeded (the
    handler task is cancelled), :class:`WorkerNotFoundError` when the worker
    has no handler, and re-raises anything the handler raised.

    Synchronous handlers are run with :func:`asyncio.to_thread` and raced
    against the same bound.

    If the awaiting coroutine itself is cancelled (e.g. the loop is being
    stopped), the handler task is left to finish on its own and its result is
    discarded.
    """
    if worker.handler is None:
        raise WorkerNotFoundError(worker.name)

    started = time.monotonic()
    call = asyncio.ensure_future(_run_handler(worker.handler, context))
    call.add_done_callback(_consume_orphan_result)

    done, _ = await asyncio.wait({call}, timeout=timeout)
    if call not in done:
        call.cancel()
        logger.warning(
            "Worker %s timed out after %.2fs", worker.name, time.monotonic() - started,
        )
        raise WorkerTimeoutError(worker.name, timeout)

    raw = call.result()
    result = WorkerResult.from_raw(raw)
    logger.debug(
        "Worker %s finished in %.3fs (success=%s)",
        worker.name, time.monotonic() - started, result.success,
    )
    return result


async def invoke_safely(
    worker: Worker,
    context: dict[str, Any],
    timeout: float,
) -> tuple[WorkerResult, Exception | None]:
    """Like :func:`invoke_with_timeout` but folds failures into the result."""
    try:
        return await invoke_with_timeout(worker, context, timeout), None
    except asyncio.CancelledError:
        raise
    except AgentLoopError as exc:
        return WorkerResult(success=False, message=f"Error: {exc}"), exc
    except Exception as exc:
        logger.error("Worker %s raised %s: %s", worker.name, type(exc).__name__, exc)
        return WorkerResult(success=False, message=f"Error: {exc}"), exc


def _is_async_handler(handler: Any) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


async def _run_handler(handler: Any, context: dict[str, Any]) -> Any:
    if _is_async_handler(handler):
        return await handler(context)
    # Plain callables run in a worker thread. A timed-out thread is
    # abandoned, not interrupted.
    raw = await asyncio.to_thread(handler, context)
    if inspect.isawaitable(raw):
        raw = await raw
    return raw


def _consume_orphan_result(fut: asyncio.Future[Any]) -> None:
    # Retrieve the exception so asyncio doesn't log "never retrieved" for
    # handlers whose caller already gave up on them.
    if not fut.cancelled():
        fut.exception()
