"""
Sandboxed run loop.

``run_query`` executes one query against one database handle under a
wall-clock deadline and normalizes the outcome. ``execute`` is the thin
variant that returns the bare result or re-raises the query's exception.

The deadline abandons the query, it does not cancel work already sent to the
server: a write issued before the timeout may still be applied.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import traceback
from typing import Any

from mongosnap.sandbox.compiler import QUERY_FUNCTION, compile_query
from mongosnap.sandbox.context import build_execution_context
from mongosnap.sandbox.environment import MAX_RANGE_LENGTH, QUERY_LOG_PREFIX, build_namespace
from mongosnap.sandbox.errors import (
    InvalidArgumentError,
    QueryTimeoutError,
    SecurityViolationError,
)
from mongosnap.sandbox.models import ExecutionError, ExecutionResult, ExecutionStatus

DEFAULT_TIMEOUT_MS = 30_000
# coroutine-level loop passes between yields to the event loop
PAUSE_INTERVAL = 100


class _DeadlineExceeded(BaseException):
    """Raised by a checkpoint; not catchable as ``Exception`` by query code."""


class _Deadline:
    """Deadline checks bound into the namespace of one execution."""

    def __init__(self, loop: asyncio.AbstractEventLoop, deadline: float) -> None:
        self._loop = loop
        self._deadline = deadline
        self._passes = 0

    @property
    def passed(self) -> bool:
        return self._loop.time() >= self._deadline

    def check(self) -> None:
        if self.passed:
            raise _DeadlineExceeded

    async def pause(self) -> None:
        self.check()
        self._passes += 1
        if self._passes % PAUSE_INTERVAL == 0:
            await asyncio.sleep(0)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def run_query(
    query: str,
    database: Any,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    *,
    log_prefix: str = QUERY_LOG_PREFIX,
    max_range_length: int = MAX_RANGE_LENGTH,
) -> ExecutionResult:
    """
    Run ``query`` against ``database`` and return an ``ExecutionResult``.

    Exceptions raised by the query (driver errors, bad arguments, syntax
    errors) become ``status=error`` results that keep the original exception.

    Raises:
        QueryTimeoutError: The deadline passed before the query finished.
        SecurityViolationError: The compiler refused a construct.
        InvalidArgumentError: ``database`` or ``timeout_ms`` is unusable.
    """
    if timeout_ms <= 0:
        raise InvalidArgumentError(f"timeout_ms must be positive, got {timeout_ms}")

    started = time.monotonic()
    context = build_execution_context(database)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    limits = _Deadline(loop, deadline)

    try:
        async with asyncio.timeout_at(deadline):
            try:
                code = compile_query(query)
                namespace = build_namespace(
                    context.bindings,
                    limits.check,
                    limits.pause,
                    log_prefix=log_prefix,
                    max_range_length=max_range_length,
                )
                exec(code, namespace)  # noqa: S102
                result = await namespace[QUERY_FUNCTION]()
                while inspect.isawaitable(result):
                    result = await result
            except SecurityViolationError:
                raise
            except Exception as exc:
                return ExecutionResult(
                    status=ExecutionStatus.ERROR,
                    error=ExecutionError.from_exception(exc, traceback.format_exc()),
                    execution_time=_elapsed_ms(started),
                    exception=exc,
                )
    except (TimeoutError, _DeadlineExceeded):
        raise QueryTimeoutError(timeout_ms) from None

    # synchronous code can overrun without ever yielding to the timer
    if limits.passed:
        raise QueryTimeoutError(timeout_ms)

    return ExecutionResult(
        status=ExecutionStatus.SUCCESS,
        result=result,
        execution_time=_elapsed_ms(started),
    )


async def execute(
    query: str,
    database: Any,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    *,
    log_prefix: str = QUERY_LOG_PREFIX,
    max_range_length: int = MAX_RANGE_LENGTH,
) -> Any:
    """Run ``query`` and return its result, re-raising the query's own exception."""
    outcome = await run_query(
        query, database, timeout_ms, log_prefix=log_prefix, max_range_length=max_range_length
    )
    if outcome.exception is not None:
        raise outcome.exception
    return outcome.result
