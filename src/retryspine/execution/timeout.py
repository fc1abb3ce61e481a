"""Per-attempt timeout enforcement.

Races an awaitable against a deadline and, optionally, a cancellation
token. Unlike ``asyncio.wait_for`` the loser is NOT cancelled on timeout:
the underlying operation keeps running in the background (a remote call
that has been sent cannot be un-sent), and its eventual outcome is consumed
so no "exception was never retrieved" warning leaks out. A late successful
result is handed to ``on_abandoned`` when one is given.

Architecture:
    ::

        run_with_timeout_async(aw, 5.0, cancel_token=token)
              │
              ├── task = ensure_future(aw)
              ├── asyncio.wait({task, token.wait()}, timeout=5.0,
              │                return_when=FIRST_COMPLETED)
              │
              ├── task done        → return / raise its outcome
              ├── token cancelled  → task.cancel(), raise OperationCancelled
              └── deadline passed  → detach task, raise TimeoutExpired
                                    (late result → on_abandoned)

Examples:
    >>> result = await run_with_timeout_async(fetch_loan(42), 10.0, operation="fetch_loan")

    >>> @timeout(30.0)
    ... async def render(record):
    ...     ...

Tags:
    timeout, deadline, resilience, execution
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from retryspine.core.logging import get_logger
from retryspine.execution.cancellation import CancellationToken

logger = get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

# Strong references to operations that outlived their deadline.
_detached: set[asyncio.Future[Any]] = set()


class TimeoutExpired(TimeoutError):
    """Raised when an attempt exceeds its deadline.

    Subclasses the built-in TimeoutError and carries ``code = "ETIMEDOUT"``
    like a socket-level timeout.

    Attributes:
        timeout: Per-attempt limit in seconds
        elapsed: How long the operation ran before being abandoned
        operation: Name of the timed-out call
    """

    code = "ETIMEDOUT"

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"{operation}: no result within {timeout}s"
        if elapsed is not None:
            msg += f", abandoned after {elapsed:.2f}s"
        super().__init__(msg)


def _consume_outcome(
    future: asyncio.Future[Any],
    operation: str,
    on_abandoned: Callable[[Any], Any] | None = None,
) -> None:
    _detached.discard(future)
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug(
            "timeout.detached_failed",
            operation=operation,
            exc=error,
        )
        return
    if on_abandoned is None:
        return
    try:
        outcome = on_abandoned(future.result())
    except Exception as hook_error:
        logger.warning("timeout.on_abandoned_failed", operation=operation, exc=hook_error)
        return
    if inspect.isawaitable(outcome):
        _detach(asyncio.ensure_future(outcome), operation)


def _detach(
    future: asyncio.Future[Any],
    operation: str,
    on_abandoned: Callable[[Any], Any] | None = None,
) -> None:
    _detached.add(future)
    future.add_done_callback(
        functools.partial(_consume_outcome, operation=operation, on_abandoned=on_abandoned)
    )


async def run_with_timeout_async(
    awaitable: Awaitable[T],
    timeout_seconds: float | None,
    operation: str = "operation",
    *,
    cancel_token: CancellationToken | None = None,
    on_abandoned: Callable[[T], Any] | None = None,
) -> T:
    """Await ``awaitable`` for at most ``timeout_seconds``.

    Args:
        awaitable: Coroutine or future to run
        timeout_seconds: Deadline in seconds; None or <= 0 disables it
        operation: Label used in the TimeoutExpired message
        cancel_token: Token that aborts the wait early
        on_abandoned: Called with the result if the awaitable succeeds after
            it was given up on (sync or async); use it to release what the
            late result holds

    Returns:
        Result of the awaitable

    Raises:
        TimeoutExpired: If the deadline passes first
        OperationCancelled: If the token is cancelled first
        Exception: Any exception raised by the awaitable
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    deadline = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
    if deadline is None and cancel_token is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    waiters: set[asyncio.Future[Any]] = {task}
    canceller: asyncio.Future[Any] | None = None
    if cancel_token is not None:
        canceller = asyncio.ensure_future(cancel_token.wait())
        waiters.add(canceller)

    start = time.monotonic()
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if canceller is not None:
            canceller.cancel()

    if task in done:
        return task.result()

    if cancel_token is not None and cancel_token.cancelled:
        task.cancel()
        _detach(task, operation, on_abandoned)
        cancel_token.raise_if_cancelled()

    _detach(task, operation, on_abandoned)
    raise TimeoutExpired(
        timeout=deadline,  # type: ignore[arg-type]
        elapsed=time.monotonic() - start,
        operation=operation,
    )


def timeout(
    seconds: float, operation: str | None = None
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator enforcing a deadline on every call of an async function.

    Example:
        >>> @timeout(10.0)
        ... async def fetch_data(url):
        ...     return await http_get(url)
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        op_name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await run_with_timeout_async(func(*args, **kwargs), seconds, op_name)

        return wrapper

    return decorator
