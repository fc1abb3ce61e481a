"""Retry executor with exponential backoff, jitter and per-attempt timeouts.

Wraps a single asynchronous operation. Each failure is shown to the
policy's classifier; transient ones are retried after a backoff delay,
terminal ones (and the last transient one) are raised to the caller.

State machine (one ``execute`` call)::

    ATTEMPTING ──success──▶ SUCCESS
        │
        └─failure─▶ classify ──terminal / out of attempts──▶ FAILED_TERMINAL
                        │                                    (raise LAST error)
                        └─retryable─▶ WAITING ──delay──▶ ATTEMPTING

``WAITING`` is the only state where the executor sleeps; a cancellation
token wakes it immediately with ``OperationCancelled``.

Example:
    >>> policy = RetryPolicy(max_retries=3, base_delay=0.1, jitter="equal", attempt_timeout=5)
    >>>
    >>> @with_retry(policy=policy)
    ... async def fetch_loan(loan_id):
    ...     return await client.get(f"/loans/{loan_id}")
    >>>
    >>> loan = await fetch_loan(42)
"""

from __future__ import annotations

import dataclasses
import functools
import inspect
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from retryspine.core.logging import get_logger
from retryspine.core.settings import RetrySpineSettings, get_settings
from retryspine.execution.backoff import Backoff, JitterMode, validate_backoff
from retryspine.execution.cancellation import CancellationToken, cancellable_sleep
from retryspine.execution.classify import default_is_retryable
from retryspine.execution.timeout import run_with_timeout_async

logger = get_logger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException, int], "bool | Awaitable[bool]"]
RetryHook = Callable[[int, BaseException, float, datetime], Any]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _operation_name(operation: Callable[..., Any]) -> str:
    while isinstance(operation, functools.partial):
        operation = operation.func
    return getattr(operation, "__qualname__", None) or getattr(operation, "__name__", "operation")


@dataclass(frozen=True)
class RetryPolicy:
    """How often, how patiently and on which errors to retry.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        factor: Exponential multiplier
        jitter: Jitter mode (see :mod:`retryspine.execution.backoff`)
        attempt_timeout: Per-attempt deadline in seconds, None for no deadline
        is_retryable: ``(error, attempt) -> bool`` classifier, may be async
        on_retry: ``(attempt, error, delay, scheduled_at)`` hook, may be async
        rng: Random source for jitter
    """

    max_retries: int = 5
    base_delay: float = 0.25
    max_delay: float = 10.0
    factor: float = 2.0
    jitter: JitterMode = JitterMode.FULL
    attempt_timeout: float | None = None
    is_retryable: Classifier = default_is_retryable
    on_retry: RetryHook | None = None
    rng: random.Random | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        validate_backoff(self.base_delay, self.max_delay, self.factor)
        object.__setattr__(self, "jitter", JitterMode(self.jitter))

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def backoff(self) -> Backoff:
        return Backoff(
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            factor=self.factor,
            jitter=self.jitter,
            rng=self.rng,
        )

    def replace(self, **changes: Any) -> RetryPolicy:
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_settings(
        cls, settings: RetrySpineSettings | None = None, **overrides: Any
    ) -> RetryPolicy:
        """Build a policy from ``RETRYSPINE_*`` settings, then apply overrides."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "max_retries": settings.max_retries,
            "base_delay": settings.base_delay,
            "max_delay": settings.max_delay,
            "factor": settings.factor,
            "jitter": settings.jitter,
            "attempt_timeout": settings.attempt_timeout,
        }
        values.update(overrides)
        return cls(**values)


NO_RETRY = RetryPolicy(max_retries=0, base_delay=0.0, max_delay=0.0, jitter=JitterMode.NONE)


@dataclass
class AttemptContext:
    """State of a single attempt, created fresh each time."""

    attempt: int
    started_at: datetime = field(default_factory=utcnow)
    previous_delay: float | None = None


class RetryExecutor:
    """Runs one operation under a :class:`RetryPolicy` and records its history.

    An executor is meant for a single ``execute`` call; history from an
    earlier call is reset when ``execute`` starts again.

    Example:
        >>> executor = RetryExecutor(RetryPolicy(max_retries=2))
        >>> data = await executor.execute(lambda: provider(loan_id))
        >>> executor.attempts
        1
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        cancel_token: CancellationToken | None = None,
        on_abandoned: Callable[[Any], Any] | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.cancel_token = cancel_token
        self.on_abandoned = on_abandoned
        self.attempts = 0
        self.errors: list[tuple[int, BaseException, datetime]] = []
        self.last_error: BaseException | None = None
        self.started_at: datetime | None = None

    @property
    def elapsed_seconds(self) -> float:
        """Total elapsed time since the first attempt."""
        if self.started_at is None:
            return 0.0
        return (utcnow() - self.started_at).total_seconds()

    async def execute(self, operation: Callable[[], Any]) -> Any:
        """Call ``operation`` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument callable returning an awaitable (or a value)

        Returns:
            The first successful result

        Raises:
            The last observed error once it is terminal or attempts run out;
            ``OperationCancelled`` when the cancel token fires.
        """
        policy = self.policy
        name = _operation_name(operation)
        self.attempts = 0
        self.errors = []
        self.last_error = None
        self.started_at = utcnow()
        previous_delay: float | None = None

        for attempt in range(policy.max_attempts):
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled()
            ctx = AttemptContext(attempt=attempt, previous_delay=previous_delay)
            self.attempts += 1
            try:
                return await self._attempt(operation, name)
            except Exception as error:
                self.errors.append((attempt, error, utcnow()))
                self.last_error = error

                retryable = bool(await _resolve(policy.is_retryable(error, attempt)))
                if not retryable or attempt >= policy.max_retries:
                    error.add_note(
                        f"{name}: gave up after {self.attempts} attempt(s) "
                        f"({'terminal' if not retryable else 'exhausted'})"
                    )
                    logger.warning(
                        "retry.exhausted" if retryable else "retry.terminal",
                        operation=name,
                        attempts=self.attempts,
                        exc=error,
                        elapsed_seconds=round(self.elapsed_seconds, 3),
                    )
                    raise

                delay = policy.backoff.next_delay(ctx.attempt, ctx.previous_delay)
                previous_delay = delay
                scheduled_at = utcnow() + timedelta(seconds=delay)
                logger.info(
                    "retry.attempt_failed",
                    operation=name,
                    attempt=attempt,
                    exc=error,
                    delay=round(delay, 3),
                )
                await self._notify(attempt, error, delay, scheduled_at, name)
                await cancellable_sleep(delay, self.cancel_token)

        raise AssertionError("unreachable: retry loop exited without result")  # pragma: no cover

    async def _attempt(self, operation: Callable[[], Any], name: str) -> Any:
        result = operation()
        if not inspect.isawaitable(result):
            return result
        return await run_with_timeout_async(
            result,
            self.policy.attempt_timeout,
            name,
            cancel_token=self.cancel_token,
            on_abandoned=self.on_abandoned,
        )

    async def _notify(
        self,
        attempt: int,
        error: BaseException,
        delay: float,
        scheduled_at: datetime,
        name: str,
    ) -> None:
        hook = self.policy.on_retry
        if hook is None:
            return
        try:
            await _resolve(hook(attempt, error, delay, scheduled_at))
        except Exception as hook_error:
            logger.warning(
                "retry.on_retry_failed",
                operation=name,
                attempt=attempt,
                exc=hook_error,
            )


async def retry_async(
    operation: Callable[[], Any],
    policy: RetryPolicy | None = None,
    *,
    cancel_token: CancellationToken | None = None,
    on_abandoned: Callable[[Any], Any] | None = None,
) -> Any:
    """Execute ``operation`` once under ``policy`` (one-shot executor).

    ``on_abandoned`` receives results of attempts that succeed only after
    their ``attempt_timeout`` expired.
    """
    executor = RetryExecutor(policy, cancel_token=cancel_token, on_abandoned=on_abandoned)
    return await executor.execute(operation)


def with_retry(
    func: Callable[..., Awaitable[T]] | None = None,
    /,
    policy: RetryPolicy | None = None,
    *,
    cancel_token: CancellationToken | None = None,
) -> Any:
    """Turn an async callable into a retrying one.

    Usable bare, as a decorator factory, or as a plain wrapper:

        >>> @with_retry
        ... async def ping(): ...

        >>> @with_retry(policy=RetryPolicy(max_retries=2))
        ... async def fetch(loan_id): ...

        >>> fetch_once = with_retry(lambda: fetch(42), RetryPolicy(max_retries=1))
        >>> await fetch_once()

    Every call of the wrapped function gets a fresh :class:`RetryExecutor`
    and forwards its arguments to each attempt.
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            executor = RetryExecutor(policy, cancel_token=cancel_token)
            return await executor.execute(functools.partial(fn, *args, **kwargs))

        return wrapper

    if func is None:
        return decorator
    return decorator(func)
