"""Async Batch Runner — bounded-concurrency fan-out over a shared queue.

WHY
───
Producing one artifact per entity means dozens of independent remote
calls, each of which may fail, retry or give up on its own. Running them
all at once hammers the upstream; running them one by one is slow. The
batch runner keeps exactly ``concurrency`` jobs in flight, lets a slow
job hold up only its own worker, and never lets one job's failure stop
the others.

ARCHITECTURE
────────────
::

    BatchRunner(job_fn, concurrency=k, policy=...)
      └── .run(inputs) ──▶ deque[BatchItem]
                              │  popleft()  (no await between check and pop)
            ┌─────────────────┼─────────────────┐
        worker 0          worker 1   …     worker k-1      min(k, len(inputs))
            │
            ├── RetryExecutor(policy).execute(job_fn(input))
            └── finally: JobScope.aclose()   ─ per-job scratch cleanup
                         done += 1
                         on_progress(done, total)
      ◀── BatchResult (succeeded / failed / cancelled / items)

Queue pops and counter increments happen between suspension points on a
single event loop, so two workers can neither dequeue the same item nor
lose an increment.

Per-job resources
─────────────────
Every job runs inside its own :class:`JobScope`. Job functions reach it
with :func:`current_job_scope` and register cleanup there; the runner
closes the scope exactly once whether the job succeeds, exhausts its
retries, fails terminally or is cancelled::

    async def render_report(loan_id):
        canvas = current_job_scope().enter(OffscreenCanvas())
        ...

Example::

    result = await run_batch([1, 2, 3, 4, 5], render_report, concurrency=2,
                             on_progress=lambda done, total: print(done, total))
    print(result.succeeded, result.failed)  # 5 0
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import uuid
from collections import deque
from collections.abc import Callable, Hashable, Iterable
from contextlib import AbstractAsyncContextManager, AbstractContextManager, AsyncExitStack
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from retryspine.core.errors import BatchAbortedError, OperationCancelled
from retryspine.core.logging import LogContext, get_logger
from retryspine.execution.cancellation import CancellationToken
from retryspine.execution.retry import RetryExecutor, RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")

JobFn = Callable[[Any], Any]
ProgressFn = Callable[[int, int], Any]

_current_scope: contextvars.ContextVar[JobScope | None] = contextvars.ContextVar(
    "retryspine_job_scope", default=None
)


class JobScope:
    """Cleanup registry for one job's scratch resources.

    Callbacks run in reverse registration order when the runner closes the
    scope. Sync and async callbacks are both accepted.
    """

    def __init__(self) -> None:
        self._stack = AsyncExitStack()
        self.closed = False

    def defer(self, callback: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Run ``callback(*args, **kwargs)`` when the job finishes."""
        if inspect.iscoroutinefunction(callback):
            self._stack.push_async_callback(callback, *args, **kwargs)
        else:
            self._stack.callback(callback, *args, **kwargs)

    def enter(self, cm: AbstractContextManager[T]) -> T:
        """Enter a context manager, exiting it when the job finishes."""
        return self._stack.enter_context(cm)

    async def enter_async(self, cm: AbstractAsyncContextManager[T]) -> T:
        """Enter an async context manager, exiting it when the job finishes."""
        return await self._stack.enter_async_context(cm)

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._stack.aclose()


def current_job_scope() -> JobScope:
    """The :class:`JobScope` of the batch job running in this task.

    Raises:
        RuntimeError: When called outside a batch job
    """
    scope = _current_scope.get()
    if scope is None:
        raise RuntimeError("current_job_scope() called outside a batch job")
    return scope


@dataclass
class BatchItem:
    """One unit of batch work and its outcome.

    ``key`` identifies the job for correlation only; it says nothing about
    the order in which jobs complete.
    """

    index: int
    input: Any
    key: Hashable = None
    status: str = "pending"
    result: Any = None
    error: BaseException | None = None
    cleanup_error: BaseException | None = None
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.key is None:
            self.key = self.index

    @property
    def duration_seconds(self) -> float | None:
        """Seconds between start and finish, None until the job has run."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class BatchResult:
    """Aggregate result of a batch run, items in input order."""

    batch_id: str
    items: list[BatchItem]
    started_at: datetime
    completed_at: datetime

    @property
    def succeeded(self) -> int:
        """Jobs that returned a value."""
        return sum(1 for i in self.items if i.status == "succeeded")

    @property
    def failed(self) -> int:
        """Jobs whose last attempt raised."""
        return sum(1 for i in self.items if i.status == "failed")

    @property
    def cancelled(self) -> int:
        return sum(1 for i in self.items if i.status == "cancelled")

    @property
    def pending(self) -> int:
        """Items never started because the batch was cancelled."""
        return sum(1 for i in self.items if i.status == "pending")

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def errors(self) -> dict[Hashable, BaseException]:
        return {i.key: i.error for i in self.items if i.error is not None}

    @property
    def results(self) -> dict[Hashable, Any]:
        return {i.key: i.result for i in self.items if i.status == "succeeded"}

    @property
    def duration_seconds(self) -> float:
        """Seconds from the first worker starting to the last one finishing."""
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging."""
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "pending": self.pending,
            "duration_seconds": self.duration_seconds,
            "items": [
                {
                    "key": i.key,
                    "status": i.status,
                    "attempts": i.attempts,
                    "duration_seconds": i.duration_seconds,
                    "error": str(i.error) if i.error is not None else None,
                }
                for i in self.items
            ],
        }


class BatchRunner:
    """Runs ``job_fn`` over a list of inputs with at most ``concurrency`` in flight.

    Parameters
    ----------
    job_fn : callable
        ``job_fn(input)`` returning an awaitable (or a value).
    concurrency : int
        Maximum simultaneously executing jobs (>= 1).
    policy : RetryPolicy, optional
        Retry policy applied to every job (default ``RetryPolicy()``).
    on_progress : callable, optional
        ``on_progress(done, total)``, sync or async, after every job.
    cancel_token : CancellationToken, optional
        Caller token; cancelling it stops the batch.
    fail_fast : bool
        Abort the batch on the first job failure and raise
        :class:`BatchAbortedError`.
    key_fn : callable, optional
        Derives each job's identity from its input (default: input index).
    """

    def __init__(
        self,
        job_fn: JobFn,
        *,
        concurrency: int,
        policy: RetryPolicy | None = None,
        on_progress: ProgressFn | None = None,
        cancel_token: CancellationToken | None = None,
        fail_fast: bool = False,
        key_fn: Callable[[Any], Hashable] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._job_fn = job_fn
        self._concurrency = concurrency
        self._policy = policy or RetryPolicy()
        self._on_progress = on_progress
        self._cancel_token = cancel_token
        self._fail_fast = fail_fast
        self._key_fn = key_fn
        self._live_tokens: set[CancellationToken] = set()

    def cancel(self, reason: str = "batch cancelled") -> None:
        """Stop every running batch of this runner: no new jobs, in-flight retries abort."""
        for token in list(self._live_tokens):
            token.cancel(reason)

    async def run(self, inputs: Iterable[Any]) -> BatchResult:
        """Run every input through the job function.

        Returns:
            :class:`BatchResult` with per-item outcome, in input order.

        Raises:
            BatchAbortedError: Only with ``fail_fast=True``, after the first failure.
        """
        items = [
            BatchItem(
                index=index,
                input=value,
                key=self._key_fn(value) if self._key_fn is not None else None,
            )
            for index, value in enumerate(inputs)
        ]
        batch_id = str(uuid.uuid4())
        token = self._cancel_token.child() if self._cancel_token else CancellationToken()
        self._live_tokens.add(token)
        state = _BatchState(queue=deque(items), total=len(items), token=token)
        workers = min(self._concurrency, len(items))
        started_at = datetime.now(UTC)

        async with LogContext(batch_id=batch_id):
            logger.info(
                "async_batch.start",
                items=len(items),
                concurrency=self._concurrency,
                workers=workers,
            )
            try:
                await asyncio.gather(*(self._worker(n, state) for n in range(workers)))
            finally:
                self._live_tokens.discard(token)
                token.detach()

            result = BatchResult(
                batch_id=batch_id,
                items=items,
                started_at=started_at,
                completed_at=datetime.now(UTC),
            )
            logger.info(
                "async_batch.complete",
                succeeded=result.succeeded,
                failed=result.failed,
                cancelled=result.cancelled,
                pending=result.pending,
                duration_seconds=result.duration_seconds,
            )

        if state.first_failure is not None:
            raise BatchAbortedError(
                f"Batch {batch_id} aborted after job {state.first_failure.key!r} failed",
                result=result,
                cause=state.first_failure.error,  # type: ignore[arg-type]
            )
        return result

    # ── Workers ──────────────────────────────────────────────────────

    async def _worker(self, worker_id: int, state: _BatchState) -> None:
        while not state.token.cancelled and state.queue:
            item = state.queue.popleft()
            await self._run_item(item, state)
        logger.debug("async_batch.worker_exit", worker=worker_id)

    async def _run_item(self, item: BatchItem, state: _BatchState) -> None:
        scope = JobScope()
        scope_token = _current_scope.set(scope)
        executor = RetryExecutor(self._policy, cancel_token=state.token)
        item.status = "running"
        item.started_at = datetime.now(UTC)
        try:
            item.result = await executor.execute(lambda: self._job_fn(item.input))
            item.status = "succeeded"
        except OperationCancelled as e:
            item.status = "cancelled"
            item.error = e
        except Exception as e:
            item.status = "failed"
            item.error = e
            logger.warning(
                "async_batch.item_failed",
                key=item.key,
                attempts=executor.attempts,
                exc=e,
            )
            if self._fail_fast and state.first_failure is None:
                state.first_failure = item
                state.token.cancel(f"job {item.key!r} failed")
        finally:
            item.attempts = executor.attempts
            try:
                await scope.aclose()
            except Exception as e:
                item.cleanup_error = e
                logger.warning("async_batch.cleanup_failed", key=item.key, exc=e)
            _current_scope.reset(scope_token)
            item.completed_at = datetime.now(UTC)
            state.done += 1
            await self._report_progress(state.done, state.total)

    async def _report_progress(self, done: int, total: int) -> None:
        if self._on_progress is None:
            return
        try:
            outcome = self._on_progress(done, total)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("async_batch.progress_failed", done=done, total=total, exc=e)


@dataclass
class _BatchState:
    """Mutable state owned by one ``BatchRunner.run`` call."""

    queue: deque[BatchItem]
    total: int
    token: CancellationToken
    done: int = 0
    first_failure: BatchItem | None = field(default=None)


async def run_batch(
    inputs: Iterable[Any],
    job_fn: JobFn,
    concurrency: int,
    on_progress: ProgressFn | None = None,
    **options: Any,
) -> BatchResult:
    """Run ``job_fn`` over ``inputs`` with bounded concurrency.

    Keyword options are passed to :class:`BatchRunner` (``policy``,
    ``cancel_token``, ``fail_fast``, ``key_fn``).
    """
    runner = BatchRunner(job_fn, concurrency=concurrency, on_progress=on_progress, **options)
    return await runner.run(inputs)
