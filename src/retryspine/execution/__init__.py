"""retryspine.execution — retries, timeouts and bounded-concurrency batches.

ARCHITECTURE
────────────
::

    BatchRunner / run_batch          (async_batch.py)
      │   N worker loops over a shared deque, JobScope cleanup, progress
      ▼
    RetryExecutor / with_retry       (retry.py)
      │   RetryPolicy, classify → backoff → cancellable sleep
      ├── default_is_retryable       (classify.py)
      ├── run_with_timeout_async     (timeout.py)
      └── CancellationToken          (cancellation.py)
      ▼
    compute_delay / Backoff          (backoff.py)   pure, injectable RNG

MODULE MAP (recommended reading order)
──────────────────────────────────────
  1. backoff.py        ─ JitterMode, compute_delay, Backoff
  2. classify.py       ─ default_is_retryable, status/code extraction
  3. cancellation.py   ─ CancellationToken, cancellable_sleep
  4. timeout.py        ─ TimeoutExpired, run_with_timeout_async
  5. retry.py          ─ RetryPolicy, RetryExecutor, with_retry
  6. async_batch.py    ─ BatchRunner, run_batch, JobScope, BatchResult
"""

from retryspine.execution.async_batch import (
    BatchItem,
    BatchResult,
    BatchRunner,
    JobScope,
    current_job_scope,
    run_batch,
)
from retryspine.execution.backoff import Backoff, JitterMode, compute_delay
from retryspine.execution.cancellation import CancellationToken, cancellable_sleep
from retryspine.execution.classify import (
    code_from_error,
    default_is_retryable,
    status_from_error,
)
from retryspine.execution.retry import (
    NO_RETRY,
    AttemptContext,
    RetryExecutor,
    RetryPolicy,
    retry_async,
    with_retry,
)
from retryspine.execution.timeout import TimeoutExpired, run_with_timeout_async, timeout

__all__ = [
    # Batch
    "BatchItem",
    "BatchResult",
    "BatchRunner",
    "JobScope",
    "current_job_scope",
    "run_batch",
    # Backoff
    "Backoff",
    "JitterMode",
    "compute_delay",
    # Cancellation
    "CancellationToken",
    "cancellable_sleep",
    # Classification
    "code_from_error",
    "default_is_retryable",
    "status_from_error",
    # Retry
    "NO_RETRY",
    "AttemptContext",
    "RetryExecutor",
    "RetryPolicy",
    "retry_async",
    "with_retry",
    # Timeout
    "TimeoutExpired",
    "run_with_timeout_async",
    "timeout",
]
