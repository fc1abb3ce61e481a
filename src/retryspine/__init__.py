"""
retryspine - resilient remote calls and bounded-concurrency batches.

    from retryspine import RetryPolicy, with_retry, run_batch

    @with_retry(policy=RetryPolicy(max_retries=3, jitter="equal"))
    async def fetch_loan(loan_id): ...

    result = await run_batch(loan_ids, render_statement, concurrency=2)
"""

__version__ = "0.1.0"

from retryspine.artifacts import produce_artifacts
from retryspine.core.errors import (
    BatchAbortedError,
    HTTPStatusError,
    OperationCancelled,
    SpineError,
    TransientError,
)
from retryspine.core.logging import configure_logging, get_logger
from retryspine.core.settings import RetrySpineSettings, get_settings
from retryspine.execution import (
    Backoff,
    BatchResult,
    BatchRunner,
    CancellationToken,
    JitterMode,
    RetryExecutor,
    RetryPolicy,
    TimeoutExpired,
    compute_delay,
    current_job_scope,
    default_is_retryable,
    retry_async,
    run_batch,
    with_retry,
)

__all__ = [
    "__version__",
    "produce_artifacts",
    "BatchAbortedError",
    "HTTPStatusError",
    "OperationCancelled",
    "SpineError",
    "TransientError",
    "configure_logging",
    "get_logger",
    "RetrySpineSettings",
    "get_settings",
    "Backoff",
    "BatchResult",
    "BatchRunner",
    "CancellationToken",
    "JitterMode",
    "RetryExecutor",
    "RetryPolicy",
    "TimeoutExpired",
    "compute_delay",
    "current_job_scope",
    "default_is_retryable",
    "retry_async",
    "run_batch",
    "with_retry",
]
