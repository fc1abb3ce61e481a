"""Artifact pipeline: one rendered artifact per entity, in bulk.

The business data provider and the artifact producer are external
collaborators; this module only wires them into the batch runner:

    entity_id ──retry(fetch_policy)──▶ data_provider(entity_id) ─▶ record
    record    ──retry(render_policy)─▶ artifact_producer(record) ─▶ artifact
                                         └── artifact.release() deferred on the job scope
    artifact  ──retry(render_policy)─▶ sink(artifact)   (optional: save / upload)

Each stage retries on its own, so a flaky render does not refetch the
record; the job as a whole runs once. Scratch resources held by the
artifact are released when the job ends, whatever the outcome. An artifact
that arrives after its render attempt timed out is released on arrival.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Hashable, Iterable
from typing import Any, Protocol, runtime_checkable

from retryspine.core.logging import get_logger
from retryspine.core.settings import RetrySpineSettings, get_settings
from retryspine.execution.async_batch import BatchResult, ProgressFn, current_job_scope, run_batch
from retryspine.execution.backoff import JitterMode
from retryspine.execution.cancellation import CancellationToken
from retryspine.execution.retry import NO_RETRY, RetryPolicy, retry_async

logger = get_logger(__name__)

DEFAULT_FETCH_POLICY = RetryPolicy(max_retries=3, base_delay=0.4, max_delay=4.0, jitter=JitterMode.EQUAL)
DEFAULT_RENDER_POLICY = RetryPolicy(max_retries=2, base_delay=0.35, max_delay=4.0, jitter=JitterMode.EQUAL)


@runtime_checkable
class Artifact(Protocol):
    """A produced artifact holding a scratch resource until released."""

    def release(self) -> Any: ...


def _release_late(artifact: Artifact) -> Any:
    logger.debug("artifacts.late_release")
    return artifact.release()


DataProvider = Callable[[Hashable], Awaitable[Any]]
ArtifactProducer = Callable[[Any], Awaitable[Artifact]]
ArtifactSink = Callable[[Artifact], Awaitable[Any]]


async def produce_artifacts(
    entity_ids: Iterable[Hashable],
    data_provider: DataProvider,
    artifact_producer: ArtifactProducer,
    *,
    sink: ArtifactSink | None = None,
    concurrency: int | None = None,
    limit: int | None = None,
    on_progress: ProgressFn | None = None,
    fetch_policy: RetryPolicy | None = None,
    render_policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
    settings: RetrySpineSettings | None = None,
) -> BatchResult:
    """Produce one artifact per entity id with bounded concurrency.

    Args:
        entity_ids: Entities to produce artifacts for; keys of the result
        data_provider: ``await data_provider(entity_id)`` → business record
        artifact_producer: ``await artifact_producer(record)`` → artifact
        sink: Optional ``await sink(artifact)``; its return value becomes the
            job result (otherwise the released artifact is)
        concurrency: Workers (default ``settings.batch_concurrency``)
        limit: Maximum entities processed (default ``settings.batch_max_items``)
        on_progress: ``on_progress(done, total)``
        fetch_policy: Retry policy for the data provider
        render_policy: Retry policy for the producer and the sink
        cancel_token: Stops the batch when cancelled
        settings: Settings override (default :func:`get_settings`)

    Returns:
        BatchResult keyed by entity id.
    """
    settings = settings or get_settings()
    if concurrency is None:
        concurrency = settings.batch_concurrency
    if limit is None:
        limit = settings.batch_max_items
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    fetch_policy = fetch_policy or DEFAULT_FETCH_POLICY
    render_policy = render_policy or DEFAULT_RENDER_POLICY

    ids = list(entity_ids)
    if len(ids) > limit:
        logger.warning("artifacts.truncated", requested=len(ids), limit=limit)
        ids = ids[:limit]

    async def produce_one(entity_id: Hashable) -> Any:
        record = await retry_async(
            lambda: data_provider(entity_id), fetch_policy, cancel_token=cancel_token
        )
        artifact = await retry_async(
            lambda: artifact_producer(record),
            render_policy,
            cancel_token=cancel_token,
            on_abandoned=_release_late,
        )
        current_job_scope().defer(artifact.release)
        if sink is None:
            return artifact
        return await retry_async(lambda: sink(artifact), render_policy, cancel_token=cancel_token)

    return await run_batch(
        ids,
        produce_one,
        concurrency,
        on_progress,
        policy=NO_RETRY,
        cancel_token=cancel_token,
        key_fn=lambda entity_id: entity_id,
    )
