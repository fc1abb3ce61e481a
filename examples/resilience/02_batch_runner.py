#!/usr/bin/env python3
"""Batch Runner — Bounded concurrency with progress and per-job cleanup.

ARCHITECTURE
────────────
    inputs ─▶ deque ─┬─▶ worker 0 ─▶ retry(job_fn(input)) ─▶ cleanup ─▶ progress
                     └─▶ worker 1 ─▶ retry(job_fn(input)) ─▶ cleanup ─▶ progress

    One failing job never stops the others; the BatchResult records each
    job's outcome in input order.

Run: python examples/resilience/02_batch_runner.py

See Also:
    01_retry_policies — what each job's retry loop does
    03_artifact_pipeline — the batch runner applied to report generation
"""
import asyncio

from retryspine import BatchAbortedError, CancellationToken, RetryPolicy, current_job_scope, run_batch
from retryspine.core.errors import BadRequestError, TransientError

POLICY = RetryPolicy(max_retries=2, base_delay=0.02, jitter="equal")


class Scratch:
    def __init__(self, name):
        self.name = name

    def release(self):
        print(f"    released scratch for {self.name}")


async def main():
    print("=" * 60)
    print("Batch Runner Examples")
    print("=" * 60)

    # === 1. Five jobs, concurrency 2, one terminal failure ===
    print("\n[1] One Failure Does Not Stop the Batch")

    flaky_once = {4}

    async def render(loan_id):
        current_job_scope().defer(Scratch(loan_id).release)
        await asyncio.sleep(0.02)
        if loan_id == 3:
            raise BadRequestError(f"loan {loan_id} has no schedule")
        if loan_id in flaky_once:
            flaky_once.discard(loan_id)
            raise TransientError("renderer busy")
        return f"statement-{loan_id}.pdf"

    result = await run_batch(
        [1, 2, 3, 4, 5],
        render,
        concurrency=2,
        on_progress=lambda done, total: print(f"  progress {done}/{total}"),
        policy=POLICY,
        key_fn=lambda loan_id: loan_id,
    )
    print(f"  Succeeded: {result.succeeded}, failed: {result.failed}")
    for key, error in result.errors.items():
        print(f"  Loan {key}: {error}")

    # === 2. Fail fast ===
    print("\n[2] Fail Fast")

    try:
        await run_batch([1, 2, 3, 4], render, 1, policy=POLICY, fail_fast=True, key_fn=lambda x: x)
    except BatchAbortedError as e:
        print(f"  {e}")
        print(f"  Pending jobs: {e.result.pending}")

    # === 3. Cancellation ===
    print("\n[3] Cancellation")

    token = CancellationToken()

    async def slow(n):
        await asyncio.sleep(10)

    async def cancel_later():
        await asyncio.sleep(0.1)
        token.cancel("user closed the dialog")

    canceller = asyncio.create_task(cancel_later())
    result = await run_batch(range(6), slow, 2, policy=POLICY, cancel_token=token)
    await canceller
    print(f"  Cancelled: {result.cancelled}, never started: {result.pending}")

    print("\n" + "=" * 60)
    print("[OK] Batch Runner Complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
