#!/usr/bin/env python3
"""Artifact Pipeline — One rendered artifact per entity, in bulk.

    entity_id ─▶ data_provider ─▶ record ─▶ artifact_producer ─▶ artifact ─▶ sink
                 (fetch policy)             (render policy)                  (render policy)

Each stage retries on its own; artifacts are released when their job ends.
At most 20 entities (RETRYSPINE_BATCH_MAX_ITEMS) are processed, two at a
time (RETRYSPINE_BATCH_CONCURRENCY).

Run: python examples/resilience/03_artifact_pipeline.py
"""
import asyncio
import random

from retryspine import configure_logging, produce_artifacts
from retryspine.core.errors import ServerError
from retryspine.execution import RetryPolicy


class Statement:
    def __init__(self, record):
        self.record = record
        self.pages = [f"page for {record['loan_id']}"]

    def release(self):
        self.pages.clear()


async def fetch_loan(loan_id):
    await asyncio.sleep(0.01)
    if random.random() < 0.3:
        raise ServerError("loan service busy", status=503)
    return {"loan_id": loan_id, "balance": loan_id * 125.0}


async def render_statement(record):
    await asyncio.sleep(0.02)
    return Statement(record)


async def save(statement):
    return f"/tmp/statement-{statement.record['loan_id']}.pdf"


async def main():
    configure_logging(level="WARNING", json_format=False)

    print("=" * 60)
    print("Artifact Pipeline")
    print("=" * 60)

    fast = RetryPolicy(max_retries=3, base_delay=0.02, max_delay=0.2, jitter="equal")
    result = await produce_artifacts(
        range(1, 26),
        fetch_loan,
        render_statement,
        sink=save,
        fetch_policy=fast,
        on_progress=lambda done, total: print(f"  {done}/{total}", end="\r"),
    )

    print(f"\n  Processed {result.total} of 25 loans in {result.duration_seconds:.2f}s")
    print(f"  Saved: {result.succeeded}, failed: {result.failed}")
    for key, path in list(result.results.items())[:3]:
        print(f"  {key}: {path}")

    print("\n" + "=" * 60)
    print("[OK] Artifact Pipeline Complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
