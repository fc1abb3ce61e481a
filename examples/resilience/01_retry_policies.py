#!/usr/bin/env python3
"""Retry Policies — Backoff, jitter and failure classification.

BACKOFF TIMING — base=0.25s, factor=2×, max=10s
────────────────────────────────────────────────
    Retry  none     full           equal            decorrelated
    ────── ──────── ────────────── ──────────────── ─────────────────
    1      0.25 s   [0, 0.25]      0.25 s           [0.25, 0.5]
    2      0.50 s   [0, 0.50]      [0.25, 0.50]     [0.25, 2×prev]
    3      1.00 s   [0, 1.00]      [0.50, 1.00]     [0.25, 2×prev]

WHICH ERRORS ARE RETRIED
────────────────────────
    400 / 401 / 403         never
    404                     first attempt only
    409                     first two attempts
    408 / 425 / 429 / 5xx   yes
    ECONNRESET, EAI_AGAIN,
    ETIMEDOUT, ENETUNREACH  yes
    OperationCancelled      never

Run: python examples/resilience/01_retry_policies.py

See Also:
    02_batch_runner — run many retried jobs with bounded concurrency
"""
import asyncio

from retryspine import RetryPolicy, TimeoutExpired, with_retry
from retryspine.core.errors import BadRequestError, ServerError
from retryspine.execution import Backoff, RetryExecutor, default_is_retryable


async def main():
    print("=" * 60)
    print("Retry Policy Examples")
    print("=" * 60)

    # === 1. Backoff schedules ===
    print("\n[1] Backoff Schedules")

    for mode in ("none", "full", "equal", "decorrelated"):
        backoff = Backoff(base_delay=0.25, max_delay=10.0, jitter=mode)
        delays = ", ".join(f"{d:.2f}" for d in backoff.schedule(5))
        print(f"  {mode:<13} {delays}")

    # === 2. Classification ===
    print("\n[2] Default Classification")

    for error, attempt in [
        (ServerError(status=503), 4),
        (BadRequestError("malformed id"), 0),
        (ConnectionResetError(), 0),
        (ValueError("bad data"), 0),
    ]:
        verdict = "retry" if default_is_retryable(error, attempt) else "give up"
        print(f"  {type(error).__name__:<22} attempt {attempt}: {verdict}")

    # === 3. with_retry decorator ===
    print("\n[3] with_retry Decorator")

    calls = 0

    def on_retry(attempt, error, delay, scheduled_at):
        print(f"    attempt {attempt} failed ({error}); retrying in {delay:.2f}s")

    @with_retry(policy=RetryPolicy(max_retries=3, base_delay=0.05, jitter="none", on_retry=on_retry))
    async def fetch_loan(loan_id: int) -> dict:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise ServerError("upstream busy", status=503)
        return {"loan_id": loan_id, "balance": 1250.0}

    print(f"  Result: {await fetch_loan(42)}")
    print(f"  Calls made: {calls}")

    # === 4. Terminal errors are not retried ===
    print("\n[4] Terminal Errors")

    executor = RetryExecutor(RetryPolicy(max_retries=5, base_delay=0.05))

    async def reject():
        raise BadRequestError("loan id must be numeric")

    try:
        await executor.execute(reject)
    except BadRequestError as e:
        print(f"  Raised {type(e).__name__} after {executor.attempts} attempt(s)")
        print(f"  Note: {e.__notes__[-1]}")

    # === 5. Per-attempt timeout ===
    print("\n[5] Per-attempt Timeout")

    async def hang():
        await asyncio.sleep(5)

    policy = RetryPolicy(max_retries=1, base_delay=0.05, jitter="none", attempt_timeout=0.1)
    try:
        await RetryExecutor(policy).execute(hang)
    except TimeoutExpired as e:
        print(f"  {e}")

    print("\n" + "=" * 60)
    print("[OK] Retry Policies Complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
