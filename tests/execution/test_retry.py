"""Tests for the retry executor, policy and decorator."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime

import pytest
from structlog.testing import capture_logs

from retryspine.core.errors import (
    BadRequestError,
    NotFoundError,
    OperationCancelled,
    TransientError,
)
from retryspine.execution.backoff import JitterMode
from retryspine.execution.cancellation import CancellationToken
from retryspine.execution.retry import (
    NO_RETRY,
    RetryExecutor,
    RetryPolicy,
    retry_async,
    with_retry,
)
from retryspine.execution.timeout import TimeoutExpired


def fast_policy(**overrides) -> RetryPolicy:
    values = {"max_retries": 3, "base_delay": 0.0, "max_delay": 0.0, "jitter": "none"}
    values.update(overrides)
    return RetryPolicy(**values)


class FlakyOperation:
    """Fails ``failures`` times with errors from ``make_error``, then returns ``result``."""

    def __init__(self, failures: int, make_error=lambda n: TransientError(f"blip {n}"), result="ok"):
        self.failures = failures
        self.make_error = make_error
        self.result = result
        self.calls = 0
        self.raised: list[BaseException] = []

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            error = self.make_error(self.calls)
            self.raised.append(error)
            raise error
        return self.result


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 5
        assert policy.max_attempts == 6
        assert policy.base_delay == 0.25
        assert policy.max_delay == 10.0
        assert policy.factor == 2.0
        assert policy.jitter is JitterMode.FULL
        assert policy.attempt_timeout is None
        assert policy.on_retry is None

    def test_jitter_string_coerced(self):
        assert RetryPolicy(jitter="decorrelated").jitter is JitterMode.DECORRELATED

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"base_delay": -0.1},
            {"base_delay": 2.0, "max_delay": 1.0},
            {"factor": 0.9},
            {"jitter": "sometimes"},
        ],
    )
    def test_invalid_policy_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_replace(self):
        policy = RetryPolicy(max_retries=2).replace(base_delay=1.0, max_delay=1.0)
        assert policy.max_retries == 2
        assert policy.base_delay == 1.0

    def test_backoff_mirrors_policy(self):
        backoff = RetryPolicy(base_delay=0.5, max_delay=4.0, factor=3.0, jitter="none").backoff
        assert list(backoff.schedule(3)) == [0.5, 1.5, 4.0]

    def test_from_settings_reads_environment(self, monkeypatch):
        from retryspine.core.settings import get_settings

        monkeypatch.setenv("RETRYSPINE_MAX_RETRIES", "2")
        monkeypatch.setenv("RETRYSPINE_JITTER", "equal")
        monkeypatch.setenv("RETRYSPINE_ATTEMPT_TIMEOUT", "1.5")
        get_settings(reload=True)

        policy = RetryPolicy.from_settings()
        assert policy.max_retries == 2
        assert policy.jitter is JitterMode.EQUAL
        assert policy.attempt_timeout == 1.5

    def test_from_settings_overrides_win(self):
        policy = RetryPolicy.from_settings(max_retries=0, jitter="none")
        assert policy.max_retries == 0
        assert policy.jitter is JitterMode.NONE

    def test_no_retry_policy(self):
        assert NO_RETRY.max_attempts == 1


class TestRetryExecutor:
    """Attempt counting, classification and the error that comes out."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        op = FlakyOperation(0)
        executor = RetryExecutor(fast_policy())
        assert await executor.execute(op) == "ok"
        assert op.calls == 1
        assert executor.attempts == 1
        assert executor.errors == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        op = FlakyOperation(2)
        executor = RetryExecutor(fast_policy())
        assert await executor.execute(op) == "ok"
        assert op.calls == 3
        assert [attempt for attempt, _, _ in executor.errors] == [0, 1]

    @pytest.mark.asyncio
    async def test_attempt_cap(self):
        op = FlakyOperation(100)
        with pytest.raises(TransientError):
            await retry_async(op, fast_policy(max_retries=3))
        assert op.calls == 4

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self):
        op = FlakyOperation(100)
        with pytest.raises(TransientError):
            await retry_async(op, fast_policy(max_retries=0))
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_last_error_is_raised_with_note(self):
        op = FlakyOperation(100)
        with pytest.raises(TransientError) as exc_info:
            await retry_async(op, fast_policy(max_retries=2))
        assert exc_info.value is op.raised[-1]
        assert str(exc_info.value) == "blip 3"
        assert any("gave up after 3 attempt(s) (exhausted)" in note for note in exc_info.value.__notes__)

    @pytest.mark.asyncio
    async def test_terminal_error_short_circuits(self):
        op = FlakyOperation(100, make_error=lambda n: BadRequestError("malformed id"))
        executor = RetryExecutor(fast_policy(max_retries=5))
        with pytest.raises(BadRequestError) as exc_info:
            await executor.execute(op)
        assert op.calls == 1
        assert executor.attempts == 1
        assert any("(terminal)" in note for note in exc_info.value.__notes__)

    @pytest.mark.asyncio
    async def test_not_found_retried_once(self):
        op = FlakyOperation(100, make_error=lambda n: NotFoundError("not yet"))
        with pytest.raises(NotFoundError):
            await retry_async(op, fast_policy(max_retries=5))
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_unclassified_error_not_retried(self):
        op = FlakyOperation(100, make_error=lambda n: ValueError("bad data"))
        with pytest.raises(ValueError):
            await retry_async(op, fast_policy())
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_backoff_delays_are_honoured(self):
        """Two failures with 100ms then 200ms delays, success on the third call."""
        op = FlakyOperation(2)
        policy = RetryPolicy(max_retries=2, base_delay=0.1, max_delay=10.0, factor=2.0, jitter="none")

        start = time.monotonic()
        assert await retry_async(op, policy) == "ok"
        elapsed = time.monotonic() - start

        assert op.calls == 3
        assert elapsed >= 0.29

    @pytest.mark.asyncio
    async def test_custom_classifier_sees_attempt_index(self):
        seen: list[tuple[str, int]] = []

        def classify(error, attempt):
            seen.append((type(error).__name__, attempt))
            return True

        op = FlakyOperation(100, make_error=lambda n: KeyError(n))
        with pytest.raises(KeyError):
            await retry_async(op, fast_policy(max_retries=2, is_retryable=classify))
        assert seen == [("KeyError", 0), ("KeyError", 1), ("KeyError", 2)]

    @pytest.mark.asyncio
    async def test_async_classifier_is_awaited(self):
        async def classify(error, attempt):
            await asyncio.sleep(0)
            return attempt < 1

        op = FlakyOperation(100, make_error=lambda n: RuntimeError("flaky"))
        with pytest.raises(RuntimeError):
            await retry_async(op, fast_policy(max_retries=5, is_retryable=classify))
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_sync_operation_result(self):
        calls = 0

        def compute():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise TransientError("warming up")
            return 7

        assert await retry_async(compute, fast_policy()) == 7
        assert calls == 2

    @pytest.mark.asyncio
    async def test_history_recorded(self):
        op = FlakyOperation(1)
        executor = RetryExecutor(fast_policy())
        await executor.execute(op)
        assert executor.attempts == 2
        assert executor.last_error is op.raised[0]
        assert executor.started_at is not None
        assert executor.elapsed_seconds >= 0.0


class TestAttemptTimeout:
    @pytest.mark.asyncio
    async def test_never_settling_attempt_times_out(self):
        calls = 0
        never = asyncio.Event()

        async def hang():
            nonlocal calls
            calls += 1
            await never.wait()

        start = time.monotonic()
        with pytest.raises(TimeoutExpired) as exc_info:
            await retry_async(hang, fast_policy(max_retries=1, attempt_timeout=0.05))
        assert calls == 2
        assert time.monotonic() - start < 2.0
        assert exc_info.value.timeout == 0.05

    @pytest.mark.asyncio
    async def test_slow_attempt_then_fast_success(self):
        calls = 0

        async def sometimes_slow():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(0.2)
            return "fast"

        assert await retry_async(sometimes_slow, fast_policy(attempt_timeout=0.05)) == "fast"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_attempt_within_deadline(self):
        async def quick():
            await asyncio.sleep(0.01)
            return 1

        assert await retry_async(quick, fast_policy(attempt_timeout=1.0)) == 1


class TestOnRetryHook:
    @pytest.mark.asyncio
    async def test_hook_receives_attempt_error_delay_and_schedule(self):
        calls = []

        def on_retry(attempt, error, delay, scheduled_at):
            calls.append((attempt, error, delay, scheduled_at))

        op = FlakyOperation(2)
        policy = RetryPolicy(
            max_retries=3, base_delay=0.01, max_delay=1.0, jitter="none", on_retry=on_retry
        )
        await retry_async(op, policy)

        assert [c[0] for c in calls] == [0, 1]
        assert [c[1] for c in calls] == op.raised
        assert [c[2] for c in calls] == pytest.approx([0.01, 0.02])
        for _, _, _, scheduled_at in calls:
            assert isinstance(scheduled_at, datetime)
            assert scheduled_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_async_hook_is_awaited(self):
        seen = []

        async def on_retry(attempt, error, delay, scheduled_at):
            await asyncio.sleep(0)
            seen.append(attempt)

        await retry_async(FlakyOperation(1), fast_policy(on_retry=on_retry))
        assert seen == [0]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_stop_retries(self):
        def on_retry(attempt, error, delay, scheduled_at):
            raise RuntimeError("metrics backend down")

        op = FlakyOperation(2)
        with capture_logs() as logs:
            assert await retry_async(op, fast_policy(on_retry=on_retry)) == "ok"
        assert op.calls == 3
        failures = [entry for entry in logs if entry["event"] == "retry.on_retry_failed"]
        assert len(failures) == 2

    @pytest.mark.asyncio
    async def test_hook_not_called_for_terminal_error(self):
        calls = []
        op = FlakyOperation(1, make_error=lambda n: BadRequestError("nope"))
        with pytest.raises(BadRequestError):
            await retry_async(op, fast_policy(on_retry=lambda *args: calls.append(args)))
        assert calls == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_wakes_retry_sleep(self):
        token = CancellationToken()
        op = FlakyOperation(100)
        policy = RetryPolicy(max_retries=5, base_delay=10.0, max_delay=10.0, jitter="none")

        async def cancel_soon():
            await asyncio.sleep(0.05)
            token.cancel("shutting down")

        canceller = asyncio.create_task(cancel_soon())
        start = time.monotonic()
        with pytest.raises(OperationCancelled):
            await retry_async(op, policy, cancel_token=token)
        await canceller

        assert time.monotonic() - start < 2.0
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_prevents_first_attempt(self):
        token = CancellationToken()
        token.cancel()
        op = FlakyOperation(0)
        with pytest.raises(OperationCancelled):
            await retry_async(op, fast_policy(), cancel_token=token)
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_attempt(self):
        token = CancellationToken()

        async def hang():
            await asyncio.sleep(10.0)

        async def cancel_soon():
            await asyncio.sleep(0.02)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(OperationCancelled):
            await retry_async(hang, fast_policy(), cancel_token=token)
        await canceller


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_bare_decorator(self):
        calls = 0

        @with_retry
        async def ping():
            nonlocal calls
            calls += 1
            return "pong"

        assert await ping() == "pong"
        assert calls == 1
        assert ping.__name__ == "ping"

    @pytest.mark.asyncio
    async def test_decorator_factory_forwards_arguments(self):
        calls = []

        @with_retry(policy=fast_policy(max_retries=2))
        async def fetch(entity_id, *, version=1):
            calls.append((entity_id, version))
            if len(calls) < 2:
                raise TransientError("reset")
            return {"id": entity_id, "version": version}

        assert await fetch(42, version=3) == {"id": 42, "version": 3}
        assert calls == [(42, 3), (42, 3)]

    @pytest.mark.asyncio
    async def test_plain_wrapper(self):
        op = FlakyOperation(1)
        wrapped = with_retry(op, fast_policy(max_retries=1))
        assert await wrapped() == "ok"
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_each_call_starts_a_fresh_attempt_count(self):
        op = FlakyOperation(100)
        wrapped = with_retry(op, fast_policy(max_retries=1))
        for _ in range(2):
            with pytest.raises(TransientError):
                await wrapped()
        assert op.calls == 4
