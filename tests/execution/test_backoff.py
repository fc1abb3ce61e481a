"""Tests for backoff delay calculation."""

import random

import pytest

from retryspine.execution.backoff import Backoff, JitterMode, clamp, compute_delay


class FixedDraw:
    """Random source whose uniform(a, b) returns a fixed fraction of the range."""

    def __init__(self, fraction: float):
        self.fraction = fraction
        self.calls: list[tuple[float, float]] = []

    def uniform(self, a: float, b: float) -> float:
        self.calls.append((a, b))
        return a + (b - a) * self.fraction


class TestComputeDelayNoJitter:
    """Exponential growth without randomization."""

    def test_exponential_sequence(self):
        delays = [
            compute_delay(i, base_delay=1.0, max_delay=60.0, factor=2.0, jitter="none")
            for i in range(5)
        ]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped_at_max(self):
        assert compute_delay(2, base_delay=10.0, max_delay=30.0, factor=2.0) == 30.0
        assert compute_delay(3, base_delay=10.0, max_delay=30.0, factor=2.0) == 30.0

    def test_factor_one_is_constant(self):
        delays = {compute_delay(i, base_delay=0.5, max_delay=5.0, factor=1.0) for i in range(6)}
        assert delays == {0.5}

    def test_monotonic_until_cap(self):
        previous = 0.0
        for i in range(20):
            delay = compute_delay(i, base_delay=0.1, max_delay=3.0, factor=1.7)
            assert delay >= previous
            previous = delay
        assert previous == 3.0

    def test_huge_attempt_saturates(self):
        assert compute_delay(100_000, base_delay=0.1, max_delay=7.0, factor=2.0) == 7.0

    def test_negative_attempt_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            compute_delay(-1, base_delay=1.0, max_delay=2.0)


class TestComputeDelayJitter:
    """Jitter modes and their bounds."""

    def test_full_jitter_draws_from_zero(self):
        draw = FixedDraw(0.0)
        delay = compute_delay(1, base_delay=1.0, max_delay=10.0, jitter="full", rng=draw)
        assert draw.calls == [(0, 2.0)]
        assert delay == 0.0

    def test_full_jitter_upper_bound_is_capped(self):
        draw = FixedDraw(1.0)
        delay = compute_delay(10, base_delay=1.0, max_delay=10.0, jitter=JitterMode.FULL, rng=draw)
        assert delay == 10.0

    def test_equal_jitter_half_deterministic(self):
        draw = FixedDraw(0.0)
        delay = compute_delay(3, base_delay=1.0, max_delay=100.0, jitter="equal", rng=draw)
        assert delay == 4.0  # 8 / 2 + 0
        assert draw.calls == [(0, 4.0)]

    def test_equal_jitter_clamped_to_base(self):
        draw = FixedDraw(0.0)
        delay = compute_delay(0, base_delay=1.0, max_delay=100.0, jitter="equal", rng=draw)
        assert delay == 1.0

    def test_decorrelated_first_call_uses_base(self):
        draw = FixedDraw(1.0)
        delay = compute_delay(0, base_delay=1.0, max_delay=100.0, factor=3.0, jitter="decorrelated", rng=draw)
        assert draw.calls == [(0, 3.0)]  # max(base, base * factor)
        assert delay == 3.0

    def test_decorrelated_grows_from_previous_delay(self):
        draw = FixedDraw(1.0)
        delay = compute_delay(
            4,
            base_delay=1.0,
            max_delay=100.0,
            factor=3.0,
            jitter="decorrelated",
            previous_delay=5.0,
            rng=draw,
        )
        assert draw.calls == [(0, 15.0)]
        assert delay == 15.0

    def test_decorrelated_clamped_to_max(self):
        draw = FixedDraw(1.0)
        delay = compute_delay(
            1, base_delay=1.0, max_delay=8.0, jitter="decorrelated", previous_delay=50.0, rng=draw
        )
        assert delay == 8.0

    @pytest.mark.parametrize("mode", ["none", "equal", "decorrelated"])
    def test_bounded_modes_stay_within_base_and_max(self, mode, rng):
        previous = None
        for i in range(50):
            delay = compute_delay(
                i, base_delay=0.2, max_delay=5.0, factor=2.0, jitter=mode,
                previous_delay=previous, rng=rng,
            )
            assert 0.2 <= delay <= 5.0
            previous = delay

    def test_full_jitter_within_zero_and_max(self, rng):
        delays = [
            compute_delay(i % 12, base_delay=0.2, max_delay=5.0, jitter="full", rng=rng)
            for i in range(200)
        ]
        assert all(0.0 <= d <= 5.0 for d in delays)
        assert min(delays) < 0.2

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            compute_delay(0, base_delay=1.0, max_delay=2.0, jitter="gaussian")

    def test_seeded_rng_is_reproducible(self):
        a = [compute_delay(i, base_delay=0.1, max_delay=9.0, jitter="full", rng=random.Random(7)) for i in range(5)]
        b = [compute_delay(i, base_delay=0.1, max_delay=9.0, jitter="full", rng=random.Random(7)) for i in range(5)]
        assert a == b


class TestBackoff:
    """Tests for the Backoff value object."""

    def test_defaults(self):
        backoff = Backoff()
        assert backoff.base_delay == 0.25
        assert backoff.max_delay == 10.0
        assert backoff.factor == 2.0
        assert backoff.jitter is JitterMode.FULL

    def test_string_jitter_coerced(self):
        assert Backoff(jitter="equal").jitter is JitterMode.EQUAL

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"base_delay": -1.0}, "base_delay"),
            ({"base_delay": 5.0, "max_delay": 1.0}, "max_delay"),
            ({"factor": 0.5}, "factor"),
        ],
    )
    def test_invariants_enforced(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            Backoff(**kwargs)

    def test_schedule_without_jitter(self):
        backoff = Backoff(base_delay=0.1, max_delay=1.0, factor=2.0, jitter="none")
        assert list(backoff.schedule(5)) == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.0])

    def test_schedule_threads_previous_delay(self):
        draw = FixedDraw(1.0)
        backoff = Backoff(base_delay=1.0, max_delay=100.0, factor=2.0, jitter="decorrelated", rng=draw)
        assert list(backoff.schedule(4)) == [2.0, 4.0, 8.0, 16.0]
        assert [upper for _, upper in draw.calls] == [2.0, 4.0, 8.0, 16.0]

    def test_zero_delays_allowed(self):
        backoff = Backoff(base_delay=0.0, max_delay=0.0, jitter="none")
        assert list(backoff.schedule(3)) == [0.0, 0.0, 0.0]


def test_clamp():
    assert clamp(5, 1, 3) == 3
    assert clamp(-5, 1, 3) == 1
    assert clamp(2, 1, 3) == 2
