"""Backoff delay calculation with exponential growth and jitter.

Pure functions of their inputs plus one random draw: no sleeping, no state.
The random source is injectable so tests can pin the draw.

Jitter modes (``capped = clamp(base * factor**attempt, base, max)``):

    Mode          Delay                                         Range
    ───────────── ───────────────────────────────────────────── ──────────────
    none          capped                                        [base, max]
    full          uniform(0, capped)                            [0, max]
    equal         capped/2 + uniform(0, capped/2)               [base, max]
    decorrelated  uniform(0, max(base, previous * factor))      [base, max]

Full jitter is the only mode allowed below ``base_delay``: near-zero delays
are what de-synchronizes many clients retrying the same dependency.

Example:
    >>> backoff = Backoff(base_delay=0.1, max_delay=1.0, factor=2, jitter="none")
    >>> list(backoff.schedule(5))
    [0.1, 0.2, 0.4, 0.8, 1.0]
"""

from __future__ import annotations

import random
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum


class JitterMode(str, Enum):
    """Randomization applied to a computed backoff delay."""

    NONE = "none"
    FULL = "full"
    EQUAL = "equal"
    DECORRELATED = "decorrelated"


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def validate_backoff(base_delay: float, max_delay: float, factor: float) -> None:
    """Raise ``ValueError`` unless ``max_delay >= base_delay >= 0`` and ``factor >= 1``."""
    if base_delay < 0:
        raise ValueError(f"base_delay must be non-negative, got {base_delay}")
    if max_delay < base_delay:
        raise ValueError(f"max_delay ({max_delay}) must be >= base_delay ({base_delay})")
    if factor < 1:
        raise ValueError(f"factor must be >= 1, got {factor}")


def compute_delay(
    attempt: int,
    *,
    base_delay: float,
    max_delay: float,
    factor: float = 2.0,
    jitter: JitterMode | str = JitterMode.NONE,
    previous_delay: float | None = None,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before the retry that follows ``attempt``.

    Args:
        attempt: Zero-based attempt index (0 = delay before the first retry)
        base_delay: Lower bound and starting delay
        max_delay: Upper bound
        factor: Exponential growth factor
        jitter: Jitter mode
        previous_delay: Delay returned for the previous attempt; only read by
            decorrelated jitter, which starts from ``base_delay`` when omitted
        rng: Random source (defaults to the ``random`` module)

    Returns:
        The delay in seconds.
    """
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")
    mode = JitterMode(jitter)
    draw = rng.uniform if rng is not None else random.uniform

    try:
        raw = base_delay * factor**attempt
    except OverflowError:
        raw = max_delay
    capped = clamp(raw, base_delay, max_delay)

    if mode is JitterMode.NONE:
        return capped
    if mode is JitterMode.FULL:
        return draw(0, capped)
    if mode is JitterMode.EQUAL:
        half = capped / 2
        return clamp(half + draw(0, half), base_delay, max_delay)

    previous = previous_delay if previous_delay is not None else base_delay
    upper = max(base_delay, previous * factor)
    return clamp(draw(0, upper), base_delay, max_delay)


@dataclass(frozen=True)
class Backoff:
    """Backoff parameters bundled with their invariants.

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        factor: Exponential multiplier
        jitter: Jitter mode
        rng: Optional random source for reproducible jitter
    """

    base_delay: float = 0.25
    max_delay: float = 10.0
    factor: float = 2.0
    jitter: JitterMode = JitterMode.FULL
    rng: random.Random | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        validate_backoff(self.base_delay, self.max_delay, self.factor)
        object.__setattr__(self, "jitter", JitterMode(self.jitter))

    def next_delay(self, attempt: int, previous_delay: float | None = None) -> float:
        """Calculate the delay before the retry following ``attempt``."""
        return compute_delay(
            attempt,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            factor=self.factor,
            jitter=self.jitter,
            previous_delay=previous_delay,
            rng=self.rng,
        )

    def schedule(self, retries: int) -> Iterator[float]:
        """Yield the delays for ``retries`` consecutive retries."""
        previous = None
        for attempt in range(retries):
            previous = self.next_delay(attempt, previous)
            yield previous
