"""Retry delays for session creation.

The delay grows with the attempt index and is never scaled down on the
first retry:

    delay = base_period * ((attempt + 1) * max(1, attempt * backoff_multiplier))

Attempt indices are 0-based, so with a base period of 2s and a multiplier
of 1.5 the waits are 2s, 6s, 18s, 36s, ...
"""

from __future__ import annotations

from dataclasses import dataclass


def backoff_delay(attempt: int, base_period: float, backoff_multiplier: float) -> float:
    """Seconds to wait after the failed attempt with the given index."""
    if attempt < 0:
        raise ValueError(f"attempt index must be non-negative, got {attempt}")
    return base_period * ((attempt + 1) * max(1, attempt * backoff_multiplier))


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule for session creation.

    Args:
        max_tries: Number of create attempts before giving up
        base_period: Base retry period in seconds
        backoff_multiplier: Growth factor applied from the second retry on
    """

    max_tries: int
    base_period: float
    backoff_multiplier: float

    def __post_init__(self) -> None:
        # No tries means no attempt, never an error
        object.__setattr__(self, "max_tries", max(0, self.max_tries))
        object.__setattr__(self, "base_period", max(0.0, self.base_period))

    def delay(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_period, self.backoff_multiplier)

    def schedule(self) -> list[float]:
        """All waits this policy can produce, in order."""
        return [self.delay(i) for i in range(self.max_tries)]
