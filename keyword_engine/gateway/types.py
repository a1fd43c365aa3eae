"""Core types for the request budget layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class BucketConfig:
    """Token bucket parameters for one (tenant, region) pair."""

    capacity: int = 20  # Hard ceiling: tokens never accumulate beyond this
    refill_per_hour: float = 600.0

    @property
    def refill_per_second(self) -> float:
        return self.refill_per_hour / 3600.0


@dataclass(frozen=True)
class Reservation:
    """Outcome of a reserve call.

    ``wait_until`` is on the limiter's clock (``time.monotonic`` by default):
    equal to ``now`` when granted, otherwise the earliest retry time.
    """

    granted: bool
    wait_until: float
    now: float

    @property
    def retry_after(self) -> float:
        return max(0.0, self.wait_until - self.now)


@dataclass
class RetryPolicy:
    """Per-candidate retry budget owned by the scheduler."""

    max_retries: int = 3
    base_delay: float = 1.0  # Seconds, doubled per attempt
    max_delay: float = 30.0
    max_rate_limited_waits: int = 50
