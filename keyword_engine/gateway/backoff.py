"""Exponential backoff with jitter.

  delay = min(base * 2^attempt + jitter, max_delay)
  jitter = random(0, base * 0.5)
"""

from __future__ import annotations

import random

from keyword_engine.gateway.types import RetryPolicy


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
    exponential = base_delay * (2**attempt)
    jitter = random.uniform(0, base_delay * 0.5)
    return min(exponential + jitter, max_delay)


def next_retry_delay(policy: RetryPolicy, attempt: int) -> float | None:
    """Delay for the next retry, or None once the retry budget is spent.

    Args:
        policy: Retry budget.
        attempt: Failed attempts so far, starting at 1.
    """
    if attempt > policy.max_retries:
        return None
    return calculate_backoff(attempt - 1, policy.base_delay, policy.max_delay)
