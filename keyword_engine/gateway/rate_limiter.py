"""Token Bucket Rate Limiter — per (tenant, region) SERP request budget.

Each (tenant, region) pair owns a bucket that refills continuously at
``refill_per_hour`` and never holds more than ``capacity`` tokens. A
reservation either takes a token immediately or reports the earliest time
one will be available. Exhaustion is a scheduling signal, never an error.

A blocked fetch puts the whole region into cooldown: every tenant's
reservations for that region are refused until the cooldown ends.

Safe under concurrent access via asyncio.Lock (one lock per bucket).
State lives in process memory only; see redis_rate_limiter for a budget
shared across worker processes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from keyword_engine.core.metrics import RATE_LIMIT_WAITS, REGION_COOLDOWNS
from keyword_engine.gateway.types import BucketConfig, Reservation

logger = logging.getLogger(__name__)


@dataclass
class _TokenBucket:
    """Token bucket for a single (tenant, region) pair."""

    config: BucketConfig
    tokens: float
    updated_at: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(float(self.config.capacity), self.tokens + elapsed * self.config.refill_per_second)
        self.updated_at = max(self.updated_at, now)

    def wait_time(self, now: float) -> float:
        """Seconds until one whole token is available. 0 means available now."""
        self._refill(now)
        if self.tokens >= 1.0:
            return 0.0
        return (1.0 - self.tokens) / self.config.refill_per_second

    def take(self) -> None:
        self.tokens -= 1.0


class TokenBucketRateLimiter:
    """Per-tenant, per-region token bucket limiter with region cooldowns.

    Usage:
        limiter = TokenBucketRateLimiter(BucketConfig(capacity=20, refill_per_hour=600))

        reservation = await limiter.reserve(tenant_id, "us")
        if not reservation.granted:
            await asyncio.sleep(reservation.retry_after)

        # After the source blocks us:
        await limiter.block_region("us")
    """

    def __init__(
        self,
        default_config: BucketConfig | None = None,
        region_configs: dict[str, BucketConfig] | None = None,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_config = default_config or BucketConfig()
        self.region_configs = {r.lower(): c for r, c in (region_configs or {}).items()}
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._buckets: dict[tuple[str, str], _TokenBucket] = {}
        self._cooldowns: dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings) -> TokenBucketRateLimiter:
        return cls(
            default_config=BucketConfig(
                capacity=settings.rate_limit_burst,
                refill_per_hour=float(settings.rate_limit_requests_per_hour),
            ),
            cooldown_seconds=settings.region_cooldown_seconds,
        )

    def _get_bucket(self, tenant_id: str, region: str) -> _TokenBucket:
        """Get or create the bucket for a (tenant, region) pair. Starts full."""
        key = (str(tenant_id), region.lower())
        bucket = self._buckets.get(key)
        if bucket is None:
            config = self.region_configs.get(key[1], self.default_config)
            bucket = _TokenBucket(config=config, tokens=float(config.capacity), updated_at=self._clock())
            self._buckets[key] = bucket
        return bucket

    async def reserve(self, tenant_id: str, region: str) -> Reservation:
        """Take a token if one is available, otherwise report when to retry."""
        region = region.lower()
        now = self._clock()

        cooldown_until = self._cooldowns.get(region, 0.0)
        if cooldown_until > now:
            RATE_LIMIT_WAITS.labels(region=region).inc()
            return Reservation(granted=False, wait_until=cooldown_until, now=now)

        bucket = self._get_bucket(tenant_id, region)
        async with bucket.lock:
            now = self._clock()
            wait = bucket.wait_time(now)
            if wait <= 0:
                bucket.take()
                return Reservation(granted=True, wait_until=now, now=now)

        RATE_LIMIT_WAITS.labels(region=region).inc()
        logger.debug("Budget exhausted for tenant=%s region=%s, retry in %.2fs", tenant_id, region, wait)
        return Reservation(granted=False, wait_until=now + wait, now=now)

    async def block_region(self, region: str, seconds: float | None = None) -> float:
        """Start (or extend) a region-wide cooldown. Returns the cooldown end."""
        region = region.lower()
        now = self._clock()
        until = now + (self.cooldown_seconds if seconds is None else seconds)
        if until > self._cooldowns.get(region, 0.0):
            self._cooldowns[region] = until
            REGION_COOLDOWNS.labels(region=region).inc()
            logger.warning("Region %s in cooldown for %.0fs after a blocked fetch", region, until - now)
        return self._cooldowns[region]

    async def close(self) -> None:
        self._buckets.clear()
        self._cooldowns.clear()
