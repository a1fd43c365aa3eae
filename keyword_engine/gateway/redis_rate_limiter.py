"""Redis-backed token bucket, for budgets shared across worker processes.

Same contract as ``TokenBucketRateLimiter``; bucket state and region
cooldowns live in Redis so every Celery worker draws from one budget.
Refill and take happen atomically inside a Lua script. Times are wall-clock
seconds (``time.time``) since the bucket is read by several hosts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import redis.asyncio as redis

from keyword_engine.core.metrics import RATE_LIMIT_WAITS, REGION_COOLDOWNS
from keyword_engine.gateway.types import BucketConfig, Reservation

logger = logging.getLogger(__name__)

# KEYS[1] bucket hash, KEYS[2] region cooldown key
# ARGV: now, capacity, refill_per_second, ttl_seconds
# Returns {granted (0/1), wait_until (string)}
_RESERVE_SCRIPT = """
local now = tonumber(ARGV[1])
local capacity = tonumber(ARGV[2])
local rate = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])

local cooldown = tonumber(redis.call('GET', KEYS[2]) or '0')
if cooldown > now then
    return {0, tostring(cooldown)}
end

local state = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(state[1])
local ts = tonumber(state[2])
if tokens == nil then
    tokens = capacity
    ts = now
end
if now > ts then
    tokens = math.min(capacity, tokens + (now - ts) * rate)
    ts = now
end

local granted = 0
local wait_until = now
if tokens >= 1 then
    tokens = tokens - 1
    granted = 1
else
    wait_until = now + (1 - tokens) / rate
end

redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(ts))
redis.call('EXPIRE', KEYS[1], ttl)
return {granted, tostring(wait_until)}
"""

# KEYS[1] region cooldown key; ARGV: until, ttl_seconds
# Only ever extends the cooldown. Returns the effective end.
_BLOCK_SCRIPT = """
local until = tonumber(ARGV[1])
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if until > current then
    redis.call('SET', KEYS[1], tostring(until), 'EX', tonumber(ARGV[2]))
    return {1, tostring(until)}
end
return {0, tostring(current)}
"""


class RedisTokenBucketRateLimiter:
    """Per-tenant, per-region token bucket stored in Redis.

    Usage:
        limiter = RedisTokenBucketRateLimiter.from_settings(settings)
        reservation = await limiter.reserve(tenant_id, "us")
        ...
        await limiter.close()
    """

    def __init__(
        self,
        client: redis.Redis,
        default_config: BucketConfig | None = None,
        region_configs: dict[str, BucketConfig] | None = None,
        cooldown_seconds: float = 300.0,
        key_prefix: str = "ke:budget",
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.default_config = default_config or BucketConfig()
        self.region_configs = {r.lower(): c for r, c in (region_configs or {}).items()}
        self.cooldown_seconds = cooldown_seconds
        self.key_prefix = key_prefix
        self._clock = clock
        self._reserve = client.register_script(_RESERVE_SCRIPT)
        self._block = client.register_script(_BLOCK_SCRIPT)

    @classmethod
    def from_settings(cls, settings) -> RedisTokenBucketRateLimiter:
        return cls(
            redis.from_url(settings.redis_url),
            default_config=BucketConfig(
                capacity=settings.rate_limit_burst,
                refill_per_hour=float(settings.rate_limit_requests_per_hour),
            ),
            cooldown_seconds=settings.region_cooldown_seconds,
            key_prefix=settings.rate_limit_key_prefix,
        )

    def _bucket_key(self, tenant_id: str, region: str) -> str:
        return f"{self.key_prefix}:bucket:{tenant_id}:{region}"

    def _cooldown_key(self, region: str) -> str:
        return f"{self.key_prefix}:cooldown:{region}"

    async def reserve(self, tenant_id: str, region: str) -> Reservation:
        region = region.lower()
        config = self.region_configs.get(region, self.default_config)
        # A full refill from empty is the longest a bucket needs to live
        ttl = int(config.capacity / config.refill_per_second) + 60

        now = self._clock()
        granted, wait_until = await self._reserve(
            keys=[self._bucket_key(str(tenant_id), region), self._cooldown_key(region)],
            args=[repr(now), config.capacity, repr(config.refill_per_second), ttl],
        )
        wait_until = float(wait_until)
        if int(granted):
            return Reservation(granted=True, wait_until=now, now=now)

        RATE_LIMIT_WAITS.labels(region=region).inc()
        logger.debug("Budget exhausted for tenant=%s region=%s, retry in %.2fs", tenant_id, region, wait_until - now)
        return Reservation(granted=False, wait_until=wait_until, now=now)

    async def block_region(self, region: str, seconds: float | None = None) -> float:
        region = region.lower()
        duration = self.cooldown_seconds if seconds is None else seconds
        now = self._clock()
        extended, until = await self._block(
            keys=[self._cooldown_key(region)],
            args=[repr(now + duration), max(1, int(duration) + 1)],
        )
        if int(extended):
            REGION_COOLDOWNS.labels(region=region).inc()
            logger.warning("Region %s in cooldown for %.0fs after a blocked fetch", region, duration)
        return float(until)

    async def close(self) -> None:
        await self.client.aclose()
