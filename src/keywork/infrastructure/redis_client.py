"""Redis client for rate limiting and idempotency keys.

Redis is an accelerator, not a dependency of correctness: if it is down,
rate limits are not enforced and idempotency keys are not checked, but
requests still go through.

Usage:
    from keywork.infrastructure.redis_client import init_redis, get_redis

    await init_redis()
    limiter = RateLimiter(get_redis())
    await limiter.check("agent:abc", RateLimitCategory.JOB_CREATE)
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from keywork.config import get_settings
from keywork.domain.enums import RateLimitCategory
from keywork.domain.exceptions import DuplicateOperationError, RateLimitExceededError
from keywork.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Connect and ping. Raises if Redis is unreachable."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return client


def get_redis() -> aioredis.Redis | None:
    """The process-wide client, or None when Redis was not reachable at startup."""
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# ---------------------------------------------------------------------------
# Rate limiting (sliding window over a sorted set)
# ---------------------------------------------------------------------------
QUOTAS: dict[RateLimitCategory, int] = {
    RateLimitCategory.WORKER_SEARCH: 100,
    RateLimitCategory.JOB_CREATE: 20,
    RateLimitCategory.JOB_STATUS: 200,
    RateLimitCategory.MESSAGES: 50,
    RateLimitCategory.DEFAULT: 120,
}


@dataclass(frozen=True)
class RateLimitState:
    limit: int
    remaining: int
    window_seconds: int


class RateLimiter:
    """Per-identity, per-category request quota.

    Each request adds a timestamped member to ``rl:{identity}:{category}``;
    members older than the window are trimmed, and the remaining cardinality
    is the number of requests in the last ``window_seconds``.
    """

    def __init__(
        self,
        client: aioredis.Redis | None,
        window_seconds: int = 60,
        quotas: dict[RateLimitCategory, int] | None = None,
    ) -> None:
        self._client = client
        self._window = window_seconds
        self._quotas = quotas or QUOTAS

    def limit_for(self, category: RateLimitCategory) -> int:
        return self._quotas.get(category, self._quotas[RateLimitCategory.DEFAULT])

    async def check(self, identity: str, category: RateLimitCategory) -> RateLimitState:
        """Count this request against the quota.

        Raises:
            RateLimitExceededError: If the identity is over quota.
        """
        limit = self.limit_for(category)
        if self._client is None:
            return RateLimitState(limit, limit, self._window)

        key = f"rl:{identity}:{category.value}"
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex[:8]}"

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now - self._window)
                pipe.zadd(key, {member: now})
                pipe.zcard(key)
                pipe.expire(key, self._window)
                _, _, count, _ = await pipe.execute()

            if count > limit:
                # Rejected requests do not consume quota.
                await self._client.zrem(key, member)
        except RedisError as exc:
            logger.warning("ratelimit.unavailable", key=key, error=str(exc))
            return RateLimitState(limit, limit, self._window)

        if count > limit:
            logger.info("ratelimit.exceeded", identity=identity, category=category.value)
            raise RateLimitExceededError(category.value, limit, self._window)

        return RateLimitState(limit, max(0, limit - count), self._window)


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------
async def claim_idempotency_key(key: str) -> None:
    """Claim ``key`` for one operation within the TTL.

    Raises:
        DuplicateOperationError: If the key was already claimed.
    """
    client = get_redis()
    if client is None:
        return
    settings = get_settings()
    try:
        claimed = await client.set(
            f"idempotency:{key}",
            "1",
            ex=settings.redis_idempotency_ttl_seconds,
            nx=True,
        )
    except RedisError as exc:
        logger.warning("idempotency.unavailable", key=key, error=str(exc))
        return
    if not claimed:
        raise DuplicateOperationError(key)


async def release_idempotency_key(key: str) -> None:
    """Forget a claim whose operation failed, so the caller may retry."""
    client = get_redis()
    if client is None:
        return
    try:
        await client.delete(f"idempotency:{key}")
    except RedisError as exc:
        logger.warning("idempotency.release_failed", key=key, error=str(exc))
