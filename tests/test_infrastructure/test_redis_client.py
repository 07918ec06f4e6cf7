"""Tests for the Redis-backed rate limiter with a mocked client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import RedisError

from keywork.domain.enums import RateLimitCategory
from keywork.domain.exceptions import RateLimitExceededError
from keywork.infrastructure.redis_client import QUOTAS, RateLimiter


def _redis_with_count(count: int) -> tuple[MagicMock, MagicMock]:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, 1, count, True])
    client = MagicMock()
    client.pipeline.return_value.__aenter__.return_value = pipe
    client.zrem = AsyncMock()
    return client, pipe


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_under_quota(self) -> None:
        client, _ = _redis_with_count(3)
        limiter = RateLimiter(client, window_seconds=60)

        state = await limiter.check("agent:a", RateLimitCategory.JOB_CREATE)

        assert state.limit == QUOTAS[RateLimitCategory.JOB_CREATE]
        assert state.remaining == state.limit - 3
        client.zrem.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_over_quota_raises_and_frees_slot(self) -> None:
        limit = QUOTAS[RateLimitCategory.JOB_CREATE]
        client, _ = _redis_with_count(limit + 1)
        limiter = RateLimiter(client, window_seconds=60)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.check("agent:a", RateLimitCategory.JOB_CREATE)

        assert exc_info.value.retry_after_seconds == 60
        client.zrem.assert_awaited_once()
        key = client.zrem.await_args.args[0]
        assert key == "rl:agent:a:job_create"

    @pytest.mark.asyncio
    async def test_redis_error_allows_request(self) -> None:
        client, pipe = _redis_with_count(0)
        pipe.execute.side_effect = RedisError("connection lost")
        limiter = RateLimiter(client)

        state = await limiter.check("user:u", RateLimitCategory.MESSAGES)

        assert state.remaining == state.limit

    @pytest.mark.asyncio
    async def test_without_redis(self) -> None:
        limiter = RateLimiter(None)

        state = await limiter.check("user:u", RateLimitCategory.WORKER_SEARCH)

        assert state.remaining == QUOTAS[RateLimitCategory.WORKER_SEARCH]

    def test_unknown_category_uses_default(self) -> None:
        limiter = RateLimiter(None, quotas={RateLimitCategory.DEFAULT: 7})

        assert limiter.limit_for(RateLimitCategory.JOB_STATUS) == 7
