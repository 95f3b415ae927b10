"""Best-effort pub/sub and leaderboard cache invalidation."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from stride.progression.events import CHANNEL_LEVEL_UP, publish_event
from stride.progression.leaderboard_service import (
    GENERATION_KEY,
    build_page_key,
    invalidate_leaderboard_cache,
)


def _redis_with_keys(keys: list[str]) -> MagicMock:
    redis = MagicMock()
    redis.delete = AsyncMock(return_value=len(keys))
    redis.incr = AsyncMock(return_value=1)

    async def _scan_iter(match=None):  # noqa: ANN001, ARG001
        for key in keys:
            yield key

    redis.scan_iter = MagicMock(side_effect=_scan_iter)
    return redis


class TestPublishEvent:
    @pytest.mark.asyncio
    async def test_no_redis_is_noop(self):
        await publish_event(None, CHANNEL_LEVEL_UP, {"user_id": 1})

    @pytest.mark.asyncio
    async def test_publishes_json_payload(self):
        redis = MagicMock()
        redis.publish = AsyncMock(return_value=1)
        await publish_event(redis, CHANNEL_LEVEL_UP, {"user_id": 1, "new_level": 2})
        channel, message = redis.publish.await_args.args
        assert channel == "pubsub:level_up"
        assert json.loads(message) == {"user_id": 1, "new_level": 2}

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self):
        redis = MagicMock()
        redis.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        await publish_event(redis, CHANNEL_LEVEL_UP, {"user_id": 1})


class TestLeaderboardCacheInvalidation:
    def test_page_key_format(self):
        assert build_page_key(2, 25) == "leaderboard:page:0:2:25"
        assert build_page_key(2, 25, generation=7) == "leaderboard:page:7:2:25"

    @pytest.mark.asyncio
    async def test_no_redis_is_noop(self):
        await invalidate_leaderboard_cache(None)

    @pytest.mark.asyncio
    async def test_deletes_every_cached_page(self):
        redis = _redis_with_keys(["leaderboard:page:0:1:50", "leaderboard:page:0:2:50"])
        await invalidate_leaderboard_cache(redis)
        redis.incr.assert_awaited_once_with(GENERATION_KEY)
        redis.scan_iter.assert_called_once_with(match="leaderboard:*")
        redis.delete.assert_awaited_once_with("leaderboard:page:0:1:50", "leaderboard:page:0:2:50")

    @pytest.mark.asyncio
    async def test_nothing_cached_skips_delete(self):
        redis = _redis_with_keys([])
        await invalidate_leaderboard_cache(redis)
        redis.delete.assert_not_awaited()
        redis.incr.assert_awaited_once_with(GENERATION_KEY)

    def test_generation_key_survives_page_sweep(self):
        assert not GENERATION_KEY.startswith("leaderboard:")

    @pytest.mark.asyncio
    async def test_redis_failure_is_swallowed(self):
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=1)
        redis.scan_iter = MagicMock(side_effect=ConnectionError("redis down"))
        await invalidate_leaderboard_cache(redis)
