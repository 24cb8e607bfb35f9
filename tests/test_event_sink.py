"""Tests for best-effort real-time event delivery."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.services.event_sink import NullEventSink, RedisEventSink


class TestRedisEventSink:
    @pytest.mark.asyncio
    async def test_publishes_to_user_channel(self):
        redis = MagicMock()
        redis.publish = AsyncMock(return_value=1)
        sink = RedisEventSink(redis, channel_prefix="job-alerts:user:")

        await sink.notify_user("user-1", "job_alert_new_jobs", {"count": 2})

        channel, message = redis.publish.await_args.args
        assert channel == "job-alerts:user:user-1"
        body = json.loads(message)
        assert body["event"] == "job_alert_new_jobs"
        assert body["data"] == {"count": 2}
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_publish_failure_is_ignored(self):
        redis = MagicMock()
        redis.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        sink = RedisEventSink(redis)

        await sink.notify_user("user-1", "job_alert_processing", {})

        redis.publish.assert_awaited_once()


class TestNullEventSink:
    @pytest.mark.asyncio
    async def test_drops_events(self):
        await NullEventSink().notify_user("user-1", "job_alert_processing", {})
