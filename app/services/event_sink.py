"""
Real-time event sink.

Pushes check progress to a user's live clients. Delivery is best-effort:
a failed emit is logged and never fails the check that produced it.
"""
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class EventSink(ABC):
    @abstractmethod
    async def notify_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        """Send `event` to every live client of `user_id`."""

    async def close(self) -> None:
        return None


class NullEventSink(EventSink):
    """Used when no real-time transport is configured."""

    async def notify_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        logger.debug("event_dropped", user_id=user_id, event_name=event)


class RedisEventSink(EventSink):
    """
    Publishes events as JSON on `{prefix}{user_id}`.

    A gateway process subscribed to the channels relays them to websockets.
    """

    def __init__(self, redis: Redis, channel_prefix: Optional[str] = None):
        self.redis = redis
        self.channel_prefix = channel_prefix or settings.event_channel_prefix

    @classmethod
    def from_url(cls, url: str, channel_prefix: Optional[str] = None) -> "RedisEventSink":
        return cls(Redis.from_url(url, decode_responses=True), channel_prefix)

    def channel_for(self, user_id: str) -> str:
        return f"{self.channel_prefix}{user_id}"

    async def notify_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        message = json.dumps(
            {
                "event": event,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
        try:
            await self.redis.publish(self.channel_for(user_id), message)
        except (RedisError, OSError) as e:
            logger.warning("event_emit_failed", user_id=user_id, event_name=event, error=str(e))

    async def close(self) -> None:
        await self.redis.aclose()
