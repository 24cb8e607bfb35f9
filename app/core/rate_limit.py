"""
Request rate limiting for outbound job search calls.

Uses a `limits` moving window. With Redis storage the window is shared by
every worker process, so the provider quota holds across the whole
deployment. Without Redis (degraded mode) the window lives in process memory.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional, Union

from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, RedisStorage
from limits.aio.strategies import MovingWindowRateLimiter
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

LimitStorage = Union[MemoryStorage, RedisStorage]


def build_limit_storage(redis_url: Optional[str] = None) -> LimitStorage:
    """Redis storage for a redis:// or rediss:// URL, memory storage when there is none."""
    if not redis_url:
        return MemoryStorage()
    return RedisStorage(f"async+{redis_url}", implementation="redispy")


class RequestRateLimiter:
    """
    Moving-window limiter: at most `max_requests` acquisitions in any
    `period_seconds` window, counted under `key` in the shared storage.

    Usage:
        limiter = RequestRateLimiter.shared(settings.redis_url)
        await limiter.acquire()
    """

    def __init__(
        self,
        max_requests: int,
        period_seconds: int = 60,
        *,
        storage: Optional[LimitStorage] = None,
        key: str = "jsearch",
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if period_seconds < 1:
            raise ValueError("period_seconds must be at least 1")
        self.max_requests = max_requests
        self.period_seconds = int(period_seconds)
        self.item = RateLimitItemPerSecond(max_requests, self.period_seconds)
        self.key = key
        self.storage = storage or MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self.storage)
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()

    @classmethod
    def shared(
        cls,
        redis_url: Optional[str] = None,
        max_requests: Optional[int] = None,
    ) -> "RequestRateLimiter":
        """Provider limiter from settings, stored in Redis when a URL is given."""
        return cls(
            max_requests or settings.worker_requests_per_minute,
            60,
            storage=build_limit_storage(redis_url),
        )

    def _use_memory_storage(self, error: Exception) -> None:
        logger.warning("rate_limit_storage_unavailable", error=str(error))
        self.storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self.storage)

    async def _hit(self) -> bool:
        try:
            return await self._strategy.hit(self.item, self.key)
        except (RedisError, OSError) as e:
            self._use_memory_storage(e)
            return await self._strategy.hit(self.item, self.key)

    async def _retry_after(self) -> float:
        try:
            stats = await self._strategy.get_window_stats(self.item, self.key)
        except (RedisError, OSError) as e:
            self._use_memory_storage(e)
            return 0.0
        return max(stats.reset_time - time.time(), 0.01)

    async def acquire(self) -> float:
        """
        Wait for a free slot and take it.

        Returns:
            Seconds spent waiting (0.0 when a slot was free).
        """
        waited = 0.0
        async with self._lock:
            while not await self._hit():
                delay = await self._retry_after()
                logger.debug("rate_limit_wait", seconds=round(delay, 3))
                await self._sleep(delay)
                waited += delay
        return waited

    async def in_window(self) -> int:
        """Requests counted in the current window."""
        stats = await self._strategy.get_window_stats(self.item, self.key)
        return self.max_requests - stats.remaining

    async def reset(self) -> None:
        await self._strategy.clear(self.item, self.key)
