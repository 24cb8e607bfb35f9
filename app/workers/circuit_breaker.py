"""
Circuit breaker for the job search provider quota.

Counts consecutive rate-limited checks. At the threshold it pauses the
queue and resumes it unconditionally after the cooldown. There is no
half-open probing: the provider quota resets on its own schedule.
"""
import asyncio
import enum
from typing import Optional

from app.core.config import settings
from app.core.exceptions import QueueUnavailableError
from app.core.logging import get_logger
from app.workers.queue import AlertQueue

logger = get_logger(__name__)


class BreakerState(str, enum.Enum):
    FLOWING = "flowing"
    PAUSED = "paused"


class CircuitBreaker:
    """
    Shared by the worker (records outcomes) and the scheduler (checks
    is_open() between direct-mode checks). The engine owns the instance.
    """

    def __init__(
        self,
        threshold: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        queue: Optional[AlertQueue] = None,
    ):
        self.threshold = threshold or settings.circuit_breaker_threshold
        self.cooldown_seconds = (
            settings.circuit_breaker_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self.queue = queue
        self._state = BreakerState.FLOWING
        self._failures = 0
        self._lock = asyncio.Lock()
        self._resume_handle: Optional[asyncio.TimerHandle] = None
        self._resume_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def is_open(self) -> bool:
        return self._state is BreakerState.PAUSED

    async def record_failure(self) -> BreakerState:
        """Count one rate-limited check; open at the threshold."""
        async with self._lock:
            self._failures += 1
            logger.warning(
                "circuit_breaker_failure",
                consecutive_failures=self._failures,
                threshold=self.threshold,
            )
            if self._state is BreakerState.FLOWING and self._failures >= self.threshold:
                await self._open()
            return self._state

    async def record_success(self) -> None:
        """Any outcome other than a rate limit resets the streak."""
        async with self._lock:
            if self._failures:
                logger.debug("circuit_breaker_reset", previous_failures=self._failures)
            self._failures = 0

    async def _open(self) -> None:
        self._state = BreakerState.PAUSED
        logger.error(
            "circuit_breaker_opened",
            consecutive_failures=self._failures,
            cooldown_seconds=self.cooldown_seconds,
        )
        if self.queue is not None:
            try:
                await self.queue.pause()
            except QueueUnavailableError as e:
                logger.warning("circuit_breaker_pause_failed", error=str(e))

        loop = asyncio.get_running_loop()
        self._resume_handle = loop.call_later(self.cooldown_seconds, self._schedule_resume)

    def _schedule_resume(self) -> None:
        self._resume_handle = None
        self._resume_task = asyncio.ensure_future(self.resume())

    async def resume(self) -> None:
        """Close the breaker, reset the counter and resume the queue."""
        async with self._lock:
            if self._resume_handle is not None:
                self._resume_handle.cancel()
                self._resume_handle = None
            self._state = BreakerState.FLOWING
            self._failures = 0
            if self.queue is not None:
                try:
                    await self.queue.resume()
                except QueueUnavailableError as e:
                    logger.warning("circuit_breaker_resume_failed", error=str(e))
        logger.info("circuit_breaker_closed")

    def close(self) -> None:
        """Cancel a pending resume (engine shutdown)."""
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None
        if self._resume_task is not None and not self._resume_task.done():
            self._resume_task.cancel()
