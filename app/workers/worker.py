"""
Queue consumer.

Takes alert checks off the queue and hands them to the alert processor,
one at a time by default and never faster than the provider quota allows.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

from app.core.config import settings
from app.core.exceptions import QueueUnavailableError, RateLimitedError, is_retryable
from app.core.logging import get_logger, job_context
from app.core.rate_limit import RequestRateLimiter
from app.schemas.alert import AlertCheckResult
from app.schemas.queue import AlertCheckPayload, QueueJob
from app.workers.circuit_breaker import CircuitBreaker
from app.workers.queue import AlertQueue

logger = get_logger(__name__)

AlertHandler = Callable[[AlertCheckPayload], Awaitable[AlertCheckResult]]


class AlertWorker:
    """
    Rate-limited queue consumer.

    Outcomes:
    - success                   -> complete, breaker reset
    - RateLimitedError          -> retry with backoff, breaker counts it
    - other retryable errors    -> retry with backoff, breaker reset
    - anything else             -> failed for good, breaker reset
    """

    def __init__(
        self,
        queue: AlertQueue,
        handler: AlertHandler,
        breaker: Optional[CircuitBreaker] = None,
        limiter: Optional[RequestRateLimiter] = None,
        *,
        concurrency: Optional[int] = None,
        poll_timeout: Optional[float] = None,
    ):
        self.queue = queue
        self.handler = handler
        self.breaker = breaker
        self.limiter = limiter or RequestRateLimiter(settings.worker_requests_per_minute, 60)
        self.concurrency = concurrency or settings.worker_concurrency
        self.poll_timeout = (
            settings.worker_poll_timeout_seconds if poll_timeout is None else poll_timeout
        )
        self._running = False
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def process_next(self, timeout: float = 0.0) -> Optional[QueueJob]:
        """Reserve and run one job. Returns None if nothing was due."""
        job = await self.queue.reserve(timeout)
        if job is None:
            return None
        await self._run(job)
        return job

    async def _run(self, job: QueueJob) -> None:
        with job_context(
            job_id=job.id,
            alert_id=str(job.payload.alert_id),
            attempt=job.attempts_made + 1,
        ):
            waited = await self.limiter.acquire()
            if waited:
                logger.info("worker_rate_limited_locally", waited_seconds=round(waited, 3))

            try:
                result = await self.handler(job.payload)
            except RateLimitedError as e:
                try:
                    await self.queue.fail(job, e.message, retryable=True)
                finally:
                    if self.breaker is not None:
                        await self.breaker.record_failure()
                return
            except Exception as e:
                retryable = is_retryable(e)
                if retryable:
                    logger.warning("alert_job_error", retryable=True, error=str(e))
                else:
                    logger.exception("alert_job_error", retryable=False)
                await self.queue.fail(job, str(e) or type(e).__name__, retryable=retryable)
                if self.breaker is not None:
                    await self.breaker.record_success()
                return

            await self.queue.complete(job, result.model_dump(mode="json"))
            if self.breaker is not None:
                await self.breaker.record_success()
            logger.info(
                "alert_job_completed",
                new_listings=result.new_listings_count,
                email_sent=result.email_sent,
                skipped=result.skipped,
            )

    async def _loop(self, slot: int) -> None:
        logger.info("worker_slot_started", slot=slot)
        while self._running:
            try:
                await self.process_next(self.poll_timeout)
            except QueueUnavailableError as e:
                logger.warning("worker_queue_unavailable", slot=slot, error=str(e))
                await asyncio.sleep(self.poll_timeout)
        logger.info("worker_slot_stopped", slot=slot)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(slot), name=f"alert-worker-{slot}")
            for slot in range(self.concurrency)
        ]
        logger.info("worker_started", queue=self.queue.name, concurrency=self.concurrency)

    async def stop(self) -> None:
        """Stop taking jobs; a job already running is allowed to finish."""
        self._running = False
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=self.poll_timeout + 1)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("worker_stopped", queue=self.queue.name)
