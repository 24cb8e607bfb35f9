"""
Alert check queue.

One queue item per alert check. The interface is shared by the Redis
backend (durable, multi-process) and the in-memory backend (tests and
single-process runs).

Semantics shared by every backend:
- Stable ids: alert-{alert_id}-{bucket}. Enqueueing an id that is still
  waiting, delayed or active returns the existing item instead of a copy.
- Lower priority number runs first.
- Retries with exponential backoff: backoff * 2 ** (attempt - 1).
- Completed items are kept for a day, failed items for a week.
- An item active longer than the stall limit lost its worker; reserving
  puts it back through the retry path.
"""
import asyncio
import heapq
import itertools
import math
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from uuid import UUID

from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import BatchEnqueueError, PayloadValidationError, QueueUnavailableError
from app.core.logging import get_logger
from app.schemas.queue import AlertCheckPayload, FailedQueueItem, QueueJob, QueueStats

logger = get_logger(__name__)

# States in which a stable id collapses onto the existing item
IN_FLIGHT_STATES = ("waiting", "delayed", "active")

STALLED_REASON = "Job stalled: worker stopped responding"

PayloadLike = Union[AlertCheckPayload, Dict[str, Any]]


class AlertQueue(ABC):
    """Queue of alert checks."""

    def __init__(
        self,
        name: Optional[str] = None,
        *,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        dedup_window_seconds: Optional[int] = None,
        spacing_seconds: Optional[float] = None,
        completed_retention_seconds: Optional[int] = None,
        completed_max_items: Optional[int] = None,
        failed_retention_seconds: Optional[int] = None,
        stalled_after_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name or settings.queue_name
        self.max_attempts = max_attempts or settings.queue_max_attempts
        self.backoff_seconds = (
            settings.queue_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.dedup_window_seconds = dedup_window_seconds or settings.queue_dedup_window_seconds
        self.spacing_seconds = (
            settings.alert_dispatch_spacing_seconds if spacing_seconds is None else spacing_seconds
        )
        self.completed_retention_seconds = (
            completed_retention_seconds or settings.queue_completed_retention_seconds
        )
        self.completed_max_items = completed_max_items or settings.queue_completed_max_items
        self.failed_retention_seconds = (
            failed_retention_seconds or settings.queue_failed_retention_seconds
        )
        self.stalled_after_seconds = stalled_after_seconds or settings.queue_stalled_after_seconds
        self.clock = clock

    # ─── Shared rules ────────────────────────────────────────────

    def job_id_for(self, alert_id: UUID, now: Optional[float] = None) -> str:
        """Stable id: the same alert in the same window maps to the same id."""
        now = self.clock() if now is None else now
        bucket = math.floor(now / self.dedup_window_seconds)
        return f"alert-{alert_id}-{bucket}"

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay before the next attempt after `attempts_made` failures."""
        return self.backoff_seconds * (2 ** max(attempts_made - 1, 0))

    @staticmethod
    def validate_payload(payload: PayloadLike) -> AlertCheckPayload:
        if isinstance(payload, AlertCheckPayload):
            return payload
        try:
            return AlertCheckPayload.model_validate(payload)
        except ValidationError as e:
            raise PayloadValidationError(details=e.errors(include_url=False)) from e

    def new_job(self, payload: AlertCheckPayload, delay: float, priority: int) -> QueueJob:
        now = self.clock()
        return QueueJob(
            id=self.job_id_for(payload.alert_id, now),
            payload=payload,
            priority=priority,
            max_attempts=self.max_attempts,
            state="delayed" if delay > 0 else "waiting",
            available_at=now + max(delay, 0.0),
            enqueued_at=now,
        )

    def mark_active(self, job: QueueJob) -> QueueJob:
        job.state = "active"
        job.started_at = self.clock()
        return job

    def is_stalled(self, job: QueueJob, now: float) -> bool:
        return (
            job.state == "active"
            and job.started_at is not None
            and now - job.started_at > self.stalled_after_seconds
        )

    def apply_failure(self, job: QueueJob, error: str, retryable: bool) -> QueueJob:
        """Count the attempt and move the job to delayed (retry) or failed."""
        now = self.clock()
        job.attempts_made += 1
        job.failed_reason = error
        if retryable and job.attempts_made < job.max_attempts:
            delay = self.backoff_delay(job.attempts_made)
            job.state = "delayed"
            job.available_at = now + delay
            logger.warning(
                "queue_job_retry_scheduled",
                job_id=job.id,
                attempt=job.attempts_made,
                delay_seconds=delay,
                error=error,
            )
        else:
            job.state = "failed"
            job.finished_at = now
            logger.error(
                "queue_job_failed",
                job_id=job.id,
                attempts=job.attempts_made,
                retryable=retryable,
                error=error,
            )
        return job

    @staticmethod
    def to_failed_item(job: QueueJob) -> FailedQueueItem:
        return FailedQueueItem(
            id=job.id,
            alert_id=job.payload.alert_id,
            title=job.payload.title,
            email=job.payload.email,
            failed_reason=job.failed_reason,
            attempts_made=job.attempts_made,
            max_attempts=job.max_attempts,
            failed_at=(
                datetime.fromtimestamp(job.finished_at, tz=timezone.utc)
                if job.finished_at is not None else None
            ),
        )

    async def enqueue_batch(
        self,
        payloads: Iterable[PayloadLike],
        *,
        spacing: Optional[float] = None,
        priority: int = 1,
    ) -> List[QueueJob]:
        """
        Enqueue with delays 0, d, 2d, ... so checks are spread out.

        Raises:
            BatchEnqueueError: the backend went away mid-batch; carries the
                jobs enqueued before it did.
        """
        spacing = self.spacing_seconds if spacing is None else spacing
        jobs: List[QueueJob] = []
        for index, payload in enumerate(payloads):
            try:
                jobs.append(await self.enqueue(payload, delay=index * spacing, priority=priority))
            except QueueUnavailableError as e:
                raise BatchEnqueueError(jobs, e.message) from e
        logger.info("queue_batch_enqueued", queue=self.name, count=len(jobs), spacing_seconds=spacing)
        return jobs

    # ─── Backend operations ──────────────────────────────────────

    async def connect(self) -> None:
        """Verify the backend is reachable. Raises QueueUnavailableError."""

    async def close(self) -> None:
        """Release backend connections."""

    @abstractmethod
    async def enqueue(self, payload: PayloadLike, *, delay: float = 0.0, priority: int = 1) -> QueueJob:
        """Add one alert check (or return the in-flight one with the same id)."""

    @abstractmethod
    async def reserve(self, timeout: float = 0.0) -> Optional[QueueJob]:
        """Take the next due job, waiting up to `timeout` seconds. None when paused or empty."""

    @abstractmethod
    async def complete(self, job: QueueJob, result: Optional[Dict[str, Any]] = None) -> None:
        """Mark an active job as completed."""

    @abstractmethod
    async def fail(self, job: QueueJob, error: str, retryable: bool) -> QueueJob:
        """Record a failed attempt; retry with backoff or fail for good."""

    @abstractmethod
    async def pause(self) -> None:
        """Stop handing out jobs. Active jobs finish normally."""

    @abstractmethod
    async def resume(self) -> None:
        ...

    @abstractmethod
    async def is_paused(self) -> bool:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        ...

    @abstractmethod
    async def stats(self) -> QueueStats:
        ...

    @abstractmethod
    async def drain(self) -> int:
        """Drop every waiting and delayed job. Returns how many were removed."""

    @abstractmethod
    async def failed(self, limit: int = 10) -> List[FailedQueueItem]:
        """Most recent failed jobs first."""

    @abstractmethod
    async def clean(self) -> int:
        """Remove completed/failed jobs past retention. Returns how many were removed."""

    @abstractmethod
    async def recover_stalled(self) -> int:
        """Send active jobs whose worker went away back through the retry path. Returns how many."""


class InMemoryAlertQueue(AlertQueue):
    """
    Process-local queue.

    Used by tests and single-process deployments without Redis. The clock
    is injectable so delays and backoff can be tested without sleeping.
    """

    def __init__(self, name: Optional[str] = None, **kwargs):
        super().__init__(name, **kwargs)
        self._jobs: Dict[str, QueueJob] = {}
        self._paused = False
        self._changed = asyncio.Event()
        self._seq = itertools.count()

    async def enqueue(self, payload: PayloadLike, *, delay: float = 0.0, priority: int = 1) -> QueueJob:
        payload = self.validate_payload(payload)
        job = self.new_job(payload, delay, priority)

        existing = self._jobs.get(job.id)
        if existing is not None and existing.state in IN_FLIGHT_STATES:
            logger.debug("queue_job_deduplicated", job_id=job.id, state=existing.state)
            return existing

        self._jobs[job.id] = job
        self._changed.set()
        logger.debug("queue_job_enqueued", job_id=job.id, delay_seconds=delay, priority=priority)
        return job

    def _promote(self, now: float) -> None:
        for job in self._jobs.values():
            if job.state == "delayed" and job.available_at <= now:
                job.state = "waiting"

    def _next_due(self) -> Optional[QueueJob]:
        now = self.clock()
        self._promote(now)
        ready = [
            (job.priority, job.available_at, job.enqueued_at, next(self._seq), job)
            for job in self._jobs.values()
            if job.state == "waiting"
        ]
        if not ready:
            return None
        return heapq.nsmallest(1, ready)[0][-1]

    async def reserve(self, timeout: float = 0.0) -> Optional[QueueJob]:
        await self.recover_stalled()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout, 0.0)
        while True:
            if not self._paused:
                job = self._next_due()
                if job is not None:
                    return self.mark_active(job)

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None

            wait = remaining
            delayed = [j.available_at for j in self._jobs.values() if j.state == "delayed"]
            if delayed and not self._paused:
                wait = min(wait, max(min(delayed) - self.clock(), 0.01))

            self._changed.clear()
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    async def complete(self, job: QueueJob, result: Optional[Dict[str, Any]] = None) -> None:
        job.state = "completed"
        job.finished_at = self.clock()
        job.failed_reason = None
        self._jobs[job.id] = job
        await self.clean()

    async def fail(self, job: QueueJob, error: str, retryable: bool) -> QueueJob:
        self.apply_failure(job, error, retryable)
        self._jobs[job.id] = job
        self._changed.set()
        await self.clean()
        return job

    async def pause(self) -> None:
        self._paused = True
        logger.warning("queue_paused", queue=self.name)

    async def resume(self) -> None:
        self._paused = False
        self._changed.set()
        logger.info("queue_resumed", queue=self.name)

    async def is_paused(self) -> bool:
        return self._paused

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        return self._jobs.get(job_id)

    async def stats(self) -> QueueStats:
        self._promote(self.clock())
        counts = {"waiting": 0, "active": 0, "completed": 0, "failed": 0, "delayed": 0}
        for job in self._jobs.values():
            counts[job.state] += 1
        return QueueStats(**counts, paused=self._paused, available=True)

    async def drain(self) -> int:
        doomed = [job_id for job_id, job in self._jobs.items() if job.state in ("waiting", "delayed")]
        for job_id in doomed:
            del self._jobs[job_id]
        logger.info("queue_drained", queue=self.name, removed=len(doomed))
        return len(doomed)

    async def failed(self, limit: int = 10) -> List[FailedQueueItem]:
        jobs = sorted(
            (job for job in self._jobs.values() if job.state == "failed"),
            key=lambda job: job.finished_at or 0,
            reverse=True,
        )
        return [self.to_failed_item(job) for job in jobs[:limit]]

    async def clean(self) -> int:
        now = self.clock()
        doomed = [
            job_id
            for job_id, job in self._jobs.items()
            if (job.state == "completed" and now - (job.finished_at or now) > self.completed_retention_seconds)
            or (job.state == "failed" and now - (job.finished_at or now) > self.failed_retention_seconds)
        ]

        completed = sorted(
            (job for job in self._jobs.values() if job.state == "completed" and job.id not in doomed),
            key=lambda job: job.finished_at or 0,
        )
        overflow = len(completed) - self.completed_max_items
        if overflow > 0:
            doomed.extend(job.id for job in completed[:overflow])

        for job_id in doomed:
            del self._jobs[job_id]
        return len(doomed)

    async def recover_stalled(self) -> int:
        now = self.clock()
        stalled = [job for job in self._jobs.values() if self.is_stalled(job, now)]
        for job in stalled:
            logger.warning("queue_job_stalled", job_id=job.id, started_at=job.started_at)
            self.apply_failure(job, STALLED_REASON, retryable=True)
        if stalled:
            self._changed.set()
        return len(stalled)
