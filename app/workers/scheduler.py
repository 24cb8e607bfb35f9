"""
Alert dispatch scheduler.

Every cycle loads the active alerts and either queues one check per
alert (staggered) or, when no queue is available, runs the checks
directly with the same spacing.
"""
import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.exceptions import BatchEnqueueError, QueueUnavailableError, RateLimitedError
from app.core.logging import get_logger
from app.repositories.alert_repository import AlertRepository
from app.schemas.queue import AlertCheckPayload
from app.services.alert_processor import AlertProcessor
from app.workers.circuit_breaker import CircuitBreaker
from app.workers.queue import AlertQueue

logger = get_logger(__name__)


class AlertScheduler:
    """Fans active alerts out to the queue (or straight to the processor)."""

    def __init__(
        self,
        processor: AlertProcessor,
        queue: Optional[AlertQueue] = None,
        breaker: Optional[CircuitBreaker] = None,
        *,
        session_factory=async_session_maker,
        spacing_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.processor = processor
        self.queue = queue
        self.breaker = breaker
        self.session_factory = session_factory
        self.spacing_seconds = (
            settings.alert_dispatch_spacing_seconds if spacing_seconds is None else spacing_seconds
        )
        self._sleep = sleep
        self.alert_repo = AlertRepository()

    async def load_payloads(self) -> List[AlertCheckPayload]:
        """Payloads for every active alert with an email. Invalid alerts are logged and skipped."""
        async with self.session_factory() as db:
            alerts = await self.alert_repo.get_active_alerts(db)

        payloads = []
        for alert in alerts:
            try:
                payloads.append(AlertCheckPayload.from_alert(alert))
            except ValidationError as e:
                logger.warning(
                    "alert_payload_invalid",
                    alert_id=str(alert.id),
                    errors=e.errors(include_url=False),
                )
        return payloads

    async def run_once(self) -> Dict:
        """
        One dispatch cycle.

        Returns:
            Dict with mode ('queued', 'direct' or 'idle') and counts.
        """
        payloads = await self.load_payloads()
        logger.info("alert_dispatch_started", alerts=len(payloads), queued=self.queue is not None)

        if not payloads:
            return {"mode": "idle", "alerts": 0}

        if self.queue is not None:
            try:
                jobs = await self.queue.enqueue_batch(payloads, spacing=self.spacing_seconds)
                return {"mode": "queued", "alerts": len(payloads), "enqueued": len(jobs)}
            except BatchEnqueueError as e:
                # Already-queued alerts belong to the worker; only the rest run here.
                queued = {job.payload.alert_id for job in e.enqueued}
                remaining = [p for p in payloads if p.alert_id not in queued]
                logger.warning(
                    "alert_dispatch_queue_lost_mid_batch",
                    enqueued=len(e.enqueued),
                    remaining=len(remaining),
                    error=e.message,
                )
                result = await self._process_directly(remaining)
                result.update(alerts=len(payloads), enqueued=len(e.enqueued))
                return result
            except QueueUnavailableError as e:
                logger.warning("alert_dispatch_queue_unavailable", error=str(e))

        return await self._process_directly(payloads)

    async def _process_directly(self, payloads: List[AlertCheckPayload]) -> Dict:
        """Degraded mode: run checks in-process, `spacing` apart."""
        processed = 0
        failed = 0
        stopped_early = False

        for index, payload in enumerate(payloads):
            if self.breaker is not None and self.breaker.is_open():
                stopped_early = True
                logger.warning("alert_dispatch_stopped_breaker_open", remaining=len(payloads) - index)
                break

            if index > 0:
                await self._sleep(self.spacing_seconds)

            try:
                await self.processor.process(payload)
                processed += 1
                if self.breaker is not None:
                    await self.breaker.record_success()
            except RateLimitedError:
                failed += 1
                logger.warning("alert_check_rate_limited", alert_id=str(payload.alert_id))
                if self.breaker is not None:
                    await self.breaker.record_failure()
            except Exception:
                failed += 1
                logger.exception("alert_check_failed", alert_id=str(payload.alert_id))
                if self.breaker is not None:
                    await self.breaker.record_success()

        logger.info(
            "alert_dispatch_completed",
            mode="direct",
            processed=processed,
            failed=failed,
            stopped_early=stopped_early,
        )
        return {
            "mode": "direct",
            "alerts": len(payloads),
            "processed": processed,
            "failed": failed,
            "stopped_early": stopped_early,
        }


class DispatchTrigger:
    """
    Runs `callback` every `interval_seconds` on an APScheduler AsyncIOScheduler.

    max_instances=1 keeps cycles from overlapping; coalesce=True folds
    runs missed while a cycle was busy into one.
    """

    JOB_ID = "dispatch-job-alerts"

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        interval_seconds: Optional[float] = None,
        *,
        run_on_start: Optional[bool] = None,
    ):
        self.callback = callback
        self.interval_seconds = interval_seconds or settings.alert_check_interval_seconds
        self.run_on_start = (
            settings.alert_check_on_startup if run_on_start is None else run_on_start
        )
        self.cycles = 0
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": max(int(self.interval_seconds), 1),
            },
            timezone=timezone.utc,
        )

    async def _fire(self) -> None:
        try:
            await self.callback()
        except Exception:
            logger.exception("alert_dispatch_cycle_failed")
        self.cycles += 1

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Register the dispatch job and start the scheduler on the running loop."""
        if self.scheduler.running:
            return

        job_kwargs = {}
        if self.run_on_start:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_job(
            self._fire,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=self.JOB_ID,
            name="Dispatch job alerts",
            replace_existing=True,
            **job_kwargs,
        )
        self.scheduler.start()
        logger.info(
            "alert_trigger_started",
            interval_seconds=self.interval_seconds,
            next_run_time=str(self.next_run_time()),
        )

    def next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job else None

    async def stop(self) -> None:
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        logger.info("alert_trigger_stopped")
