"""
Alert engine - wires the dispatch components together.

Startup:
1. Connect the Redis queue (falls back to degraded mode if unreachable)
2. Build one circuit breaker shared by worker and scheduler
3. Start the worker (queue mode only) and the dispatch trigger
"""
from typing import Dict, List, Optional
from uuid import UUID

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.exceptions import AlertInactiveError, AlertNotFoundError, QueueUnavailableError
from app.core.logging import get_logger
from app.core.rate_limit import RequestRateLimiter
from app.providers.jsearch import JSearchProvider
from app.repositories.alert_repository import AlertRepository
from app.repositories.notification_repository import NotificationRepository
from app.schemas.alert import AlertCheckResult, NotificationHistoryItem
from app.schemas.queue import AlertCheckPayload, FailedQueueItem, QueueStats
from app.services.alert_processor import AlertProcessor
from app.services.event_sink import EventSink, NullEventSink, RedisEventSink
from app.services.mail_service import SmtpMailTransport
from app.workers.circuit_breaker import CircuitBreaker
from app.workers.queue import AlertQueue
from app.workers.redis_queue import RedisAlertQueue
from app.workers.scheduler import AlertScheduler, DispatchTrigger
from app.workers.worker import AlertWorker

logger = get_logger(__name__)


async def connect_queue(url: Optional[str] = None) -> Optional[AlertQueue]:
    """Connected Redis queue, or None (degraded mode) when Redis is unreachable."""
    url = url or settings.redis_url
    if not url:
        logger.warning("queue_disabled_degraded_mode")
        return None

    queue = RedisAlertQueue(url)
    try:
        await queue.connect()
    except QueueUnavailableError as e:
        logger.warning("queue_unavailable_degraded_mode", error=str(e))
        return None
    return queue


def build_event_sink() -> EventSink:
    if settings.event_sink_enabled and settings.redis_url:
        return RedisEventSink.from_url(settings.redis_url)
    return NullEventSink()


class AlertEngine:
    """Facade over processor, queue, worker, breaker and scheduler."""

    def __init__(
        self,
        processor: AlertProcessor,
        queue: Optional[AlertQueue] = None,
        *,
        breaker: Optional[CircuitBreaker] = None,
        limiter: Optional[RequestRateLimiter] = None,
        session_factory=async_session_maker,
        trigger_interval_seconds: Optional[float] = None,
    ):
        self.processor = processor
        self.queue = queue
        self.session_factory = session_factory

        self.breaker = breaker or CircuitBreaker()
        if self.breaker.queue is None:
            self.breaker.queue = queue

        self.scheduler = AlertScheduler(
            processor,
            queue,
            self.breaker,
            session_factory=session_factory,
        )
        self.worker = (
            AlertWorker(queue, processor.process, self.breaker, limiter)
            if queue is not None else None
        )
        self.trigger = DispatchTrigger(self.dispatch_alerts, trigger_interval_seconds)
        self.alert_repo = AlertRepository()
        self.notification_repo = NotificationRepository()

    @classmethod
    async def create(cls, *, use_queue: bool = True) -> "AlertEngine":
        """Build the production engine from settings."""
        processor = AlertProcessor(
            provider=JSearchProvider(),
            mail=SmtpMailTransport(),
            events=build_event_sink(),
        )
        queue = await connect_queue() if use_queue else None
        limiter = RequestRateLimiter.shared(settings.redis_url if queue is not None else None)
        return cls(processor, queue, limiter=limiter)

    @property
    def degraded(self) -> bool:
        return self.queue is None

    # ─── Lifecycle ───────────────────────────────────────────────

    async def start(self, *, run_worker: bool = True, run_trigger: bool = True) -> None:
        logger.info(
            "alert_engine_starting",
            mode="degraded" if self.degraded else "queue",
            interval_seconds=self.trigger.interval_seconds,
        )
        if run_worker and self.worker is not None:
            await self.worker.start()
        if run_trigger:
            self.trigger.start()

    async def stop(self) -> None:
        await self.trigger.stop()
        if self.worker is not None:
            await self.worker.stop()
        self.breaker.close()
        if self.queue is not None:
            await self.queue.close()
        await self.processor.provider.aclose()
        await self.processor.events.close()
        logger.info("alert_engine_stopped")

    # ─── Operations ──────────────────────────────────────────────

    async def dispatch_alerts(self) -> Dict:
        """One scheduler cycle (what the dispatch trigger and Celery beat run)."""
        return await self.scheduler.run_once()

    async def trigger_alert(self, alert_id: UUID) -> AlertCheckResult:
        """
        Check one alert right now, bypassing the queue.

        Raises:
            AlertNotFoundError, AlertInactiveError
        """
        async with self.session_factory() as db:
            alert = await self.alert_repo.get_by_id(db, alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if not alert.is_active:
                raise AlertInactiveError(alert_id)
            payload = AlertCheckPayload.from_alert(alert)

        logger.info("alert_check_triggered", alert_id=str(alert_id))
        return await self.processor.process(payload)

    async def queue_stats(self) -> QueueStats:
        if self.queue is None:
            return QueueStats(available=False)
        return await self.queue.stats()

    async def drain_queue(self) -> int:
        if self.queue is None:
            return 0
        return await self.queue.drain()

    async def failed_items(self, limit: int = 10) -> List[FailedQueueItem]:
        if self.queue is None:
            return []
        return await self.queue.failed(limit)

    async def clean_queue(self) -> int:
        if self.queue is None:
            return 0
        return await self.queue.clean()

    async def alert_summary(self, user_id: Optional[str] = None) -> Dict:
        """Alert counters plus queue state."""
        async with self.session_factory() as db:
            summary = await self.alert_repo.summary(db, user_id)
        return {
            "alerts": summary,
            "queue": await self.queue_stats(),
            "breaker": {
                "state": self.breaker.state.value,
                "consecutive_failures": self.breaker.consecutive_failures,
            },
        }

    async def notification_history(
        self,
        alert_id: UUID,
        limit: int = 50,
    ) -> List[NotificationHistoryItem]:
        async with self.session_factory() as db:
            rows = await self.notification_repo.history_for_alert(db, alert_id, limit=limit)
        return [NotificationHistoryItem.model_validate(row) for row in rows]
