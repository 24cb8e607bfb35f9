"""Tests for the engine facade: wiring, degraded mode and operator operations."""

import uuid

import pytest

from app.core.exceptions import AlertInactiveError, AlertNotFoundError
from app.services.alert_processor import AlertProcessor
from app.workers.circuit_breaker import CircuitBreaker
from app.workers.engine import AlertEngine, connect_queue
from app.workers.queue import InMemoryAlertQueue

from tests.helpers import FakeProvider, create_alert, make_listing


def _engine(session_factory, mail, queue=None, provider=None, **kwargs):
    processor = AlertProcessor(
        provider or FakeProvider([make_listing("ext-1")]),
        mail,
        session_factory=session_factory,
    )
    return AlertEngine(processor, queue, session_factory=session_factory, **kwargs)


class TestWiring:
    def test_degraded_engine_has_no_worker(self, session_factory, mail):
        engine = _engine(session_factory, mail)

        assert engine.degraded
        assert engine.worker is None
        assert engine.scheduler.queue is None

    def test_breaker_is_shared_and_bound_to_queue(self, session_factory, mail):
        queue = InMemoryAlertQueue()
        breaker = CircuitBreaker(threshold=5)
        engine = _engine(session_factory, mail, queue, breaker=breaker)

        assert engine.worker.breaker is breaker
        assert engine.scheduler.breaker is breaker
        assert breaker.queue is queue

    @pytest.mark.asyncio
    async def test_unreachable_redis_means_degraded_mode(self):
        assert await connect_queue("redis://127.0.0.1:1/0") is None


class TestTriggerAlert:
    @pytest.mark.asyncio
    async def test_runs_check_immediately(self, session_factory, mail):
        alert = await create_alert(session_factory)
        engine = _engine(session_factory, mail, InMemoryAlertQueue())

        result = await engine.trigger_alert(alert.id)

        assert result.email_sent is True
        assert (await engine.queue_stats()).waiting == 0

    @pytest.mark.asyncio
    async def test_unknown_alert(self, session_factory, mail):
        engine = _engine(session_factory, mail)

        with pytest.raises(AlertNotFoundError):
            await engine.trigger_alert(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_inactive_alert(self, session_factory, mail):
        alert = await create_alert(session_factory, is_active=False)
        engine = _engine(session_factory, mail)

        with pytest.raises(AlertInactiveError):
            await engine.trigger_alert(alert.id)


class TestOperatorOperations:
    @pytest.mark.asyncio
    async def test_degraded_queue_operations(self, session_factory, mail):
        engine = _engine(session_factory, mail)

        stats = await engine.queue_stats()
        assert stats.available is False
        assert await engine.drain_queue() == 0
        assert await engine.failed_items() == []
        assert await engine.clean_queue() == 0

    @pytest.mark.asyncio
    async def test_dispatch_then_drain(self, session_factory, mail):
        await create_alert(session_factory, title="One")
        await create_alert(session_factory, title="Two")
        engine = _engine(session_factory, mail, InMemoryAlertQueue())

        result = await engine.dispatch_alerts()
        assert result["enqueued"] == 2

        assert await engine.drain_queue() == 2
        assert (await engine.queue_stats()).pending == 0

    @pytest.mark.asyncio
    async def test_summary_and_history(self, session_factory, mail):
        alert = await create_alert(session_factory, user_id="user-9")
        engine = _engine(session_factory, mail)
        await engine.trigger_alert(alert.id)

        summary = await engine.alert_summary("user-9")
        history = await engine.notification_history(alert.id)

        assert summary["alerts"].total_alerts == 1
        assert summary["alerts"].total_notifications_sent == 1
        assert summary["queue"].available is False
        assert summary["breaker"]["state"] == "flowing"
        assert [item.external_id for item in history] == ["ext-1"]
        assert history[0].status == "sent"

    @pytest.mark.asyncio
    async def test_stop_releases_resources(self, session_factory, mail):
        queue = InMemoryAlertQueue()
        engine = _engine(session_factory, mail, queue, trigger_interval_seconds=3600)
        engine.worker.poll_timeout = 0.05

        await engine.start(run_trigger=True)
        await engine.stop()

        assert not engine.worker.running
        assert not engine.trigger.running
