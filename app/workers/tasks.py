"""
Celery tasks for scheduled and on-demand alert checks.

ARCHITECTURE RULE: tasks are thin entry points.
They do exactly 3 things:
  1. Build the engine (since we're outside the long-running engine process)
  2. Call one engine operation
  3. Close the engine and return a JSON-friendly result
"""
import asyncio
from uuid import UUID

from app.workers.celery_app import celery_app
from app.core.logging import get_logger

logger = get_logger(__name__)


def run_async(coro):
    """
    Helper to run async code in sync Celery tasks.

    Celery workers are synchronous. The engine is async (because
    SQLAlchemy async requires it). This bridge creates an event loop,
    runs the coroutine, and cleans up.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(bind=True, max_retries=0)
def dispatch_job_alerts(self):
    """
    Fan out one check per active alert.

    Queue mode enqueues and returns at once; the long-running worker
    consumes. Degraded mode checks every alert inside this task.
    """
    return run_async(_dispatch_job_alerts())


async def _dispatch_job_alerts():
    from app.core.database import close_db
    from app.workers.engine import AlertEngine

    engine = await AlertEngine.create()
    try:
        return await engine.dispatch_alerts()
    finally:
        await engine.stop()
        await close_db()


@celery_app.task(bind=True, max_retries=0)
def check_alert_now(self, alert_id: str):
    """Check a single alert immediately (bypasses the queue)."""
    return run_async(_check_alert_now(alert_id))


async def _check_alert_now(alert_id: str):
    from app.core.database import close_db
    from app.workers.engine import AlertEngine

    engine = await AlertEngine.create(use_queue=False)
    try:
        result = await engine.trigger_alert(UUID(alert_id))
        return result.model_dump(mode="json")
    finally:
        await engine.stop()
        await close_db()
