"""
Background processing: queue, worker, circuit breaker and scheduler.
"""
from app.workers.circuit_breaker import BreakerState, CircuitBreaker
from app.workers.queue import AlertQueue, InMemoryAlertQueue
from app.workers.redis_queue import RedisAlertQueue
from app.workers.scheduler import AlertScheduler, DispatchTrigger
from app.workers.worker import AlertWorker

__all__ = [
    "AlertQueue",
    "InMemoryAlertQueue",
    "RedisAlertQueue",
    "AlertWorker",
    "AlertScheduler",
    "DispatchTrigger",
    "BreakerState",
    "CircuitBreaker",
]
