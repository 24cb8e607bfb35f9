"""
Redis-backed alert queue.

Key layout (prefix = "{queue_name}:"):
  job:{id}    hash  {data: QueueJob JSON, state}
  wait        zset  ready job ids, score = priority * 1e13 + enqueue ms
  delayed     zset  job ids scored by the ms timestamp they become due
  active      set   job ids a consumer is working on (reaped once stalled)
  completed   zset  job ids scored by finish time
  failed      zset  job ids scored by finish time
  paused      flag

Producer and consumer use separate connections: the consumer blocks in
BZPOPMIN and must never hold up an enqueue.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions import QueueUnavailableError
from app.core.logging import get_logger
from app.schemas.queue import FailedQueueItem, QueueJob, QueueStats
from app.workers.queue import STALLED_REASON, AlertQueue, PayloadLike

logger = get_logger(__name__)

PRIORITY_SCALE = 10 ** 13

# Adds a job unless one with the same id is still in flight.
# Returns the in-flight job's data, or nil when the new job was stored.
ENQUEUE_SCRIPT = """
local state = redis.call('HGET', KEYS[1], 'state')
if state == 'waiting' or state == 'delayed' or state == 'active' then
  return redis.call('HGET', KEYS[1], 'data')
end
redis.call('HSET', KEYS[1], 'data', ARGV[2], 'state', ARGV[3])
redis.call('ZREM', KEYS[4], ARGV[1])
redis.call('ZREM', KEYS[5], ARGV[1])
if ARGV[3] == 'delayed' then
  redis.call('ZADD', KEYS[3], ARGV[5], ARGV[1])
else
  redis.call('ZADD', KEYS[2], ARGV[4], ARGV[1])
end
return false
"""


def _ms(seconds: float) -> int:
    return int(seconds * 1000)


class RedisAlertQueue(AlertQueue):
    """Durable queue shared by every scheduler and worker process."""

    def __init__(
        self,
        url: Optional[str] = None,
        name: Optional[str] = None,
        *,
        connect_timeout: Optional[float] = None,
        client_factory: Optional[Callable[[], Redis]] = None,
        **kwargs,
    ):
        super().__init__(name, **kwargs)
        self.url = url or settings.redis_url
        self.client_factory = client_factory or self._client
        self.connect_timeout = connect_timeout or settings.queue_connect_timeout_seconds
        self._producer: Optional[Redis] = None
        self._consumer: Optional[Redis] = None
        self._enqueue_script = None

    # ─── Keys ────────────────────────────────────────────────────

    def _key(self, suffix: str) -> str:
        return f"{self.name}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    def _wait_score(self, job: QueueJob) -> int:
        return job.priority * PRIORITY_SCALE + _ms(job.enqueued_at)

    # ─── Connections ─────────────────────────────────────────────

    def _client(self) -> Redis:
        return Redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=self.connect_timeout,
        )

    @property
    def producer(self) -> Redis:
        if self._producer is None:
            raise QueueUnavailableError("Queue is not connected")
        return self._producer

    @property
    def consumer(self) -> Redis:
        if self._consumer is None:
            raise QueueUnavailableError("Queue is not connected")
        return self._consumer

    async def connect(self) -> None:
        if not self.url:
            raise QueueUnavailableError("REDIS_URL is not configured")
        self._producer = self.client_factory()
        self._consumer = self.client_factory()
        try:
            await asyncio.wait_for(self._producer.ping(), timeout=self.connect_timeout)
            await asyncio.wait_for(self._consumer.ping(), timeout=self.connect_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            await self.close()
            logger.warning("queue_connect_failed", queue=self.name, error=str(e))
            raise QueueUnavailableError(f"Cannot reach Redis: {e}") from e
        self._enqueue_script = self._producer.register_script(ENQUEUE_SCRIPT)
        logger.info("queue_connected", queue=self.name)

    async def close(self) -> None:
        for client in (self._producer, self._consumer):
            if client is not None:
                await client.aclose()
        self._producer = None
        self._consumer = None

    # ─── Job storage ─────────────────────────────────────────────

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        data = await self._call(self.producer.hget(self._job_key(job_id), "data"))
        if data is None:
            return None
        return QueueJob.model_validate_json(data)

    async def _call(self, awaitable):
        try:
            return await awaitable
        except (RedisError, OSError) as e:
            raise QueueUnavailableError(f"Redis command failed: {e}") from e

    # ─── Producer side ───────────────────────────────────────────

    async def enqueue(self, payload: PayloadLike, *, delay: float = 0.0, priority: int = 1) -> QueueJob:
        payload = self.validate_payload(payload)
        job = self.new_job(payload, delay, priority)
        if self._enqueue_script is None:
            raise QueueUnavailableError("Queue is not connected")

        existing = await self._call(self._enqueue_script(
            keys=[
                self._job_key(job.id),
                self._key("wait"),
                self._key("delayed"),
                self._key("completed"),
                self._key("failed"),
            ],
            args=[
                job.id,
                job.model_dump_json(),
                job.state,
                self._wait_score(job),
                _ms(job.available_at),
            ],
        ))
        if existing:
            logger.debug("queue_job_deduplicated", job_id=job.id)
            return QueueJob.model_validate_json(existing)

        logger.debug("queue_job_enqueued", job_id=job.id, delay_seconds=delay, priority=priority)
        return job

    # ─── Consumer side ───────────────────────────────────────────

    async def _promote_delayed(self) -> Optional[float]:
        """
        Move due delayed jobs to wait.

        Returns seconds until the next delayed job is due, if any.
        """
        now_ms = _ms(self.clock())
        due = await self._call(
            self.consumer.zrangebyscore(self._key("delayed"), "-inf", now_ms)
        )
        for job_id in due:
            # ZREM is the claim: only one consumer promotes a given job
            if not await self._call(self.consumer.zrem(self._key("delayed"), job_id)):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.state = "waiting"
            await self._save(job, self.consumer, zadd={"wait": self._wait_score(job)})

        upcoming = await self._call(
            self.consumer.zrange(self._key("delayed"), 0, 0, withscores=True)
        )
        if not upcoming:
            return None
        return max((upcoming[0][1] - _ms(self.clock())) / 1000.0, 0.0)

    async def _save(
        self,
        job: QueueJob,
        client: Redis,
        *,
        zadd: Optional[Dict[str, float]] = None,
        srem_active: bool = False,
        sadd_active: bool = False,
    ) -> None:
        pipe = client.pipeline(transaction=True)
        pipe.hset(self._job_key(job.id), mapping={"data": job.model_dump_json(), "state": job.state})
        for suffix, score in (zadd or {}).items():
            pipe.zadd(self._key(suffix), {job.id: score})
        if srem_active:
            pipe.srem(self._key("active"), job.id)
        if sadd_active:
            pipe.sadd(self._key("active"), job.id)
        await self._call(pipe.execute())

    async def reserve(self, timeout: float = 0.0) -> Optional[QueueJob]:
        if await self.is_paused():
            if timeout > 0:
                await asyncio.sleep(min(timeout, 1.0))
            return None

        await self.recover_stalled()
        next_due = await self._promote_delayed()
        block = timeout
        if next_due is not None:
            block = min(block, next_due)

        if block > 0:
            popped = await self._call(self.consumer.bzpopmin(self._key("wait"), timeout=block))
            if popped is None:
                return None
            _, job_id, _ = popped
        else:
            popped = await self._call(self.consumer.zpopmin(self._key("wait"), 1))
            if not popped:
                return None
            job_id, _ = popped[0]

        job = await self.get_job(job_id)
        if job is None:
            return None
        self.mark_active(job)
        await self._save(job, self.consumer, sadd_active=True)
        return job

    def _parked_at(self, job: QueueJob) -> Dict[str, float]:
        """Sorted set a failed attempt lands in: delayed for a retry, failed otherwise."""
        if job.state == "delayed":
            return {"delayed": _ms(job.available_at)}
        return {"failed": _ms(job.finished_at)}

    async def recover_stalled(self) -> int:
        now = self.clock()
        recovered = 0
        for job_id in await self._call(self.consumer.smembers(self._key("active"))):
            job = await self.get_job(job_id)
            if job is not None and job.state == "active" and not self.is_stalled(job, now):
                continue
            # SREM is the claim: only one consumer recovers a given job
            if not await self._call(self.consumer.srem(self._key("active"), job_id)):
                continue
            if job is None or job.state != "active":
                continue
            logger.warning("queue_job_stalled", job_id=job.id, started_at=job.started_at)
            self.apply_failure(job, STALLED_REASON, retryable=True)
            await self._save(job, self.consumer, zadd=self._parked_at(job))
            recovered += 1
        return recovered

    async def complete(self, job: QueueJob, result: Optional[Dict[str, Any]] = None) -> None:
        job.state = "completed"
        job.finished_at = self.clock()
        job.failed_reason = None
        await self._save(job, self.consumer, zadd={"completed": _ms(job.finished_at)}, srem_active=True)
        await self.clean()

    async def fail(self, job: QueueJob, error: str, retryable: bool) -> QueueJob:
        self.apply_failure(job, error, retryable)
        await self._save(job, self.consumer, zadd=self._parked_at(job), srem_active=True)
        if job.state == "failed":
            await self.clean()
        return job

    # ─── Control + inspection ────────────────────────────────────

    async def pause(self) -> None:
        await self._call(self.producer.set(self._key("paused"), "1"))
        logger.warning("queue_paused", queue=self.name)

    async def resume(self) -> None:
        await self._call(self.producer.delete(self._key("paused")))
        logger.info("queue_resumed", queue=self.name)

    async def is_paused(self) -> bool:
        return bool(await self._call(self.producer.exists(self._key("paused"))))

    async def stats(self) -> QueueStats:
        try:
            pipe = self.producer.pipeline(transaction=False)
            pipe.zcard(self._key("wait"))
            pipe.scard(self._key("active"))
            pipe.zcard(self._key("completed"))
            pipe.zcard(self._key("failed"))
            pipe.zcard(self._key("delayed"))
            pipe.exists(self._key("paused"))
            waiting, active, completed, failed, delayed, paused = await pipe.execute()
        except (RedisError, OSError, QueueUnavailableError) as e:
            logger.warning("queue_stats_unavailable", queue=self.name, error=str(e))
            return QueueStats(available=False)
        return QueueStats(
            waiting=waiting,
            active=active,
            completed=completed,
            failed=failed,
            delayed=delayed,
            paused=bool(paused),
            available=True,
        )

    async def drain(self) -> int:
        removed = 0
        for suffix in ("wait", "delayed"):
            ids = await self._call(self.producer.zrange(self._key(suffix), 0, -1))
            if ids:
                await self._call(self.producer.delete(*[self._job_key(i) for i in ids]))
                removed += len(ids)
            await self._call(self.producer.delete(self._key(suffix)))
        logger.info("queue_drained", queue=self.name, removed=removed)
        return removed

    async def failed(self, limit: int = 10) -> List[FailedQueueItem]:
        ids = await self._call(self.producer.zrevrange(self._key("failed"), 0, limit - 1))
        items = []
        for job_id in ids:
            job = await self.get_job(job_id)
            if job is not None:
                items.append(self.to_failed_item(job))
        return items

    async def clean(self) -> int:
        now = self.clock()

        doomed_failed = await self._call(self.producer.zrangebyscore(
            self._key("failed"), "-inf", _ms(now - self.failed_retention_seconds)
        ))
        doomed_completed = await self._call(self.producer.zrangebyscore(
            self._key("completed"), "-inf", _ms(now - self.completed_retention_seconds)
        ))
        total_completed = await self._call(self.producer.zcard(self._key("completed")))
        overflow = total_completed - len(doomed_completed) - self.completed_max_items
        if overflow > 0:
            doomed_completed += await self._call(self.producer.zrange(
                self._key("completed"), len(doomed_completed), len(doomed_completed) + overflow - 1
            ))

        pipe = self.producer.pipeline(transaction=True)
        if doomed_failed:
            pipe.zrem(self._key("failed"), *doomed_failed)
        if doomed_completed:
            pipe.zrem(self._key("completed"), *doomed_completed)
        doomed = list(doomed_failed) + list(doomed_completed)
        if doomed:
            pipe.delete(*[self._job_key(i) for i in doomed])
            await self._call(pipe.execute())
        return len(doomed)
