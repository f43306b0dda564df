import time
from typing import Dict, List, Optional

import redis.asyncio as redis

from core.logging import get_trading_logger_safe
from core.schemas.orders import OrderJob
from core.utils.exceptions import OrderExecutionError

FAILED_JOBS_RETAINED = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisJobStore:
    """
    Durable job queue in Redis.

    Jobs enter the waiting list on the left and are claimed from the right
    with an atomic LMOVE into the active list, so a job is held by at most
    one worker. Retries wait in a sorted set scored by their ready time.
    """

    def __init__(self, redis_client: redis.Redis, queue_name: str = "orders"):
        self.redis = redis_client
        self.prefix = f"queue:{queue_name}"
        self.logger = get_trading_logger_safe("job_dispatcher")

    # Keys

    @property
    def waiting_key(self) -> str:
        return f"{self.prefix}:waiting"

    @property
    def active_key(self) -> str:
        return f"{self.prefix}:active"

    @property
    def delayed_key(self) -> str:
        return f"{self.prefix}:delayed"

    @property
    def completed_key(self) -> str:
        return f"{self.prefix}:completed"

    @property
    def failed_key(self) -> str:
        return f"{self.prefix}:failed"

    def job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    def inflight_key(self, order_id: str) -> str:
        return f"{self.prefix}:inflight:{order_id}"

    def rate_key(self, window: int) -> str:
        return f"{self.prefix}:rate:{window}"

    # Admission

    async def add(self, job: OrderJob) -> str:
        """Admit a job; an order may only have one job in flight."""
        claimed = await self.redis.set(self.inflight_key(job.order_id), job.job_id, nx=True)
        if not claimed:
            existing = await self.redis.get(self.inflight_key(job.order_id))
            raise OrderExecutionError.queue(
                f"Order {job.order_id} already has a job in flight",
                order_id=job.order_id,
                job_id=existing,
            )

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.job_key(job.job_id), mapping={
                "data": job.model_dump_json(),
                "state": "waiting",
            })
            pipe.lpush(self.waiting_key, job.job_id)
            await pipe.execute()
        return job.job_id

    async def claim(self) -> Optional[OrderJob]:
        job_id = await self.redis.lmove(self.waiting_key, self.active_key, "RIGHT", "LEFT")
        if job_id is None:
            return None

        job = await self.get_job(job_id)
        if job is None:
            # Hash vanished under us; drop the dangling id
            await self.redis.lrem(self.active_key, 1, job_id)
            self.logger.warning("Dropped job without data", job_id=job_id)
            return None

        await self.redis.hset(self.job_key(job_id), "state", "active")
        return job

    async def release(self, job: OrderJob) -> None:
        """Hand an unstarted claimed job back to the head of the waiting list."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, job.job_id)
            pipe.rpush(self.waiting_key, job.job_id)
            pipe.hset(self.job_key(job.job_id), "state", "waiting")
            await pipe.execute()

    async def get_job(self, job_id: str) -> Optional[OrderJob]:
        data = await self.redis.hget(self.job_key(job_id), "data")
        if data is None:
            return None
        return OrderJob.model_validate_json(data)

    async def get_state(self, job_id: str) -> Optional[str]:
        return await self.redis.hget(self.job_key(job_id), "state")

    # Outcomes

    async def complete(self, job: OrderJob) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, job.job_id)
            pipe.incr(self.completed_key)
            pipe.delete(self.job_key(job.job_id))
            pipe.delete(self.inflight_key(job.order_id))
            await pipe.execute()

    async def schedule_retry(self, job: OrderJob, delay_ms: int) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, job.job_id)
            pipe.hset(self.job_key(job.job_id), mapping={
                "data": job.model_dump_json(),
                "state": "delayed",
            })
            pipe.zadd(self.delayed_key, {job.job_id: _now_ms() + delay_ms})
            await pipe.execute()

    async def fail(self, job: OrderJob, reason: str) -> None:
        """Permanent failure; the job hash is kept for inspection."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, job.job_id)
            pipe.hset(self.job_key(job.job_id), mapping={
                "data": job.model_dump_json(),
                "state": "failed",
                "failed_reason": reason,
            })
            pipe.lpush(self.failed_key, job.job_id)
            pipe.ltrim(self.failed_key, 0, FAILED_JOBS_RETAINED - 1)
            pipe.delete(self.inflight_key(job.order_id))
            await pipe.execute()

    # Maintenance

    async def promote_delayed(self, now_ms: Optional[int] = None) -> int:
        """Move retries whose backoff has elapsed back to waiting."""
        now_ms = _now_ms() if now_ms is None else now_ms
        due: List[str] = await self.redis.zrangebyscore(self.delayed_key, 0, now_ms)
        promoted = 0
        for job_id in due:
            # ZREM decides which caller owns the promotion
            if await self.redis.zrem(self.delayed_key, job_id):
                async with self.redis.pipeline(transaction=True) as pipe:
                    pipe.lpush(self.waiting_key, job_id)
                    pipe.hset(self.job_key(job_id), "state", "waiting")
                    await pipe.execute()
                promoted += 1
        return promoted

    async def recover_stalled(self) -> int:
        """Return jobs a previous process left active to the head of waiting."""
        recovered = 0
        while True:
            job_id = await self.redis.lmove(self.active_key, self.waiting_key, "LEFT", "RIGHT")
            if job_id is None:
                break
            await self.redis.hset(self.job_key(job_id), "state", "waiting")
            recovered += 1
        if recovered:
            self.logger.warning("Recovered stalled jobs", count=recovered)
        return recovered

    async def acquire_rate_slot(self, limit_per_minute: int) -> bool:
        """Fixed one-minute window counter; a limit of 0 disables limiting."""
        if limit_per_minute <= 0:
            return True

        key = self.rate_key(int(time.time() // 60))
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, 61)
            count, _ = await pipe.execute()

        if count > limit_per_minute:
            await self.redis.decr(key)
            return False
        return True

    async def counts(self) -> Dict[str, int]:
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.llen(self.waiting_key)
            pipe.llen(self.active_key)
            pipe.get(self.completed_key)
            pipe.llen(self.failed_key)
            pipe.zcard(self.delayed_key)
            waiting, active, completed, failed, delayed = await pipe.execute()

        return {
            "waitingCount": int(waiting),
            "activeCount": int(active),
            "completedCount": int(completed or 0),
            "failedCount": int(failed),
            "delayedCount": int(delayed),
        }
