import asyncio
import uuid
from typing import Any, Dict, List, Optional

from core.config.settings import Settings
from core.logging import CorrelationIdManager, get_trading_logger_safe, get_error_logger_safe
from core.monitoring import OrderMetricsCollector
from core.schemas.orders import Order, OrderJob
from core.utils.exceptions import OrderExecutionError, error_message_for
from services.order_processor import OrderStateMachine
from .backoff import backoff_delay_ms, should_retry
from .job_store import RedisJobStore


class JobDispatcher:
    """
    Concurrency-bounded worker pool over the Redis job store.

    `max_concurrent` worker tasks each run one job to completion before
    claiming the next, so at most that many orders execute at once.
    """

    def __init__(
        self,
        settings: Settings,
        store: RedisJobStore,
        state_machine: OrderStateMachine,
        metrics: Optional[OrderMetricsCollector] = None,
    ):
        self.settings = settings
        self.queue_settings = settings.queue
        self.store = store
        self.state_machine = state_machine
        self.metrics = metrics
        self.logger = get_trading_logger_safe("job_dispatcher")
        self.error_logger = get_error_logger_safe("job_dispatcher")

        self._running = False
        self._tasks: List[asyncio.Task] = []

    @property
    def concurrency(self) -> int:
        return self.queue_settings.max_concurrent

    @property
    def poll_interval(self) -> float:
        return self.queue_settings.poll_interval_ms / 1000

    @property
    def is_running(self) -> bool:
        return self._running

    async def enqueue(self, order: Order) -> str:
        """Admit an order and return its job id without waiting for processing."""
        job = OrderJob(
            job_id=str(uuid.uuid4()),
            order_id=order.id,
            order=order,
            attempts_made=0,
            max_attempts=self.queue_settings.retry_max_attempts,
        )
        try:
            job_id = await self.store.add(job)
        except OrderExecutionError:
            raise
        except Exception as e:
            self.error_logger.error("Failed to enqueue order", order_id=order.id, error=str(e))
            raise OrderExecutionError.queue(f"Failed to enqueue order: {e}", order_id=order.id) from e

        self.logger.info("Order enqueued", order_id=order.id, job_id=job_id)
        return job_id

    async def start(self) -> None:
        if self._running:
            return

        await self.store.recover_stalled()
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"order-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._scheduler_loop(), name="order-scheduler"))
        self.logger.info("Job dispatcher started",
                         concurrency=self.concurrency,
                         orders_per_minute=self.queue_settings.orders_per_minute,
                         max_attempts=self.queue_settings.retry_max_attempts)

    async def stop(self) -> None:
        """Cancel workers; a job cut off mid-run is recovered on the next start."""
        if not self._running:
            return

        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.logger.info("Job dispatcher stopped")

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self.store.counts()
        stats["concurrency"] = self.concurrency
        return stats

    async def _scheduler_loop(self) -> None:
        while self._running:
            try:
                await self.store.promote_delayed()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_logger.error("Delayed job promotion failed", error=str(e))
            await asyncio.sleep(self.poll_interval)

    async def _worker_loop(self, worker_id: int) -> None:
        while self._running:
            try:
                job = await self.store.claim()
                if job is None:
                    await asyncio.sleep(self.poll_interval)
                    continue

                if not await self.store.acquire_rate_slot(self.queue_settings.orders_per_minute):
                    await self.store.release(job)
                    self.logger.debug("Rate limit reached, job released", job_id=job.job_id)
                    await asyncio.sleep(self.poll_interval)
                    continue

                await self.process_job(job, worker_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_logger.error("Worker loop error", worker_id=worker_id, error=str(e))
                await asyncio.sleep(self.poll_interval)

    async def process_job(self, job: OrderJob, worker_id: int = 0) -> None:
        attempt = job.attempts_made + 1
        CorrelationIdManager.set_correlation_id(job.job_id)
        CorrelationIdManager.set_correlation_context(order_id=job.order_id, attempt=attempt)
        self.logger.info("Processing order job",
                         order_id=job.order_id,
                         job_id=job.job_id,
                         worker_id=worker_id,
                         attempt=attempt,
                         max_attempts=job.max_attempts)
        try:
            await self.state_machine.process(job.order, attempt=attempt)
        except Exception as exc:
            try:
                await self._handle_failure(job, exc)
            except Exception as e:
                await self._release_unrecorded(job, e)
        else:
            await self.store.complete(job)
            self.logger.info("Order job completed", order_id=job.order_id, job_id=job.job_id)
        finally:
            CorrelationIdManager.clear_correlation()

    async def _release_unrecorded(self, job: OrderJob, error: BaseException) -> None:
        """Retry or failure bookkeeping failed; put the job back so the attempt runs again."""
        self.error_logger.error("Failed to record job outcome",
                                order_id=job.order_id,
                                job_id=job.job_id,
                                error=str(error))
        try:
            await self.store.release(job)
        except Exception as e:
            self.error_logger.error("Failed to release job; left active until stalled-job recovery",
                                    order_id=job.order_id,
                                    job_id=job.job_id,
                                    error=str(e))

    async def _handle_failure(self, job: OrderJob, exc: BaseException) -> None:
        # The state machine has already persisted and broadcast the failure
        if should_retry(job.attempts_made, job.max_attempts):
            delay_ms = backoff_delay_ms(
                job.attempts_made,
                self.queue_settings.backoff_base_ms,
                self.queue_settings.backoff_max_ms,
            )
            job.attempts_made += 1
            await self.store.schedule_retry(job, delay_ms)
            if self.metrics:
                self.metrics.record_job_retry()
            self.logger.info("Retrying order execution",
                             order_id=job.order_id,
                             job_id=job.job_id,
                             attempts_made=job.attempts_made,
                             backoff_ms=delay_ms)
            return

        reason = error_message_for(exc)
        job.attempts_made += 1
        await self.store.fail(job, reason)
        if self.metrics:
            self.metrics.record_job_exhausted()
        self.error_logger.error("Order execution failed after max retries",
                                order_id=job.order_id,
                                job_id=job.job_id,
                                attempts_made=job.attempts_made,
                                error=reason)
