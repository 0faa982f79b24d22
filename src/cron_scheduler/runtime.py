import logging
from typing import Optional

from celery import Celery
from redis import Redis as SyncRedis
from redis.asyncio import Redis

from cron_scheduler.config import Settings
from cron_scheduler.executor_factory import JobExecutorFactory
from cron_scheduler.queues.celery import CeleryTriggerQueue
from cron_scheduler.queues.in_memory import InMemoryTriggerQueue
from cron_scheduler.queues.protocol import RateLimit, TriggerQueue
from cron_scheduler.retention import RetentionSweeper
from cron_scheduler.scheduler import SchedulerReconciler
from cron_scheduler.services import ExecutionService, JobService
from cron_scheduler.storages.sqlalchemy import SqlAlchemyStorage
from cron_scheduler.worker import ExecutorWorkerPool

logger = logging.getLogger(__name__)

JOB_QUEUE_NAME = "cron-jobs"
MAINTENANCE_QUEUE_NAME = "maintenance"


class SchedulerRuntime:
    """
    Wires storage, queues, workers and services for one process.

    Two queues are used: the job queue, whose repeatable triggers mirror the
    ACTIVE jobs, and a maintenance queue holding the retention sweep. Keeping
    them apart lets `reconcile_all()` clear the job queue freely.
    """

    def __init__(
        self,
        settings: Settings,
        storage: SqlAlchemyStorage,
        job_queue: TriggerQueue,
        maintenance_queue: TriggerQueue,
        executor_factory: Optional[JobExecutorFactory] = None,
    ):
        self.settings = settings
        self.storage = storage
        self.job_queue = job_queue
        self.maintenance_queue = maintenance_queue

        self.reconciler = SchedulerReconciler(storage, job_queue)
        self.workers = ExecutorWorkerPool(
            storage,
            job_queue,
            executor_factory or JobExecutorFactory.default(body_limit=settings.response_body_limit),
            concurrency=settings.worker_concurrency,
            rate_limit=RateLimit(settings.rate_limit_max, settings.rate_limit_window_seconds),
            grace_period=settings.shutdown_grace_seconds,
        )
        self.sweeper = RetentionSweeper(
            storage,
            maintenance_queue,
            days_to_keep=settings.retention_days,
            cron_expression=settings.retention_cron,
        )
        self.jobs = JobService(storage, self.reconciler)
        self.executions = ExecutionService(storage)
        self.is_running = False

    @classmethod
    def in_memory(
        cls,
        settings: Optional[Settings] = None,
        storage: Optional[SqlAlchemyStorage] = None,
        executor_factory: Optional[JobExecutorFactory] = None,
    ) -> "SchedulerRuntime":
        """
        Single process runtime: asyncio queues, workers in the same event loop.
        """
        settings = settings or Settings()
        queue_options = {"poll_interval": settings.poll_interval_seconds, "retry_backoff_ms": settings.retry_backoff_ms}
        return cls(
            settings,
            storage or SqlAlchemyStorage(settings.database_url),
            InMemoryTriggerQueue(JOB_QUEUE_NAME, **queue_options),
            InMemoryTriggerQueue(MAINTENANCE_QUEUE_NAME, **queue_options),
            executor_factory,
        )

    @classmethod
    def celery(
        cls,
        celery_app: Celery,
        redis_client: Redis,
        settings: Optional[Settings] = None,
        storage: Optional[SqlAlchemyStorage] = None,
        executor_factory: Optional[JobExecutorFactory] = None,
        limiter_client: Optional[SyncRedis] = None,
    ) -> "SchedulerRuntime":
        """
        Distributed runtime: the trigger registry lives in Redis and deliveries
        are consumed by Celery workers (see `cron_scheduler.celery_app`).
        `limiter_client` backs the rate limit shared by all worker nodes and
        defaults to a client on `settings.redis_url`.
        """
        settings = settings or Settings()
        queue_options = {"poll_interval": settings.poll_interval_seconds, "retry_backoff_ms": settings.retry_backoff_ms}
        limiter_client = limiter_client or SyncRedis.from_url(settings.redis_url, decode_responses=True)
        return cls(
            settings,
            storage or SqlAlchemyStorage(settings.database_url),
            CeleryTriggerQueue(celery_app, redis_client, JOB_QUEUE_NAME, limiter_client=limiter_client, **queue_options),
            CeleryTriggerQueue(celery_app, redis_client, MAINTENANCE_QUEUE_NAME, **queue_options),
            executor_factory,
        )

    def register_consumers(self):
        self.workers.register()
        self.sweeper.register()

    async def start(self):
        """
        Rebuild the job queue from the store, schedule the retention sweep,
        then start delivering.
        """
        if self.is_running:
            return
        await self.storage.create_tables()
        synced = await self.reconciler.reconcile_all()
        await self.sweeper.start()
        await self.workers.start()
        self.is_running = True
        logger.info("Scheduler started", extra={"active_jobs": synced})

    async def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        grace_period = self.settings.shutdown_grace_seconds
        await self.workers.stop()
        await self.sweeper.stop(grace_period)
        await self.storage.close()
        logger.info("Scheduler stopped", extra={"grace_period": grace_period})
