import logging
from typing import Optional

from cron_scheduler.domain.execution import ExecutionAttempt, ExecutionStatus
from cron_scheduler.domain.job import utcnow
from cron_scheduler.domain.trigger import Delivery, DispatchSnapshot, TriggerKind
from cron_scheduler.errors import DispatchTimeoutError, DispatchTransportError
from cron_scheduler.executor_factory import JobExecutorFactory
from cron_scheduler.queues.protocol import RateLimit, TriggerQueue
from cron_scheduler.storages.protocol import Storage

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_RATE_LIMIT = RateLimit(max_calls=100, period_seconds=60)


class ExecutorWorkerPool:
    """
    Consumes job triggers, dispatches them and records one ExecutionAttempt
    per terminal outcome.

    The trigger's snapshot is not trusted: the job row is re-read on every
    delivery and its current target, headers, payload, timeout and retry
    budget are used. Deliveries for deleted or paused jobs are skipped
    without writing an attempt.

    Transport failures (timeouts, connection errors, unexpected exceptions)
    are raised back to the queue while `attempts_made < max_retries`, so the
    queue redelivers with backoff. Only the final outcome is stored.
    """

    def __init__(
        self,
        storage: Storage,
        queue: TriggerQueue,
        executor_factory: Optional[JobExecutorFactory] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        rate_limit: Optional[RateLimit] = DEFAULT_RATE_LIMIT,
        grace_period: float = 30.0,
    ):
        self.storage = storage
        self.queue = queue
        self.executor_factory = executor_factory or JobExecutorFactory.default()
        self.concurrency = concurrency
        self.rate_limit = rate_limit
        self.grace_period = grace_period

    def register(self):
        """
        Install `process` as the queue consumer without starting the queue.
        Celery worker processes only need this.
        """
        self.queue.register_consumer(self.process, concurrency=self.concurrency, rate_limit=self.rate_limit)

    async def start(self):
        self.register()
        await self.queue.start()

    async def stop(self):
        await self.queue.stop(self.grace_period)

    async def process(self, delivery: Delivery) -> Optional[ExecutionAttempt]:
        """
        Handle one delivery.

        Returns:
            The stored attempt, or None when the delivery was skipped.

        Raises:
            DispatchTransportError: The dispatch failed and the job's retry
                budget allows another delivery.
        """
        trigger = delivery.trigger
        started_at = utcnow()
        log_context = {"job_id": trigger.job_id, "key": trigger.key, "attempt": delivery.attempts_made}

        if trigger.kind != TriggerKind.DISPATCH or not trigger.job_id:
            logger.warning("Ignoring non-dispatch trigger", extra=log_context)
            return None

        job = await self.storage.get_job(trigger.job_id)
        if job is None:
            logger.warning("Cron job not found, skipping", extra=log_context)
            return None
        if not job.is_active:
            logger.warning("Cron job is not active, skipping", extra={**log_context, "status": job.status.value})
            return None

        if trigger.snapshot is not None and trigger.snapshot != DispatchSnapshot.from_job(job):
            logger.debug("Trigger snapshot is stale, dispatching with current job definition", extra=log_context)

        logger.info("Processing cron job", extra={**log_context, "target_type": job.target_type.value})

        response_code = None
        response_body = None
        error_message = None
        try:
            executor = self.executor_factory.get_executor(job.target_type)
            result = await executor.async_execute(job)
            status = ExecutionStatus.SUCCESS if result.success else ExecutionStatus.FAILED
            response_code = result.status_code
            response_body = result.response_body
            error_message = result.error_message
        except Exception as e:
            error_message = e.message if isinstance(e, DispatchTransportError) else str(e) or type(e).__name__
            logger.error("Job execution failed: %s", error_message, extra=log_context)
            if delivery.attempts_made < job.max_retries:
                if isinstance(e, DispatchTransportError):
                    raise
                raise DispatchTransportError(error_message, attempts_made=delivery.attempts_made) from e
            status = ExecutionStatus.TIMEOUT if isinstance(e, DispatchTimeoutError) else ExecutionStatus.FAILED

        attempt = ExecutionAttempt.finished(
            job_id=job.id,
            status=status,
            started_at=started_at,
            finished_at=utcnow(),
            response_code=response_code,
            response_body=response_body,
            error_message=error_message,
        )
        await self.storage.create_execution(attempt)

        logger.info("Job execution completed", extra={
            **log_context,
            "status": attempt.status.value,
            "duration": attempt.duration,
            "status_code": attempt.response_code,
        })
        return attempt
