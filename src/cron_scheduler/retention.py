import logging
from datetime import datetime, timedelta
from typing import Optional

from cron_scheduler.domain.job import utcnow
from cron_scheduler.domain.trigger import Delivery, Trigger, TriggerKind
from cron_scheduler.queues.protocol import TriggerQueue
from cron_scheduler.storages.protocol import Storage

logger = logging.getLogger(__name__)

RETENTION_TRIGGER_KEY = "daily-cleanup"
DEFAULT_DAYS_TO_KEEP = 30
DEFAULT_RETENTION_CRON = "0 3 * * *"


class RetentionSweeper:
    """
    Purges execution attempts older than the retention window.

    Runs from its own maintenance queue, consumed serially, so rebuilding the
    job queue never drops the sweep and the bulk delete never competes with
    dispatches for worker slots.
    """

    def __init__(
        self,
        storage: Storage,
        queue: TriggerQueue,
        days_to_keep: int = DEFAULT_DAYS_TO_KEEP,
        cron_expression: str = DEFAULT_RETENTION_CRON,
        timezone: str = "UTC",
    ):
        self.storage = storage
        self.queue = queue
        self.days_to_keep = days_to_keep
        self.cron_expression = cron_expression
        self.timezone = timezone

    async def schedule(self) -> None:
        """
        Register the sweep, replacing whatever the maintenance queue held.
        """
        await self.queue.clear_repeatable()
        trigger = Trigger(key=RETENTION_TRIGGER_KEY, kind=TriggerKind.RETENTION, days_to_keep=self.days_to_keep)
        await self.queue.add_repeatable(RETENTION_TRIGGER_KEY, trigger, self.cron_expression, self.timezone)
        logger.info("Cleanup job scheduled", extra={"cron": self.cron_expression, "tz": self.timezone})

    def register(self):
        self.queue.register_consumer(self.process, concurrency=1)

    async def start(self):
        await self.schedule()
        self.register()
        await self.queue.start()

    async def stop(self, grace_period: float = 30.0):
        await self.queue.stop(grace_period)

    async def process(self, delivery: Delivery) -> int:
        return await self.sweep(delivery.trigger.days_to_keep)

    async def sweep(self, days_to_keep: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """
        Delete attempts started more than `days_to_keep` days before `now`.
        Return the number of deleted attempts.
        """
        days = days_to_keep if days_to_keep is not None else self.days_to_keep
        cutoff = (now or utcnow()) - timedelta(days=days)
        logger.info("Starting cleanup job", extra={"days_to_keep": days})
        deleted = await self.storage.delete_executions_before(cutoff)
        logger.info("Cleanup job completed", extra={"deleted_count": deleted, "days_to_keep": days})
        return deleted
