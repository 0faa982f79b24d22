import logging

from cron_scheduler.cron import validate_cron_expression
from cron_scheduler.domain.job import Job, JobStatus
from cron_scheduler.domain.trigger import DispatchSnapshot, Trigger
from cron_scheduler.errors import InvalidScheduleError
from cron_scheduler.queues.protocol import TriggerQueue
from cron_scheduler.storages.protocol import Storage

logger = logging.getLogger(__name__)


class SchedulerReconciler:
    """
    Keeps the queue's repeatable triggers congruent with the set of ACTIVE jobs.

    A job has exactly one repeatable trigger, keyed by its id, while it is
    ACTIVE and none otherwise. Whenever a trigger has to change it is removed
    before the replacement is added, so the queue never holds two triggers
    for the same job.
    """

    def __init__(self, storage: Storage, queue: TriggerQueue):
        self.storage = storage
        self.queue = queue

    def validate(self, job: Job) -> None:
        """
        Raises:
            InvalidScheduleError: If the job's cron expression or timezone is invalid.
        """
        validate_cron_expression(job.cron_expression, job.timezone)

    async def _add(self, job: Job) -> None:
        await self.queue.add_repeatable(job.id, Trigger.for_job(job), job.cron_expression, job.timezone)

    async def _remove(self, job: Job) -> bool:
        return await self.queue.remove_repeatable(job.id)

    async def on_create(self, job: Job) -> None:
        self.validate(job)
        if job.is_active:
            await self._add(job)
            logger.info("Job scheduled", extra={"job_id": job.id, "cron": job.cron_expression, "tz": job.timezone})

    async def on_update(self, previous: Job, current: Job) -> None:
        """
        Apply the queue side of a job update. `previous` is the row before the
        update and `current` the row as persisted.
        """
        self.validate(current)

        if previous.is_active and not current.is_active:
            await self._remove(current)
            logger.info("Job unscheduled", extra={"job_id": current.id, "status": current.status.value})
            return

        if not previous.is_active and current.is_active:
            # Clears anything a lost removal may have left behind.
            await self._remove(current)
            await self._add(current)
            logger.info("Job rescheduled", extra={"job_id": current.id})
            return

        if not current.is_active:
            return

        schedule_changed = (
            previous.cron_expression != current.cron_expression
            or previous.timezone != current.timezone
        )
        snapshot_changed = DispatchSnapshot.from_job(previous) != DispatchSnapshot.from_job(current)
        if schedule_changed or snapshot_changed:
            await self._remove(current)
            await self._add(current)
            logger.info("Job trigger replaced", extra={
                "job_id": current.id,
                "schedule_changed": schedule_changed,
                "snapshot_changed": snapshot_changed,
            })

    async def on_delete(self, job: Job) -> None:
        removed = await self._remove(job)
        logger.info("Job trigger removed", extra={"job_id": job.id, "existed": removed})

    async def run_now(self, job: Job) -> Trigger:
        """
        Enqueue a one-shot trigger outside the cron schedule.
        """
        trigger = Trigger.run_now(job)
        await self.queue.add_once(trigger.key, trigger)
        logger.info("Job queued for immediate run", extra={"job_id": job.id, "key": trigger.key})
        return trigger

    async def reconcile_all(self) -> int:
        """
        Rebuild the queue's repeatable triggers from the store: drop every
        repeatable trigger, then add one per ACTIVE job. The resulting queue
        state depends only on the store, so running this after a crash repairs
        any lost add or remove. Return the number of jobs synchronized.
        """
        active_jobs = await self.storage.list_active_jobs()
        cleared = await self.queue.clear_repeatable()

        synced = 0
        for job in active_jobs:
            if job.status != JobStatus.ACTIVE:
                continue
            try:
                await self._add(job)
            except InvalidScheduleError as e:
                logger.error("Skipping job with invalid schedule: %s", e, extra={"job_id": job.id})
                continue
            synced += 1

        logger.info("Synced %d active jobs to queue", synced, extra={"queue": self.queue.name, "cleared": cleared})
        return synced
