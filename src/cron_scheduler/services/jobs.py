import logging
from typing import Any, Dict, Optional, Union

from cron_scheduler.cron import describe_cron_expression, get_next_execution
from cron_scheduler.domain.job import Job, JobCreate, JobStatus, JobUpdate, JobView, Page, build_model
from cron_scheduler.errors import ForbiddenError, NotFoundError
from cron_scheduler.scheduler import SchedulerReconciler
from cron_scheduler.storages.protocol import Storage

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


async def load_owned_job(storage: Storage, owner_id: str, job_id: str) -> Job:
    """
    Raises:
        NotFoundError: If the job does not exist.
        ForbiddenError: If the job belongs to another user.
    """
    job = await storage.get_job(job_id)
    if job is None:
        raise NotFoundError("Cron job not found")
    if job.owner_id != owner_id:
        raise ForbiddenError("You do not have access to this job")
    return job


def page_bounds(page: int, limit: int):
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def to_view(job: Job) -> JobView:
    return JobView(
        job=job,
        next_execution=get_next_execution(job.cron_expression, job.timezone) if job.is_active else None,
        schedule_description=describe_cron_expression(job.cron_expression),
    )


class JobService:
    """
    Owner-scoped job operations. Every mutation is persisted first and then
    mirrored into the trigger queue, except delete which unschedules first.
    """

    def __init__(self, storage: Storage, reconciler: SchedulerReconciler):
        self.storage = storage
        self.reconciler = reconciler

    async def create_job(self, owner_id: str, data: Union[JobCreate, Dict[str, Any]]) -> JobView:
        definition = data if isinstance(data, JobCreate) else build_model(JobCreate, data)
        job = build_model(Job, {**definition.model_dump(), "owner_id": owner_id, "status": JobStatus.ACTIVE})
        self.reconciler.validate(job)

        await self.storage.create_job(job)
        try:
            await self.reconciler.on_create(job)
        except Exception:
            logger.error("Scheduling failed, rolling back job creation", extra={"job_id": job.id})
            await self.storage.delete_job(job.id)
            raise
        return to_view(job)

    async def get_job(self, owner_id: str, job_id: str) -> JobView:
        return to_view(await load_owned_job(self.storage, owner_id, job_id))

    async def list_jobs(self, owner_id: str, page: int = 1, limit: int = 20, status: Optional[JobStatus] = None) -> Page:
        page, limit, skip = page_bounds(page, limit)
        jobs = await self.storage.list_jobs(owner_id, skip=skip, take=limit, status=status)
        total = await self.storage.count_jobs(owner_id, status=status)
        return Page.build([to_view(job) for job in jobs], page=page, limit=limit, total=total)

    async def update_job(self, owner_id: str, job_id: str, data: Union[JobUpdate, Dict[str, Any]]) -> JobView:
        existing = await load_owned_job(self.storage, owner_id, job_id)
        update = data if isinstance(data, JobUpdate) else build_model(JobUpdate, data)
        updated = existing.apply(update)
        self.reconciler.validate(updated)

        await self.storage.update_job(updated)
        try:
            await self.reconciler.on_update(existing, updated)
        except Exception:
            logger.error("Scheduling failed, restoring previous job definition", extra={"job_id": existing.id})
            await self.storage.update_job(existing)
            try:
                await self.reconciler.on_update(updated, existing)
            except Exception:
                logger.exception("Could not restore previous trigger", extra={"job_id": existing.id})
            raise
        return to_view(updated)

    async def delete_job(self, owner_id: str, job_id: str) -> None:
        job = await load_owned_job(self.storage, owner_id, job_id)
        await self.reconciler.on_delete(job)
        await self.storage.delete_job(job.id)
        logger.info("Job deleted", extra={"job_id": job.id})

    async def pause_job(self, owner_id: str, job_id: str) -> JobView:
        job = await load_owned_job(self.storage, owner_id, job_id)
        if job.status == JobStatus.PAUSED:
            return to_view(job)

        paused = job.with_status(JobStatus.PAUSED)
        await self.storage.update_job(paused)
        await self.reconciler.on_update(job, paused)
        return to_view(paused)

    async def resume_job(self, owner_id: str, job_id: str) -> JobView:
        job = await load_owned_job(self.storage, owner_id, job_id)
        if job.status == JobStatus.ACTIVE:
            return to_view(job)

        resumed = job.with_status(JobStatus.ACTIVE)
        self.reconciler.validate(resumed)
        await self.storage.update_job(resumed)
        try:
            await self.reconciler.on_update(job, resumed)
        except Exception:
            logger.error("Scheduling failed, keeping job paused", extra={"job_id": job.id})
            await self.storage.update_job(job)
            raise
        return to_view(resumed)

    async def run_job_now(self, owner_id: str, job_id: str) -> JobView:
        job = await load_owned_job(self.storage, owner_id, job_id)
        await self.reconciler.run_now(job)
        return to_view(job)
