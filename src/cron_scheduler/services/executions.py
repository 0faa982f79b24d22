from typing import Optional

from cron_scheduler.domain.execution import (
    ExecutionAttempt,
    ExecutionCounts,
    ExecutionStatus,
    ExecutionSummary,
    JobCounts,
    JobStatistics,
    UserStatistics,
    success_rate,
)
from cron_scheduler.domain.job import JobStatus, Page
from cron_scheduler.errors import ForbiddenError, NotFoundError
from cron_scheduler.services.jobs import load_owned_job, page_bounds
from cron_scheduler.storages.protocol import Storage

RECENT_JOB_EXECUTIONS = 5
RECENT_USER_EXECUTIONS = 10


class ExecutionService:
    """
    Read access to execution history, scoped to the owner of the job.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    async def list_executions(self, owner_id: str, job_id: str, page: int = 1, limit: int = 20, status: Optional[ExecutionStatus] = None) -> Page:
        await load_owned_job(self.storage, owner_id, job_id)
        page, limit, skip = page_bounds(page, limit)
        attempts = await self.storage.list_executions(job_id, skip=skip, take=limit, status=status)
        total = await self.storage.count_executions(job_id=job_id, status=status)
        return Page.build(attempts, page=page, limit=limit, total=total)

    async def get_execution_by_id(self, owner_id: str, execution_id: str) -> ExecutionAttempt:
        attempt = await self.storage.get_execution(execution_id)
        if attempt is None:
            raise NotFoundError("Execution log not found")
        job = await self.storage.get_job(attempt.job_id)
        if job is None or job.owner_id != owner_id:
            raise ForbiddenError("You do not have access to this log")
        return attempt

    async def get_job_statistics(self, owner_id: str, job_id: str) -> JobStatistics:
        await load_owned_job(self.storage, owner_id, job_id)

        total = await self.storage.count_executions(job_id=job_id)
        successful = await self.storage.count_executions(job_id=job_id, status=ExecutionStatus.SUCCESS)
        failed = await self.storage.count_executions(job_id=job_id, status=ExecutionStatus.FAILED)
        timed_out = await self.storage.count_executions(job_id=job_id, status=ExecutionStatus.TIMEOUT)
        average = await self.storage.average_duration(job_id)
        recent = await self.storage.list_executions(job_id, take=RECENT_JOB_EXECUTIONS)

        return JobStatistics(
            job_id=job_id,
            total_executions=total,
            success_count=successful,
            failed_count=failed,
            timeout_count=timed_out,
            success_rate=success_rate(successful, total),
            average_duration=round(average) if average is not None else None,
            recent_executions=recent,
        )

    async def get_user_statistics(self, owner_id: str) -> UserStatistics:
        jobs = JobCounts(
            total=await self.storage.count_jobs(owner_id),
            active=await self.storage.count_jobs(owner_id, status=JobStatus.ACTIVE),
            paused=await self.storage.count_jobs(owner_id, status=JobStatus.PAUSED),
        )

        total = await self.storage.count_executions(owner_id=owner_id)
        successful = await self.storage.count_executions(owner_id=owner_id, status=ExecutionStatus.SUCCESS)
        failed = await self.storage.count_executions(owner_id=owner_id, status=ExecutionStatus.FAILED)
        timed_out = await self.storage.count_executions(owner_id=owner_id, status=ExecutionStatus.TIMEOUT)
        executions = ExecutionCounts(
            total=total,
            successful=successful,
            failed=failed,
            timed_out=timed_out,
            success_rate=success_rate(successful, total),
        )

        recent = await self.storage.list_recent_executions_for_owner(owner_id, limit=RECENT_USER_EXECUTIONS)
        return UserStatistics(
            jobs=jobs,
            executions=executions,
            recent_executions=[ExecutionSummary(attempt=attempt, job_name=name) for attempt, name in recent],
        )
