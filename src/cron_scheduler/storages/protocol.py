from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from cron_scheduler.domain.execution import ExecutionAttempt, ExecutionStatus
from cron_scheduler.domain.job import Job, JobStatus


class Storage(Protocol):
    async def create_job(self, job: Job) -> str:
        """Create a new job and return its ID."""
        ...

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Retrieve a job by its ID."""
        ...

    async def update_job(self, job: Job) -> bool:
        """Update an existing job. Return True if successful, False otherwise."""
        ...

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job and its execution history. Return True if a row was removed."""
        ...

    async def list_jobs(self, owner_id: str, skip: int = 0, take: int = 20, status: Optional[JobStatus] = None) -> List[Job]:
        """List a user's jobs, newest first."""
        ...

    async def count_jobs(self, owner_id: str, status: Optional[JobStatus] = None) -> int:
        """Count a user's jobs, optionally filtered by status."""
        ...

    async def list_active_jobs(self) -> List[Job]:
        """List every ACTIVE job regardless of owner."""
        ...

    async def create_execution(self, attempt: ExecutionAttempt) -> str:
        """Append an execution attempt and return its ID."""
        ...

    async def get_execution(self, execution_id: str) -> Optional[ExecutionAttempt]:
        """Retrieve an execution attempt by its ID."""
        ...

    async def list_executions(self, job_id: str, skip: int = 0, take: int = 20, status: Optional[ExecutionStatus] = None) -> List[ExecutionAttempt]:
        """List a job's attempts ordered by start time descending."""
        ...

    async def count_executions(self, job_id: Optional[str] = None, owner_id: Optional[str] = None, status: Optional[ExecutionStatus] = None) -> int:
        """Count attempts for a job or for all jobs of an owner."""
        ...

    async def average_duration(self, job_id: str) -> Optional[float]:
        """Mean duration in milliseconds of a job's finished attempts."""
        ...

    async def list_recent_executions_for_owner(self, owner_id: str, limit: int = 10) -> List[Tuple[ExecutionAttempt, str]]:
        """Most recent attempts across an owner's jobs, paired with the job name."""
        ...

    async def delete_executions_before(self, cutoff: datetime) -> int:
        """Delete attempts started before `cutoff`. Return the number removed."""
        ...
