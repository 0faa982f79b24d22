from typing import Optional, Protocol

from pydantic import BaseModel, Field

from cron_scheduler.domain.job import Job, TargetType


class DispatchResult(BaseModel):
    """
    Outcome of a dispatch that reached its target. Transport failures are
    raised instead of returned.
    """
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = Field(None, description="Set when the dispatch completed but is considered failed")


class JobExecutor(Protocol):
    """
    Protocol class for job executors.
    """

    async def async_execute(self, job: Job) -> DispatchResult:
        """
        Perform the job's action once.

        Args:
            job (Job): The job to be executed.

        Raises:
            DispatchTimeoutError: The job's timeout elapsed.
            DispatchTransportError: The target could not be reached.
        """
        ...

    @staticmethod
    def supported_target() -> TargetType:
        """
        Return the target type this executor handles.
        """
        ...
