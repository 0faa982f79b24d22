import logging

from cron_scheduler.domain.job import Job, TargetType
from cron_scheduler.executors.protocol import DispatchResult, JobExecutor

logger = logging.getLogger(__name__)

SCRIPT_DISABLED_BODY = "Script execution is disabled for security reasons"
SCRIPT_DISABLED_ERROR = "Script execution not implemented"


class ScriptJobExecutor(JobExecutor):
    """
    Placeholder for SCRIPT jobs. Commands are never run; every dispatch
    completes as a failure with a fixed explanation. Running commands
    requires process isolation and resource limits first.
    """

    @staticmethod
    def supported_target() -> TargetType:
        return TargetType.SCRIPT

    async def async_execute(self, job: Job) -> DispatchResult:
        logger.warning("Script execution is disabled, not running command for job %s", job.id,
                       extra={"job_id": job.id, "command": job.command})
        return DispatchResult(
            success=False,
            status_code=None,
            response_body=SCRIPT_DISABLED_BODY,
            error_message=SCRIPT_DISABLED_ERROR,
        )
