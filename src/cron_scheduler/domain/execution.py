import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator

RESPONSE_BODY_LIMIT = 5000


class ExecutionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RUNNING = "RUNNING"
    TIMEOUT = "TIMEOUT"


class ExecutionAttempt(BaseModel):
    """
    Immutable record of one dispatch of a job.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"exe_{uuid.uuid4().hex[:12]}", description="Unique attempt identifier")
    job_id: str = Field(..., description="The job this attempt belongs to")
    status: ExecutionStatus
    response_code: Optional[int] = None
    response_body: Optional[str] = Field(None, description="Response body, truncated by the executor")
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration: Optional[int] = Field(None, description="finished_at - started_at in milliseconds")

    @field_validator("started_at", "finished_at")
    def check_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=ZoneInfo("UTC"))
        return v

    @classmethod
    def finished(cls, job_id: str, status: ExecutionStatus, started_at: datetime, finished_at: datetime, **kwargs) -> "ExecutionAttempt":
        duration = int((finished_at - started_at).total_seconds() * 1000)
        return cls(job_id=job_id, status=status, started_at=started_at, finished_at=finished_at, duration=duration, **kwargs)


class ExecutionSummary(BaseModel):
    """
    An attempt annotated with the name of its job, for cross-job listings.
    """
    attempt: ExecutionAttempt
    job_name: str


class JobStatistics(BaseModel):
    job_id: str
    total_executions: int
    success_count: int
    failed_count: int
    timeout_count: int = 0
    success_rate: float = Field(..., description="Percentage of successful attempts, rounded to 2 decimals")
    average_duration: Optional[int] = Field(None, description="Mean duration in milliseconds")
    recent_executions: List[ExecutionAttempt] = Field(default_factory=list)


class JobCounts(BaseModel):
    total: int
    active: int
    paused: int


class ExecutionCounts(BaseModel):
    total: int
    successful: int
    failed: int
    timed_out: int = 0
    success_rate: float


class UserStatistics(BaseModel):
    jobs: JobCounts
    executions: ExecutionCounts
    recent_executions: List[ExecutionSummary] = Field(default_factory=list)


def success_rate(successful: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(successful / total * 100, 2)
