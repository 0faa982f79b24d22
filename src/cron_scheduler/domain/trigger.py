import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .job import HttpMethod, Job, TargetType


class TriggerKind(str, Enum):
    DISPATCH = "dispatch"
    RETENTION = "retention"


class DispatchSnapshot(BaseModel):
    """
    The dispatch parameters of a job at the time its trigger was enqueued.
    """
    target_type: TargetType
    target_url: Optional[str] = None
    command: Optional[str] = None
    http_method: HttpMethod = HttpMethod.GET
    headers: Optional[Dict[str, str]] = None
    payload: Optional[Any] = None
    timeout: int
    max_retries: int

    @classmethod
    def from_job(cls, job: Job) -> "DispatchSnapshot":
        return cls(
            target_type=job.target_type,
            target_url=job.target_url,
            command=job.command,
            http_method=job.http_method,
            headers=job.headers,
            payload=job.payload,
            timeout=job.timeout,
            max_retries=job.max_retries,
        )


class Trigger(BaseModel):
    """
    A unit of work inside the trigger queue.
    """
    key: str = Field(..., description="Repeatable triggers use the job id; one-shot triggers a synthetic key")
    kind: TriggerKind = TriggerKind.DISPATCH
    job_id: Optional[str] = None
    snapshot: Optional[DispatchSnapshot] = None
    days_to_keep: Optional[int] = Field(None, description="Retention window for RETENTION triggers")

    @classmethod
    def for_job(cls, job: Job, key: Optional[str] = None) -> "Trigger":
        return cls(key=key or job.id, job_id=job.id, snapshot=DispatchSnapshot.from_job(job))

    @classmethod
    def run_now(cls, job: Job) -> "Trigger":
        return cls.for_job(job, key=f"immediate:{job.id}:{uuid.uuid4().hex[:8]}")


class RepeatableTrigger(BaseModel):
    """
    A trigger registered to fire on a cron rule.
    """
    trigger: Trigger
    cron_expression: str
    timezone: str = "UTC"

    @property
    def key(self) -> str:
        return self.trigger.key


class Delivery(BaseModel):
    """
    One delivery of a trigger to a consumer. `attempts_made` counts the earlier
    failed deliveries of the same firing and is authoritative for retries.
    """
    trigger: Trigger
    attempts_made: int = 0
