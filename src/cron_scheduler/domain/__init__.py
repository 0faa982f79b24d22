from .job import Job, JobCreate, JobUpdate, JobView, JobStatus, TargetType, HttpMethod, Page
from .execution import ExecutionAttempt, ExecutionStatus, JobStatistics, UserStatistics
from .trigger import Trigger, TriggerKind, RepeatableTrigger, Delivery, DispatchSnapshot

__all__ = [
    "Job", "JobCreate", "JobUpdate", "JobView", "JobStatus", "TargetType", "HttpMethod", "Page",
    "ExecutionAttempt", "ExecutionStatus", "JobStatistics", "UserStatistics",
    "Trigger", "TriggerKind", "RepeatableTrigger", "Delivery", "DispatchSnapshot",
]
