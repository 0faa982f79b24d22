"""
Cron Job Scheduling System

This package runs user-defined jobs on cron schedules and records the outcome
of every dispatch.

Core Concepts:

Job:
    A Job is a user-owned definition: a cron expression evaluated in an IANA
    timezone, plus a target (an HTTP request or a shell command). A Job is
    either ACTIVE or PAUSED.

Trigger:
    A Trigger is the queue-side representation of a Job. Every ACTIVE Job has
    exactly one repeatable trigger keyed by the job id; PAUSED and deleted
    jobs have none. One-shot triggers run a job immediately.

ExecutionAttempt:
    An ExecutionAttempt is the immutable record of the terminal outcome of a
    delivery: SUCCESS, FAILED or TIMEOUT, with the response and timing.

Relationships:
    - A Job owns many ExecutionAttempts, which are deleted with it.
    - The job store is the source of truth; the trigger queue is rebuilt from
      it on startup.
"""

from .errors import (
    ForbiddenError,
    InvalidScheduleError,
    NotFoundError,
    SchedulerError,
    TargetConfigurationError,
    TriggerQueueError,
)
from .runtime import SchedulerRuntime

__all__ = [
    "SchedulerRuntime",
    "SchedulerError",
    "InvalidScheduleError",
    "TargetConfigurationError",
    "NotFoundError",
    "ForbiddenError",
    "TriggerQueueError",
]
