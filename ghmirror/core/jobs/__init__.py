"""Job orchestration: lock, schedules and the recurring scheduler."""

from ghmirror.core.jobs.exceptions import (
    JobError,
    JobWaitTimeoutError,
    ScheduleValidationError,
    UnknownJobError,
)
from ghmirror.core.jobs.lock import JobLock
from ghmirror.core.jobs.schedule import compute_next_run, validate_schedule
from ghmirror.core.jobs.scheduler import (
    JobContext,
    JobDefinition,
    JobRunResult,
    JobScheduler,
)
from ghmirror.core.jobs.types import JobStatus, JobTrigger, JobType

__all__ = [
    "JobError",
    "JobWaitTimeoutError",
    "ScheduleValidationError",
    "UnknownJobError",
    "JobLock",
    "compute_next_run",
    "validate_schedule",
    "JobContext",
    "JobDefinition",
    "JobRunResult",
    "JobScheduler",
    "JobStatus",
    "JobTrigger",
    "JobType",
]
