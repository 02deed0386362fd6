"""Job types, triggers and run statuses."""

from enum import StrEnum


class JobType(StrEnum):
    """Unit of mutual exclusion in the job lock."""
    SYNC = "sync"
    BACKUP = "backup"
    RESTORE = "restore"
    TRANSFER = "transfer"


class JobTrigger(StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class JobStatus(StrEnum):
    WAITING = "waiting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


UNFINISHED_STATUSES = (JobStatus.WAITING, JobStatus.RUNNING)

# Restore only ever runs on demand
SCHEDULABLE_JOB_TYPES = (JobType.SYNC, JobType.BACKUP, JobType.TRANSFER)

# (hour, minute) in the schedule's local timezone
DEFAULT_SCHEDULE_TIMES: dict[JobType, tuple[int, int]] = {
    JobType.SYNC: (1, 0),
    JobType.BACKUP: (2, 0),
    JobType.TRANSFER: (4, 0),
}
