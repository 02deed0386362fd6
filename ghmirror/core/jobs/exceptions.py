"""
Job exceptions.

Raised by the job lock, the scheduler and schedule validation.
"""


class JobError(Exception):
    """Base exception for job orchestration errors."""

    pass


class JobWaitTimeoutError(JobError):
    """A waiting job was not admitted by the lock within its window."""

    def __init__(self, job_type: str, timeout_seconds: float):
        minutes = timeout_seconds / 60
        super().__init__(
            f"{job_type} job timed out after waiting {minutes:g} minutes "
            "for another job to finish"
        )
        self.job_type = job_type
        self.timeout_seconds = timeout_seconds


class UnknownJobError(JobError):
    """No handler is registered for the requested job type."""

    pass


class ScheduleValidationError(ValueError):
    """Schedule update rejected before any state changed."""

    pass
