"""
Recurring job scheduler.

One instance per process owns every job timer. Per job type it keeps at
most one armed ``call_later`` handle: any recompute cancels the old
handle before arming a new one. Each run goes waiting -> (job lock) ->
running -> success/failed and re-arms the timer when it ends.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from ghmirror.core.jobs.exceptions import JobWaitTimeoutError, UnknownJobError
from ghmirror.core.jobs.lock import JobLock
from ghmirror.core.jobs.schedule import compute_next_run
from ghmirror.core.jobs.types import JobStatus, JobTrigger, JobType
from ghmirror.core.utils.time import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT_SECONDS = 15 * 60


@dataclass
class JobContext:
    """What a job handler gets to know about its run."""

    run_id: uuid.UUID
    job_type: JobType
    trigger: JobTrigger
    actor_id: str | None = None
    params: dict[str, Any] = field(default_factory=dict)


JobHandler = Callable[[JobContext], Awaitable[dict[str, Any] | None]]


@dataclass
class JobDefinition:
    job_type: JobType
    handler: JobHandler
    schedulable: bool = True


@dataclass
class JobRunResult:
    run_id: uuid.UUID
    job_type: JobType
    status: JobStatus
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass
class SchedulerState:
    """In-memory state of one job type. Never persisted."""

    timer: asyncio.TimerHandle | None = None
    next_run_at: datetime | None = None
    current_run: asyncio.Future | None = None
    is_running: bool = False
    is_waiting: bool = False
    wait_started_at: datetime | None = None


class ScheduleSource(Protocol):
    async def get_schedule(self, job_type: JobType | str) -> Any: ...

    async def record_job_status(self, job_type: JobType | str, status: str, **kwargs: Any) -> None: ...


class RunRecorder(Protocol):
    async def create(
        self, job_type: str, trigger: str, actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> uuid.UUID: ...

    async def mark_running(self, run_id: uuid.UUID) -> None: ...

    async def finish(
        self, run_id: uuid.UUID, status: str, details: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None: ...


class JobScheduler:
    """
    Owns job timers and funnels every run through the job lock.

    Usage:
        scheduler = JobScheduler(JobLock(), JobRunService(), SyncConfigService())
        scheduler.register(JobDefinition(JobType.SYNC, sync_service.run_job))
        await scheduler.start()
        ...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        lock: JobLock,
        runs: RunRecorder,
        schedules: ScheduleSource,
        wait_timeout_seconds: float | None = DEFAULT_WAIT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lock = lock
        self.runs = runs
        self.schedules = schedules
        self.wait_timeout_seconds = wait_timeout_seconds
        self._clock = clock
        self._definitions: dict[JobType, JobDefinition] = {}
        self._states: dict[JobType, SchedulerState] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def register(self, definition: JobDefinition) -> None:
        self._definitions[definition.job_type] = definition
        self._states.setdefault(definition.job_type, SchedulerState())

    def _definition(self, job_type: JobType | str) -> JobDefinition:
        try:
            return self._definitions[JobType(job_type)]
        except (KeyError, ValueError) as e:
            raise UnknownJobError(f"No job registered for '{job_type}'") from e

    def state(self, job_type: JobType | str) -> SchedulerState:
        """Live state of a registered job type."""
        return self._states[self._definition(job_type).job_type]

    @property
    def job_types(self) -> list[JobType]:
        return list(self._definitions)

    # Timers

    def apply_schedule(
        self, job_type: JobType | str, enabled: bool, hour: int, minute: int, timezone: str
    ) -> datetime | None:
        """
        Cancel the current timer and arm a new one for the given schedule.

        Disabled (or unschedulable) jobs end up with no timer and a null
        next run.

        Returns:
            The next run instant (aware UTC), or None.
        """
        definition = self._definition(job_type)
        state = self._states[definition.job_type]
        self._cancel_timer(state)

        if self._closed or not enabled or not definition.schedulable:
            state.next_run_at = None
            return None

        now = self._clock()
        next_run = compute_next_run(hour, minute, timezone, now)
        delay = max(0.0, (next_run - now).total_seconds())

        loop = asyncio.get_running_loop()
        state.timer = loop.call_later(delay, self._on_timer, definition.job_type)
        state.next_run_at = next_run
        logger.info(
            f"Scheduled {definition.job_type} at {next_run.isoformat()} "
            f"(in {delay:.0f}s)"
        )
        return next_run

    async def refresh(self, job_type: JobType | str) -> datetime | None:
        """Re-read the stored schedule for a job type and re-arm its timer."""
        definition = self._definition(job_type)
        if not definition.schedulable:
            return None
        schedule = await self.schedules.get_schedule(definition.job_type)
        return self.apply_schedule(
            definition.job_type,
            schedule.enabled,
            schedule.hour,
            schedule.minute,
            schedule.timezone,
        )

    def _cancel_timer(self, state: SchedulerState) -> None:
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None

    def _on_timer(self, job_type: JobType) -> None:
        state = self._states[job_type]
        state.timer = None
        state.next_run_at = None
        self._spawn(self._run_automatic(job_type))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_automatic(self, job_type: JobType) -> None:
        try:
            await self.run(job_type, JobTrigger.AUTOMATIC)
        except JobWaitTimeoutError:
            pass  # already logged and recorded
        except Exception:
            logger.exception(f"Automatic {job_type} run failed")

    # Runs

    async def run(
        self,
        job_type: JobType | str,
        trigger: JobTrigger | str = JobTrigger.MANUAL,
        actor_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> JobRunResult:
        """
        Run a job now through the job lock.

        A same-type run already in flight is awaited first. The run is
        recorded as waiting, then running once admitted, then success or
        failed; the job's timer is re-armed afterwards either way.

        Raises:
            UnknownJobError: If no handler is registered.
            JobWaitTimeoutError: If the lock did not admit the run in time.
            Exception: Whatever the handler raised.
        """
        definition = self._definition(job_type)
        state = self._states[definition.job_type]

        previous = state.current_run
        done: asyncio.Future = asyncio.get_running_loop().create_future()
        state.current_run = done
        try:
            if previous is not None and not previous.done():
                await asyncio.shield(previous)
            return await self._execute(
                definition, JobTrigger(trigger), actor_id, params or {}
            )
        finally:
            if not done.done():
                done.set_result(None)
            if state.current_run is done:
                state.current_run = None

    async def _execute(
        self,
        definition: JobDefinition,
        trigger: JobTrigger,
        actor_id: str | None,
        params: dict[str, Any],
    ) -> JobRunResult:
        job_type = definition.job_type
        state = self._states[job_type]

        run_id = await self.runs.create(job_type.value, trigger.value, actor_id=actor_id)
        context = JobContext(run_id, job_type, trigger, actor_id, params)
        state.is_waiting = True
        state.wait_started_at = self._clock()

        async def admitted() -> None:
            state.is_waiting = False
            state.wait_started_at = None
            state.is_running = True
            await self.runs.mark_running(run_id)
            await self.schedules.record_job_status(
                job_type,
                JobStatus.RUNNING.value,
                started_at=to_naive_utc(self._clock()),
            )

        async def handler() -> dict[str, Any] | None:
            return await definition.handler(context)

        try:
            details = await self.lock.run(
                job_type.value,
                handler,
                wait_timeout=self.wait_timeout_seconds,
                on_admitted=admitted,
            )
        except JobWaitTimeoutError as e:
            logger.warning(f"{job_type} run {run_id} timed out waiting: {e}")
            await self._record_failure(run_id, job_type, str(e))
            raise
        except Exception as e:
            logger.error(f"{job_type} run {run_id} failed: {e}")
            await self._record_failure(run_id, job_type, str(e))
            raise
        else:
            details = details or {}
            await self.runs.finish(run_id, JobStatus.SUCCESS.value, details=details)
            await self.schedules.record_job_status(
                job_type,
                JobStatus.SUCCESS.value,
                completed_at=to_naive_utc(self._clock()),
                error=None,
            )
            return JobRunResult(run_id, job_type, JobStatus.SUCCESS, details)
        finally:
            state.is_waiting = False
            state.wait_started_at = None
            state.is_running = False
            await self._refresh_after_run(job_type)

    async def _record_failure(self, run_id: uuid.UUID, job_type: JobType, message: str) -> None:
        await self.runs.finish(run_id, JobStatus.FAILED.value, error_message=message)
        await self.schedules.record_job_status(
            job_type,
            JobStatus.FAILED.value,
            completed_at=to_naive_utc(self._clock()),
            error=message,
        )

    async def _refresh_after_run(self, job_type: JobType) -> None:
        if self._closed:
            return
        try:
            await self.refresh(job_type)
        except Exception:
            logger.exception(f"Failed to reschedule {job_type}")

    # Lifecycle

    async def start(self) -> None:
        """Arm timers for every schedulable job."""
        self._closed = False
        for job_type, definition in self._definitions.items():
            if definition.schedulable:
                await self.refresh(job_type)

    async def shutdown(self) -> None:
        """Cancel all timers and wait for in-flight runs to finish."""
        self._closed = True
        for state in self._states.values():
            self._cancel_timer(state)
            state.next_run_at = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Scheduler stopped")
