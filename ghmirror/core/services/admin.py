"""
Administrative surface.

Plain async calls for whatever route or CLI layer sits on top: manual
runs, schedule edits, runtime info and realignment.
"""

import logging
from dataclasses import asdict
from typing import Any

from ghmirror.core.jobs.scheduler import JobRunResult, JobScheduler
from ghmirror.core.jobs.types import JobTrigger, JobType
from ghmirror.core.services.status_automation import StatusAutomationService
from ghmirror.core.services.sync_config import ScheduleConfig, SyncConfigService
from ghmirror.core.services.transfer import TransferService
from ghmirror.core.utils.time import isoformat_utc

logger = logging.getLogger(__name__)


class AdminService:
    """
    Entry points for administrators.

    Usage:
        admin = AdminService(scheduler, sync_config, transfer, automation)
        await admin.trigger_run("backup", actor_id="octocat")
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        sync_config: SyncConfigService,
        transfer: TransferService,
        automation: StatusAutomationService | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.sync_config = sync_config
        self.transfer = transfer
        self.automation = automation or StatusAutomationService()

    async def trigger_run(
        self,
        job_type: JobType | str,
        actor_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> JobRunResult:
        """
        Run a job now, through the job lock.

        Raises:
            UnknownJobError: If the job type is not registered.
            JobWaitTimeoutError: If another job held the lock too long.
        """
        logger.info(f"Manual {job_type} run requested by {actor_id or 'unknown'}")
        return await self.scheduler.run(job_type, JobTrigger.MANUAL, actor_id, params)

    async def update_schedule(
        self,
        job_type: JobType | str,
        enabled: bool | None = None,
        hour: int | None = None,
        minute: int | None = None,
        timezone: str | None = None,
    ) -> dict[str, Any]:
        """
        Validate and store a schedule, then re-arm the job's timer.

        Raises:
            ScheduleValidationError: Nothing was changed.
        """
        schedule = await self.sync_config.update_schedule(
            job_type, enabled=enabled, hour=hour, minute=minute, timezone=timezone
        )
        self.scheduler.apply_schedule(
            schedule.job_type,
            schedule.enabled,
            schedule.hour,
            schedule.minute,
            schedule.timezone,
        )
        return self._job_info(schedule)

    async def update_sync_settings(
        self, org_name: str | None = None, timezone: str | None = None
    ) -> dict[str, Any]:
        """
        Change the organization or the default timezone.

        Jobs without their own schedule row follow the default timezone,
        so every timer is re-armed from the stored schedules.

        Raises:
            ScheduleValidationError: Nothing was changed.
        """
        config = await self.sync_config.update_org(org_name=org_name, timezone=timezone)
        next_runs = {}
        for job_type in self.scheduler.job_types:
            next_runs[job_type.value] = isoformat_utc(await self.scheduler.refresh(job_type))
        logger.info(f"Sync settings updated: org={config.org_name} timezone={config.timezone}")
        return {
            "orgName": config.org_name,
            "timezone": config.timezone,
            "nextRunAt": next_runs,
        }

    async def get_runtime_info(self) -> dict[str, Any]:
        """Per-job schedule, status and live flags, plus the lock holder."""
        jobs = {}
        for job_type in self.scheduler.job_types:
            schedule = await self.sync_config.get_schedule(job_type)
            jobs[job_type.value] = self._job_info(schedule)
        return {
            "currentJob": self.scheduler.lock.current_job_type,
            "jobs": jobs,
        }

    def _job_info(self, schedule: ScheduleConfig) -> dict[str, Any]:
        state = self.scheduler.state(schedule.job_type)
        return {
            "enabled": schedule.enabled,
            "hour": schedule.hour,
            "minute": schedule.minute,
            "timezone": schedule.timezone,
            "nextRunAt": isoformat_utc(state.next_run_at),
            "lastStartedAt": isoformat_utc(schedule.last_started_at),
            "lastCompletedAt": isoformat_utc(schedule.last_completed_at),
            "lastStatus": schedule.last_status,
            "lastError": schedule.last_error,
            "isRunning": state.is_running,
            "isWaiting": state.is_waiting,
            "waitStartedAt": isoformat_utc(state.wait_started_at),
        }

    async def run_realignment(
        self,
        dry_run: bool = True,
        chunk_size: int | None = None,
        limit: int | None = None,
        ids: list[str] | None = None,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Realign mismatched issues.

        A dry run only reads, so it skips the job lock. A live run goes
        through the lock as a manual transfer job.
        """
        chunk_size = chunk_size or self.transfer.default_chunk_size
        limit = limit or self.transfer.default_limit
        if dry_run:
            summary = await self.transfer.realigner.run(
                dry_run=True, chunk_size=chunk_size, limit=limit, ids=ids
            )
            return asdict(summary)

        result = await self.trigger_run(
            JobType.TRANSFER,
            actor_id=actor_id,
            params={"dry_run": False, "chunk_size": chunk_size, "limit": limit, "ids": ids},
        )
        return result.details

    async def run_status_automation(self, force: bool = True) -> dict[str, Any]:
        """Apply the status automation now; the advisory lock serializes it."""
        result = await self.automation.ensure(trigger="manual", force=force)
        return asdict(result)
