"""
Sync configuration service.

Owns the organization-level ``sync_config`` row and the per-job
``job_schedules`` rows. Schedule updates are validated before anything
is written.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from ghmirror.core.config.loader import get_github_config
from ghmirror.core.jobs.exceptions import ScheduleValidationError
from ghmirror.core.jobs.schedule import validate_schedule
from ghmirror.core.jobs.types import (
    DEFAULT_SCHEDULE_TIMES,
    SCHEDULABLE_JOB_TYPES,
    JobType,
)
from ghmirror.core.models.sync import JobSchedule, SyncConfig
from ghmirror.core.storage.postgres import Database, get_db
from ghmirror.core.utils.time import utcnow_naive

logger = logging.getLogger(__name__)

CONFIG_ID = "default"
DEFAULT_TIMEZONE = "UTC"

_UNSET = object()


@dataclass
class ScheduleConfig:
    """Effective schedule of one job type, defaults applied."""

    job_type: JobType
    enabled: bool
    hour: int
    minute: int
    timezone: str
    last_started_at: datetime | None = None
    last_completed_at: datetime | None = None
    last_status: str | None = None
    last_error: str | None = None


class SyncConfigService:
    """
    Service for sync configuration and job schedules.

    Rows are created lazily: a job type without a ``job_schedules`` row
    runs on its default time in the organization's timezone.
    """

    def __init__(self, db: Database | None = None) -> None:
        self._db = db

    async def _get_db(self) -> Database:
        if self._db is None:
            self._db = await get_db()
        return self._db

    async def get_config(self) -> SyncConfig:
        """
        Get the organization-level config row, creating it on first use.

        The initial org name comes from ``github.org`` in the YAML config.
        """
        db = await self._get_db()
        async with db.session() as session:
            await session.execute(
                pg_insert(SyncConfig)
                .values(
                    id=CONFIG_ID,
                    org_name=get_github_config().get("org") or None,
                    timezone=DEFAULT_TIMEZONE,
                    updated_at=utcnow_naive(),
                )
                .on_conflict_do_nothing(index_elements=["id"])
            )
            result = await session.execute(
                select(SyncConfig).where(SyncConfig.id == CONFIG_ID)
            )
            return result.scalar_one()

    async def get_schedule(self, job_type: JobType | str) -> ScheduleConfig:
        """
        Get the effective schedule of a job type.

        Raises:
            ValueError: If ``job_type`` is not a known job type.
        """
        job_type = JobType(job_type)
        config = await self.get_config()

        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(
                select(JobSchedule).where(JobSchedule.job_type == job_type.value)
            )
            row = result.scalar_one_or_none()

        hour, minute = DEFAULT_SCHEDULE_TIMES.get(job_type, (0, 0))
        if row is None:
            return ScheduleConfig(
                job_type=job_type,
                enabled=job_type in SCHEDULABLE_JOB_TYPES,
                hour=hour,
                minute=minute,
                timezone=config.timezone or DEFAULT_TIMEZONE,
            )

        return ScheduleConfig(
            job_type=job_type,
            enabled=row.enabled and job_type in SCHEDULABLE_JOB_TYPES,
            hour=row.hour_local,
            minute=row.minute_local,
            timezone=row.timezone,
            last_started_at=row.last_started_at,
            last_completed_at=row.last_completed_at,
            last_status=row.last_status,
            last_error=row.last_error,
        )

    async def update_schedule(
        self,
        job_type: JobType | str,
        enabled: bool | None = None,
        hour: int | None = None,
        minute: int | None = None,
        timezone: str | None = None,
    ) -> ScheduleConfig:
        """
        Update a job's recurring schedule.

        Omitted fields keep their current values. Validation happens
        before any write, so a rejected update changes nothing.

        Raises:
            ScheduleValidationError: On an unknown or unschedulable job
                type, an out-of-range hour/minute, or an invalid timezone.
        """
        try:
            job_type = JobType(job_type)
        except ValueError as e:
            raise ScheduleValidationError(f"Unknown job type: {job_type}") from e
        if job_type not in SCHEDULABLE_JOB_TYPES:
            raise ScheduleValidationError(f"{job_type} jobs cannot be scheduled.")

        current = await self.get_schedule(job_type)
        new_hour = current.hour if hour is None else hour
        new_minute = current.minute if minute is None else minute
        new_timezone = validate_schedule(
            new_hour, new_minute, current.timezone if timezone is None else timezone
        )
        new_enabled = current.enabled if enabled is None else bool(enabled)

        values = {
            "enabled": new_enabled,
            "hour_local": new_hour,
            "minute_local": new_minute,
            "timezone": new_timezone,
            "updated_at": utcnow_naive(),
        }
        db = await self._get_db()
        async with db.session() as session:
            await session.execute(
                pg_insert(JobSchedule)
                .values(job_type=job_type.value, **values)
                .on_conflict_do_update(index_elements=["job_type"], set_=values)
            )

        logger.info(
            f"Schedule for {job_type} updated: enabled={new_enabled} "
            f"{new_hour:02d}:{new_minute:02d} {new_timezone}"
        )
        return await self.get_schedule(job_type)

    async def record_job_status(
        self,
        job_type: JobType | str,
        status: str,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        error: str | None | object = _UNSET,
    ) -> None:
        """
        Record the latest run status on the job's schedule row.

        Only the fields passed are written; ``error=None`` clears the
        stored error.
        """
        job_type = JobType(job_type)
        values: dict = {"last_status": status, "updated_at": utcnow_naive()}
        if started_at is not None:
            values["last_started_at"] = started_at
        if completed_at is not None:
            values["last_completed_at"] = completed_at
        if error is not _UNSET:
            values["last_error"] = error

        config = await self.get_config()
        hour, minute = DEFAULT_SCHEDULE_TIMES.get(job_type, (0, 0))
        db = await self._get_db()
        async with db.session() as session:
            await session.execute(
                pg_insert(JobSchedule)
                .values(
                    job_type=job_type.value,
                    enabled=job_type in SCHEDULABLE_JOB_TYPES,
                    hour_local=hour,
                    minute_local=minute,
                    timezone=config.timezone or DEFAULT_TIMEZONE,
                    **values,
                )
                .on_conflict_do_update(index_elements=["job_type"], set_=values)
            )

    async def update_sync_markers(
        self,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        successful_at: datetime | None = None,
    ) -> None:
        """Advance the org-level sync timestamps that were passed."""
        values = {}
        if started_at is not None:
            values["last_sync_started_at"] = started_at
        if completed_at is not None:
            values["last_sync_completed_at"] = completed_at
        if successful_at is not None:
            values["last_successful_sync_at"] = successful_at
        if not values:
            return

        await self.get_config()
        db = await self._get_db()
        async with db.session() as session:
            await session.execute(
                update(SyncConfig).where(SyncConfig.id == CONFIG_ID).values(**values)
            )

    async def update_org(
        self, org_name: str | None = None, timezone: str | None = None
    ) -> SyncConfig:
        """
        Change the organization name or the default timezone.

        Raises:
            ScheduleValidationError: On an empty org name or invalid timezone.
        """
        values = {}
        if org_name is not None:
            if not org_name.strip():
                raise ScheduleValidationError("Organization name cannot be empty.")
            values["org_name"] = org_name.strip()
        if timezone is not None:
            values["timezone"] = validate_schedule(0, 0, timezone)

        await self.get_config()
        if values:
            db = await self._get_db()
            async with db.session() as session:
                await session.execute(
                    update(SyncConfig).where(SyncConfig.id == CONFIG_ID).values(**values)
                )
        return await self.get_config()
