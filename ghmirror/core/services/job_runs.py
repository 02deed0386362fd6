"""
Service for recording job executions.

Tracks each run from request through lock admission to completion, so
operators can see waiting, running and finished jobs.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import select, update

from ghmirror.core.jobs.types import UNFINISHED_STATUSES, JobStatus
from ghmirror.core.models.job_runs import JobRun
from ghmirror.core.storage.postgres import Database, get_db
from ghmirror.core.utils.time import utcnow_naive

logger = logging.getLogger(__name__)


class JobRunService:
    """
    Service for logging job runs.

    Records each execution with trigger, status, timing, and optional
    details/errors.
    """

    def __init__(self, db: Database | None = None) -> None:
        """Initialize with a database instance, or None to use get_db() lazily."""
        self._db = db

    async def _get_db(self) -> Database:
        """Get the database instance, resolving lazily if needed."""
        if self._db is None:
            self._db = await get_db()
        return self._db

    async def create(
        self,
        job_type: str,
        trigger: str,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> uuid.UUID:
        """
        Record a requested run.

        Creates a row with status="waiting"; the run has not been
        admitted by the job lock yet.

        Args:
            job_type: sync, backup, restore or transfer.
            trigger: automatic or manual.
            actor_id: Admin who requested a manual run.
            details: Optional initial metadata dict.

        Returns:
            The UUID of the new run record.
        """
        run = JobRun(
            job_type=job_type,
            trigger=trigger,
            status=JobStatus.WAITING.value,
            requested_at=utcnow_naive(),
            actor_id=actor_id,
            details=details if details is not None else {},
        )
        db = await self._get_db()
        async with db.session() as session:
            session.add(run)
            await session.flush()
            run_id = run.id

        logger.info(f"Job run requested: {job_type} ({run_id}, {trigger})")
        return run_id

    async def mark_running(self, run_id: uuid.UUID) -> None:
        """Move a run to running once the lock admits it."""
        db = await self._get_db()
        async with db.session() as session:
            await session.execute(
                update(JobRun)
                .where(JobRun.id == run_id)
                .values(status=JobStatus.RUNNING.value, started_at=utcnow_naive())
            )
        logger.info(f"Job run started: {run_id}")

    async def finish(
        self,
        run_id: uuid.UUID,
        status: str,
        details: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        """
        Record the completion of a job run.

        Args:
            run_id: The UUID returned by create().
            status: Final status (success or failed).
            details: Optional metadata dict (replaces existing details if provided).
            error_message: Optional short error description.
        """
        db = await self._get_db()
        async with db.session() as session:
            stmt = select(JobRun).where(JobRun.id == run_id)
            result = await session.execute(stmt)
            run = result.scalar_one_or_none()

            if run is None:
                logger.warning(f"Job run not found: {run_id}")
                return

            run.status = status
            run.completed_at = utcnow_naive()
            if details is not None:
                run.details = details
            if error_message is not None:
                run.error_message = error_message

        logger.info(f"Job run finished: {run.job_type} ({run_id}) -> {status}")

    async def get(self, run_id: uuid.UUID) -> JobRun | None:
        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(select(JobRun).where(JobRun.id == run_id))
            return result.scalar_one_or_none()

    async def get_latest(self, job_type: str) -> JobRun | None:
        """
        Get the most recently requested run for a job type.

        Returns:
            The most recent JobRun, or None if no runs exist.
        """
        db = await self._get_db()
        async with db.session() as session:
            stmt = (
                select(JobRun)
                .where(JobRun.job_type == job_type)
                .order_by(JobRun.requested_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 20) -> list[JobRun]:
        """Most recent runs of every type, newest first."""
        db = await self._get_db()
        async with db.session() as session:
            stmt = select(JobRun).order_by(JobRun.requested_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def fail_unfinished(self, reason: str) -> int:
        """
        Fail runs left waiting or running by a previous process.

        Nothing can still be executing them, since scheduling state
        lives only in the process that created them.

        Returns:
            Number of runs marked failed.
        """
        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(
                update(JobRun)
                .where(JobRun.status.in_([s.value for s in UNFINISHED_STATUSES]))
                .values(
                    status=JobStatus.FAILED.value,
                    completed_at=utcnow_naive(),
                    error_message=reason,
                )
            )
            count = result.rowcount or 0

        if count:
            logger.warning(f"Marked {count} unfinished job runs as failed: {reason}")
        return count
