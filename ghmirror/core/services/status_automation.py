"""
Issue status automation.

Derives ``activity`` status history from pull request timelines for
issues that have no planning-board (``todo_project``) history:

- in_progress at the earliest creation time of any linked pull request
- done at the issue's closed time, when a linked pull request was
  merged at exactly that instant

Both passes only insert missing rows. They run in one transaction that
holds a Postgres advisory lock, so concurrent triggers serialize even
across processes. The last processed ``last_successful_sync_at`` is kept
in ``activity_cache_state`` and an unchanged value skips the work.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ghmirror.core.models.activity import ActivityCacheState
from ghmirror.core.models.sync import SyncConfig
from ghmirror.core.storage.postgres import Database, get_db
from ghmirror.core.utils.time import isoformat_utc, utcnow_naive

logger = logging.getLogger(__name__)

AUTOMATION_CACHE_KEY = "issue-status-automation"
AUTOMATION_LOCK_ID = 4422100313370042

INSERT_IN_PROGRESS_SQL = text(
    """
    INSERT INTO activity_issue_status_history (issue_id, status, occurred_at, source, inserted_at)
    SELECT candidate.issue_id, 'in_progress', candidate.occurred_at, 'activity', NOW()
    FROM (
        SELECT pri.issue_id, MIN(pr.github_created_at) AS occurred_at
        FROM pull_request_issues pri
        JOIN pull_requests pr ON pr.id = pri.pull_request_id
        JOIN issues i ON i.id = pri.issue_id
        WHERE pr.github_created_at IS NOT NULL
          AND NOT EXISTS (
              SELECT 1 FROM activity_issue_status_history h
              WHERE h.issue_id = pri.issue_id AND h.source = 'todo_project'
          )
        GROUP BY pri.issue_id
    ) AS candidate
    LEFT JOIN LATERAL (
        SELECT h.status
        FROM activity_issue_status_history h
        WHERE h.issue_id = candidate.issue_id
          AND h.source = 'activity'
          AND h.occurred_at <= candidate.occurred_at
        ORDER BY h.occurred_at DESC
        LIMIT 1
    ) AS previous ON TRUE
    WHERE candidate.occurred_at IS NOT NULL
      AND previous.status IS DISTINCT FROM 'in_progress'
      AND NOT EXISTS (
          SELECT 1 FROM activity_issue_status_history existing
          WHERE existing.issue_id = candidate.issue_id
            AND existing.source = 'activity'
            AND existing.status = 'in_progress'
            AND existing.occurred_at = candidate.occurred_at
      )
    """
)

INSERT_DONE_SQL = text(
    """
    INSERT INTO activity_issue_status_history (issue_id, status, occurred_at, source, inserted_at)
    SELECT DISTINCT candidate.issue_id, 'done', candidate.occurred_at, 'activity', NOW()
    FROM (
        SELECT i.id AS issue_id, i.github_closed_at AS occurred_at
        FROM issues i
        JOIN pull_request_issues pri ON pri.issue_id = i.id
        JOIN pull_requests pr ON pr.id = pri.pull_request_id
        WHERE i.state = 'CLOSED'
          AND i.github_closed_at IS NOT NULL
          AND pr.merged IS TRUE
          AND pr.github_merged_at IS NOT NULL
          AND pr.github_merged_at = i.github_closed_at
          AND NOT EXISTS (
              SELECT 1 FROM activity_issue_status_history h
              WHERE h.issue_id = i.id AND h.source = 'todo_project'
          )
    ) AS candidate
    WHERE NOT EXISTS (
        SELECT 1 FROM activity_issue_status_history existing
        WHERE existing.issue_id = candidate.issue_id
          AND existing.source = 'activity'
          AND existing.status = 'done'
          AND existing.occurred_at = candidate.occurred_at
    )
    """
)


@dataclass
class AutomationResult:
    processed: bool
    inserted_in_progress: int = 0
    inserted_done: int = 0


def should_process(
    force: bool,
    last_successful_sync_at: str | None,
    state: dict[str, Any] | None,
) -> bool:
    """
    Decide whether the automation has work to do.

    Skips only when the stored state is a success for the same
    ``last_successful_sync_at`` fingerprint.
    """
    if force:
        return True
    if not state or state.get("status") != "success":
        return True
    return state.get("lastSuccessfulSyncAt") != last_successful_sync_at


class StatusAutomationService:
    """
    Service that applies the status automation rules.

    Usage:
        service = StatusAutomationService()
        result = await service.ensure(run_id=str(run_id), trigger="sync")
    """

    def __init__(self, db: Database | None = None) -> None:
        self._db = db

    async def _get_db(self) -> Database:
        if self._db is None:
            self._db = await get_db()
        return self._db

    async def ensure(
        self,
        run_id: str | None = None,
        trigger: str | None = None,
        force: bool = False,
    ) -> AutomationResult:
        """
        Apply the automation unless the current sync was already processed.

        Args:
            run_id: Job run that triggered the automation, for observability.
            trigger: Free-form trigger label (e.g. "sync", "manual").
            force: Ignore the fingerprint and always run both passes.

        Returns:
            Whether the passes ran and how many rows each inserted.

        Raises:
            Exception: Any database error, after the transaction was
                rolled back and a failed state recorded where possible.
        """
        db = await self._get_db()
        fingerprint: str | None = None

        try:
            async with db.session() as session:
                await self._acquire_lock(session)
                fingerprint = await self._fingerprint(session)
                state = await self._current_state(session)

                if not should_process(force, fingerprint, state):
                    logger.debug("Status automation already applied for this sync")
                    return AutomationResult(processed=False)

                await self._write_state(session, "running", run_id, fingerprint, trigger)
                in_progress = (await session.execute(INSERT_IN_PROGRESS_SQL)).rowcount or 0
                done = (await session.execute(INSERT_DONE_SQL)).rowcount or 0
                await self._write_state(
                    session,
                    "success",
                    run_id,
                    fingerprint,
                    trigger,
                    inserted_in_progress=in_progress,
                    inserted_done=done,
                )
        except Exception as e:
            await self._record_failure(run_id, fingerprint, trigger, str(e))
            logger.error(f"Status automation failed: {e}")
            raise

        logger.info(
            f"Status automation inserted {in_progress} in-progress and {done} done statuses"
        )
        return AutomationResult(
            processed=True, inserted_in_progress=in_progress, inserted_done=done
        )

    async def get_state(self) -> dict[str, Any] | None:
        """Stored automation metadata, or None if it never ran."""
        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(
                select(ActivityCacheState.metadata_).where(
                    ActivityCacheState.cache_key == AUTOMATION_CACHE_KEY
                )
            )
            return result.scalar_one_or_none()

    async def _acquire_lock(self, session: AsyncSession) -> None:
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:lock_id)"),
            {"lock_id": AUTOMATION_LOCK_ID},
        )

    async def _fingerprint(self, session: AsyncSession) -> str | None:
        result = await session.execute(
            select(SyncConfig.last_successful_sync_at).where(SyncConfig.id == "default")
        )
        return isoformat_utc(result.scalar_one_or_none())

    async def _current_state(self, session: AsyncSession) -> dict[str, Any] | None:
        result = await session.execute(
            select(ActivityCacheState.metadata_)
            .where(ActivityCacheState.cache_key == AUTOMATION_CACHE_KEY)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _write_state(
        self,
        session: AsyncSession,
        status: str,
        run_id: str | None,
        fingerprint: str | None,
        trigger: str | None,
        inserted_in_progress: int = 0,
        inserted_done: int = 0,
        error: str | None = None,
    ) -> None:
        metadata: dict[str, Any] = {
            "status": status,
            "runId": run_id,
            "lastSuccessfulSyncAt": fingerprint,
            "trigger": trigger,
            "insertedInProgress": inserted_in_progress,
            "insertedDone": inserted_done,
        }
        if error is not None:
            metadata["error"] = error

        now = utcnow_naive()
        table = ActivityCacheState.__table__
        stmt = pg_insert(table).values(
            {
                "cache_key": AUTOMATION_CACHE_KEY,
                "generated_at": now,
                "run_id": run_id,
                "item_count": inserted_in_progress + inserted_done,
                "metadata": metadata,
                "updated_at": now,
            }
        )
        await session.execute(
            stmt.on_conflict_do_update(
                index_elements=["cache_key"],
                set_={
                    "generated_at": stmt.excluded["generated_at"],
                    "run_id": stmt.excluded["run_id"],
                    "item_count": stmt.excluded["item_count"],
                    "metadata": stmt.excluded["metadata"],
                    "updated_at": stmt.excluded["updated_at"],
                },
            )
        )

    async def _record_failure(
        self,
        run_id: str | None,
        fingerprint: str | None,
        trigger: str | None,
        message: str,
    ) -> None:
        """Best-effort failed-state write in a fresh transaction."""
        try:
            db = await self._get_db()
            async with db.session() as session:
                await self._acquire_lock(session)
                await self._write_state(
                    session, "failed", run_id, fingerprint, trigger, error=message
                )
        except Exception as e:
            logger.error(f"Failed to record status automation failure state: {e}")
