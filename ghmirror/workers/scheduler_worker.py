"""
Background worker that owns job scheduling.

This worker runs continuously and:
- Fails job runs left unfinished by a previous process
- Arms one timer per schedulable job (sync, backup, transfer)
- Funnels every run through a single process-wide job lock
- Supports graceful shutdown on SIGINT/SIGTERM
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from typing import NoReturn

from ghmirror.core.config.loader import get_jobs_config
from ghmirror.core.github.client import GitHubClient, create_github_client
from ghmirror.core.github.rate_limit import RateLimitedFetcher
from ghmirror.core.github.realignment import RealignmentStore, RepositoryRealigner
from ghmirror.core.jobs.lock import JobLock
from ghmirror.core.jobs.scheduler import (
    DEFAULT_WAIT_TIMEOUT_SECONDS,
    JobDefinition,
    JobScheduler,
)
from ghmirror.core.jobs.types import JobType
from ghmirror.core.services.admin import AdminService
from ghmirror.core.services.backup import BackupService
from ghmirror.core.services.job_runs import JobRunService
from ghmirror.core.services.status_automation import StatusAutomationService
from ghmirror.core.services.sync import SyncService
from ghmirror.core.services.sync_config import SyncConfigService
from ghmirror.core.services.transfer import TransferService
from ghmirror.core.storage.exceptions import ConnectionError
from ghmirror.core.storage.postgres import Database, close_db, get_db

logger = logging.getLogger(__name__)

STALE_RUN_REASON = "Process restarted before the run finished"

# Global event for graceful shutdown
shutdown_event = asyncio.Event()


@dataclass
class Runtime:
    """Everything one worker process owns."""

    scheduler: JobScheduler
    admin: AdminService
    job_runs: JobRunService


def build_runtime(db: Database, client: GitHubClient) -> Runtime:
    """
    Wire the lock, scheduler, services and job handlers together.

    Args:
        db: Connected database.
        client: Authenticated upstream client.

    Returns:
        The assembled runtime; timers are not armed yet.
    """
    wait_minutes = get_jobs_config().get("wait_timeout_minutes")
    wait_timeout = (
        float(wait_minutes) * 60 if wait_minutes is not None else DEFAULT_WAIT_TIMEOUT_SECONDS
    )

    fetcher = RateLimitedFetcher(client)
    sync_config = SyncConfigService(db)
    job_runs = JobRunService(db)
    automation = StatusAutomationService(db)

    sync = SyncService(fetcher, db=db, sync_config=sync_config, automation=automation)
    backup = BackupService(db)
    realigner = RepositoryRealigner(
        fetcher, RealignmentStore(db), resolve_redirect=client.resolve_redirect
    )
    transfer = TransferService(realigner)

    scheduler = JobScheduler(JobLock(), job_runs, sync_config, wait_timeout_seconds=wait_timeout)
    scheduler.register(JobDefinition(JobType.SYNC, sync.run_job))
    scheduler.register(JobDefinition(JobType.BACKUP, backup.run_backup_job))
    scheduler.register(JobDefinition(JobType.RESTORE, backup.run_restore_job, schedulable=False))
    scheduler.register(JobDefinition(JobType.TRANSFER, transfer.run_job))

    admin = AdminService(scheduler, sync_config, transfer, automation)
    return Runtime(scheduler=scheduler, admin=admin, job_runs=job_runs)


def handle_signal(signum: int, frame: object) -> None:
    """
    Handle SIGINT/SIGTERM for graceful shutdown.

    Args:
        signum: Signal number.
        frame: Current stack frame.
    """
    signal_name = signal.Signals(signum).name
    logger.info(f"Received signal {signal_name}, shutting down gracefully...")
    shutdown_event.set()


async def run_worker(runtime: Runtime) -> None:
    """Arm timers, wait for the shutdown signal, then stop the scheduler."""
    await runtime.job_runs.fail_unfinished(STALE_RUN_REASON)
    await runtime.scheduler.start()
    logger.info("Job scheduler running")

    try:
        await shutdown_event.wait()
    finally:
        await runtime.scheduler.shutdown()


async def main_async() -> None:
    """
    Async entrypoint for the scheduler worker.

    Initializes the database connection and the upstream client, then
    runs until a shutdown signal arrives.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logger.info("Scheduler worker starting...")

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    # Initialize database connection (fatal if fails)
    try:
        db = await get_db()
        if not await db.health_check():
            raise ConnectionError("PostgreSQL did not answer the health check")
        logger.info("Database connection established")
    except Exception as e:
        logger.critical(f"Cannot connect to database: {e}", exc_info=True)
        sys.exit(1)

    try:
        client = create_github_client()
    except Exception as e:
        logger.critical(f"Cannot create GitHub client: {e}")
        await close_db()
        sys.exit(1)

    try:
        await run_worker(build_runtime(db, client))
    finally:
        await client.aclose()
        try:
            await close_db()
            logger.info("Database connection closed")
        except Exception as e:
            logger.error(f"Error closing database connection: {e}")


def main() -> NoReturn:
    """
    Main entrypoint for the scheduler worker.

    This is the synchronous wrapper that starts the async event loop.
    """
    try:
        asyncio.run(main_async())
    except SystemExit:
        raise
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
