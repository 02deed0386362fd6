"""
Database backup and restore.

Backups are ``pg_dump`` custom-format archives written to the configured
directory, each tracked by a ``db_backups`` row. Restore replays one of
them with ``pg_restore --clean``.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from sqlalchemy import delete, select

from ghmirror.core.config.loader import get_jobs_config
from ghmirror.core.jobs.scheduler import JobContext
from ghmirror.core.models.backups import DatabaseBackup
from ghmirror.core.storage.exceptions import NotFoundError
from ghmirror.core.storage.postgres import Database, get_db
from ghmirror.core.utils.time import utcnow, utcnow_naive

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_DIRECTORY = "/var/backups/ghmirror"
DEFAULT_RETENTION_COUNT = 3


class BackupError(Exception):
    """pg_dump or pg_restore failed."""

    pass


def build_backup_filename() -> str:
    return f"db-backup-{utcnow().strftime('%Y%m%d-%H%M%S')}.dump"


async def run_command(program: str, *args: str) -> None:
    """Run an external program, raising BackupError on a non-zero exit."""
    try:
        process = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise BackupError(f"Failed to start {program}: {e}") from e

    _, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip()
        raise BackupError(f"{program} exited with code {process.returncode}: {message}")


class BackupService:
    """
    Service for database backups.

    Usage:
        service = BackupService()
        backup = await service.create_backup(trigger="manual")
        await service.restore_backup(backup.id)
    """

    def __init__(
        self,
        db: Database | None = None,
        directory: str | None = None,
        retention_count: int | None = None,
    ) -> None:
        backup_config = get_jobs_config().get("backup", {})
        self._db = db
        self.directory = Path(
            directory or backup_config.get("directory") or DEFAULT_BACKUP_DIRECTORY
        )
        self.retention_count = int(
            retention_count
            if retention_count is not None
            else backup_config.get("retention_count", DEFAULT_RETENTION_COUNT)
        )

    async def _get_db(self) -> Database:
        if self._db is None:
            self._db = await get_db()
        return self._db

    async def create_backup(
        self, trigger: str, created_by: str | None = None
    ) -> DatabaseBackup:
        """
        Dump the database into a new archive and prune old ones.

        Raises:
            BackupError: If pg_dump fails; the record is marked failed.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        filename = build_backup_filename()
        file_path = self.directory / filename

        backup = DatabaseBackup(
            filename=filename,
            directory=str(self.directory),
            file_path=str(file_path),
            status="running",
            trigger=trigger,
            started_at=utcnow_naive(),
            created_by=created_by,
        )
        db = await self._get_db()
        async with db.session() as session:
            session.add(backup)

        logger.info(f"Starting database backup: {file_path}")
        try:
            await run_command(
                "pg_dump",
                "--format=custom",
                "--file",
                str(file_path),
                "--no-owner",
                "--no-privileges",
                db.config.libpq_url,
            )
        except BackupError as e:
            await self._update(backup.id, status="failed", error=str(e),
                               completed_at=utcnow_naive())
            logger.error(f"Database backup failed: {e}")
            raise

        size = file_path.stat().st_size if file_path.exists() else None
        backup = await self._update(
            backup.id, status="success", size_bytes=size, completed_at=utcnow_naive()
        )
        logger.info(f"Database backup complete: {filename} ({size} bytes)")

        await self.prune()
        return backup

    async def restore_backup(self, backup_id: uuid.UUID | str) -> DatabaseBackup:
        """
        Restore the database from a recorded backup.

        Raises:
            NotFoundError: If the record or its file does not exist.
            BackupError: If pg_restore fails.
        """
        backup = await self.get(backup_id)
        if backup is None:
            raise NotFoundError(f"Backup record not found: {backup_id}")
        if not os.access(backup.file_path, os.R_OK):
            raise NotFoundError(f"Backup file is not accessible: {backup.file_path}")

        db = await self._get_db()
        logger.info(f"Restoring database from {backup.file_path}")
        await run_command(
            "pg_restore",
            "--clean",
            "--if-exists",
            "--no-owner",
            "--no-privileges",
            "--dbname",
            db.config.libpq_url,
            backup.file_path,
        )
        return await self._update(backup.id, restored_at=utcnow_naive())

    async def get(self, backup_id: uuid.UUID | str) -> DatabaseBackup | None:
        if isinstance(backup_id, str):
            try:
                backup_id = uuid.UUID(backup_id)
            except ValueError:
                return None
        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(
                select(DatabaseBackup).where(DatabaseBackup.id == backup_id)
            )
            return result.scalar_one_or_none()

    async def list_backups(self, limit: int = 20) -> list[DatabaseBackup]:
        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(
                select(DatabaseBackup)
                .order_by(DatabaseBackup.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def prune(self) -> int:
        """
        Keep only the newest ``retention_count`` successful backups.

        Returns:
            Number of backups removed.
        """
        if self.retention_count <= 0:
            return 0

        successful = [
            b for b in await self.list_backups(self.retention_count + 10)
            if b.status == "success"
        ]
        removed = 0
        for backup in successful[self.retention_count:]:
            try:
                Path(backup.file_path).unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to remove old backup file {backup.file_path}: {e}")
                continue

            db = await self._get_db()
            async with db.session() as session:
                await session.execute(
                    delete(DatabaseBackup).where(DatabaseBackup.id == backup.id)
                )
            removed += 1

        if removed:
            logger.info(f"Pruned {removed} old backups")
        return removed

    async def _update(self, backup_id: uuid.UUID, **values: Any) -> DatabaseBackup:
        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(
                select(DatabaseBackup).where(DatabaseBackup.id == backup_id)
            )
            backup = result.scalar_one()
            for key, value in values.items():
                setattr(backup, key, value)
        return backup

    # Job handlers

    async def run_backup_job(self, context: JobContext) -> dict[str, Any]:
        backup = await self.create_backup(
            trigger=context.trigger.value, created_by=context.actor_id
        )
        return {
            "backupId": str(backup.id),
            "filename": backup.filename,
            "sizeBytes": backup.size_bytes,
        }

    async def run_restore_job(self, context: JobContext) -> dict[str, Any]:
        backup_id = context.params.get("backup_id")
        if not backup_id:
            raise ValueError("Restore requires a backup_id")
        backup = await self.restore_backup(backup_id)
        return {"backupId": str(backup.id), "filename": backup.filename}
