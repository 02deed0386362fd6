"""
Tests for SyncConfigService.

Integration tests that require a running PostgreSQL instance.
Run: pytest tests/core/services/test_sync_config.py -v
"""

from datetime import datetime
from unittest.mock import patch

import pytest
import pytest_asyncio

from ghmirror.core.jobs.exceptions import ScheduleValidationError
from ghmirror.core.jobs.types import JobType


@pytest_asyncio.fixture
async def sync_config(clean_database):
    from ghmirror.core.services.sync_config import SyncConfigService

    with patch(
        "ghmirror.core.services.sync_config.get_github_config",
        return_value={"org": "acme"},
    ):
        yield SyncConfigService(clean_database)


class TestConfig:
    @pytest.mark.asyncio
    async def test_default_row_uses_configured_org(self, sync_config) -> None:
        config = await sync_config.get_config()

        assert config.id == "default"
        assert config.org_name == "acme"
        assert config.timezone == "UTC"

    @pytest.mark.asyncio
    async def test_update_org_and_markers(self, sync_config) -> None:
        await sync_config.update_org(org_name=" globex ", timezone="Asia/Seoul")
        await sync_config.update_sync_markers(successful_at=datetime(2024, 1, 10))

        config = await sync_config.get_config()
        assert config.org_name == "globex"
        assert config.timezone == "Asia/Seoul"
        assert config.last_successful_sync_at == datetime(2024, 1, 10)

    @pytest.mark.asyncio
    async def test_empty_org_rejected(self, sync_config) -> None:
        with pytest.raises(ScheduleValidationError):
            await sync_config.update_org(org_name="  ")


class TestSchedules:
    """Tests for schedule reads and updates."""

    @pytest.mark.asyncio
    async def test_defaults_without_rows(self, sync_config) -> None:
        sync = await sync_config.get_schedule("sync")
        backup = await sync_config.get_schedule(JobType.BACKUP)
        restore = await sync_config.get_schedule(JobType.RESTORE)

        assert (sync.enabled, sync.hour, sync.minute) == (True, 1, 0)
        assert (backup.hour, backup.minute) == (2, 0)
        assert restore.enabled is False

    @pytest.mark.asyncio
    async def test_update_schedule_persists(self, sync_config) -> None:
        schedule = await sync_config.update_schedule(
            "backup", hour=3, minute=15, timezone="Asia/Seoul"
        )

        assert (schedule.hour, schedule.minute, schedule.timezone) == (3, 15, "Asia/Seoul")
        again = await sync_config.get_schedule("backup")
        assert again.hour == 3
        assert again.enabled is True

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, sync_config) -> None:
        await sync_config.update_schedule("sync", hour=5, minute=30)
        schedule = await sync_config.update_schedule("sync", enabled=False)

        assert schedule.enabled is False
        assert (schedule.hour, schedule.minute) == (5, 30)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [{"hour": 24}, {"minute": 60}, {"timezone": "Not/AZone"}],
    )
    async def test_invalid_update_changes_nothing(self, sync_config, kwargs) -> None:
        await sync_config.update_schedule("transfer", hour=4, minute=0)

        with pytest.raises(ScheduleValidationError):
            await sync_config.update_schedule("transfer", **kwargs)

        schedule = await sync_config.get_schedule("transfer")
        assert (schedule.hour, schedule.minute, schedule.timezone) == (4, 0, "UTC")

    @pytest.mark.asyncio
    async def test_restore_cannot_be_scheduled(self, sync_config) -> None:
        with pytest.raises(ScheduleValidationError):
            await sync_config.update_schedule("restore", hour=1)

    @pytest.mark.asyncio
    async def test_record_job_status(self, sync_config) -> None:
        await sync_config.record_job_status(
            "sync", "failed", completed_at=datetime(2024, 1, 1, 1, 5), error="boom"
        )
        failed = await sync_config.get_schedule("sync")
        assert failed.last_status == "failed"
        assert failed.last_error == "boom"

        await sync_config.record_job_status("sync", "success", error=None)
        ok = await sync_config.get_schedule("sync")
        assert ok.last_status == "success"
        assert ok.last_error is None
        assert ok.last_completed_at == datetime(2024, 1, 1, 1, 5)
