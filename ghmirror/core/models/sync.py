"""
SQLAlchemy models for sync configuration and per-job schedules.
"""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ghmirror.core.storage.postgres import Base
from ghmirror.core.utils.time import utcnow_naive


class SyncConfig(Base):
    """
    Organization-level sync configuration.

    There is a single row keyed ``default``. The sync markers double as
    the status automation fingerprint.
    """

    __tablename__ = "sync_config"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default="default")
    org_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    last_sync_started_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    last_sync_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    last_successful_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    def __repr__(self) -> str:
        return f"<SyncConfig(org='{self.org_name}', tz='{self.timezone}')>"


class JobSchedule(Base):
    """Recurring local-time schedule and last-run status for one job type."""

    __tablename__ = "job_schedules"

    job_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    hour_local: Mapped[int] = mapped_column(Integer, nullable=False)
    minute_local: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    last_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (
        CheckConstraint("hour_local BETWEEN 0 AND 23", name="job_schedules_hour_check"),
        CheckConstraint(
            "minute_local BETWEEN 0 AND 59", name="job_schedules_minute_check"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<JobSchedule(job='{self.job_type}', "
            f"at={self.hour_local:02d}:{self.minute_local:02d} {self.timezone})>"
        )


class SyncState(Base):
    """Per-resource watermark for incremental sync."""

    __tablename__ = "sync_state"

    resource: Mapped[str] = mapped_column(Text, primary_key=True)
    last_item_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    last_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )
