"""
SQLAlchemy model for job run logging.

Each row is one execution of one job type (sync, backup, restore,
transfer), from the moment it is requested until it finishes.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from ghmirror.core.storage.postgres import Base
from ghmirror.core.utils.time import utcnow_naive


class JobRun(Base):
    """
    Record of a single job execution.

    Status moves waiting -> running -> success/failed. A waiting run that
    is never admitted by the job lock goes straight to failed.
    """

    __tablename__ = "job_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow_naive
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_job_runs_job_type", "job_type"),
        Index("ix_job_runs_requested_at", "requested_at"),
        Index("ix_job_runs_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<JobRun(job='{self.job_type}', trigger='{self.trigger}', "
            f"status='{self.status}')>"
        )
