"""
SQLAlchemy models for dashboard-side activity state.

These tables are derived from (or annotate) the mirrored entities and
reference issues by their upstream node id.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ghmirror.core.storage.postgres import Base
from ghmirror.core.utils.time import utcnow_naive

ISSUE_STATUSES = ("no_status", "todo", "in_progress", "done", "pending", "canceled")


class IssueStatusHistory(Base):
    """
    Append-only status fact for an issue.

    ``source`` is either ``todo_project`` (authoritative planning board)
    or ``activity`` (derived from pull request timelines).
    """

    __tablename__ = "activity_issue_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[str] = mapped_column(
        Text, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, nullable=False
    )
    source: Mapped[str] = mapped_column(String(30), nullable=False, default="activity")
    inserted_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('no_status', 'todo', 'in_progress', 'done', 'pending', 'canceled')",
            name="activity_issue_status_history_status_check",
        ),
        Index("ix_activity_issue_status_history_issue_id", "issue_id"),
        Index(
            "ix_activity_issue_status_history_issue_occurred",
            "issue_id",
            "occurred_at",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<IssueStatusHistory(issue='{self.issue_id}', status='{self.status}', "
            f"source='{self.source}')>"
        )


class IssueProjectOverride(Base):
    """Locally edited project fields for an issue."""

    __tablename__ = "activity_issue_project_overrides"

    issue_id: Mapped[str] = mapped_column(
        Text, ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True
    )
    priority_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    weight_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    initiation_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )


class SavedFilter(Base):
    """User-saved activity filter; ``payload`` may embed issue ids."""

    __tablename__ = "activity_saved_filters"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (Index("ix_activity_saved_filters_user_id", "user_id"),)


class ActivityCacheState(Base):
    """
    Generic key/metadata row for derived caches and automations.

    Doubles as an idempotency fingerprint and an observability surface.
    """

    __tablename__ = "activity_cache_state"

    cache_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    generated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    run_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ActivityCacheState(key='{self.cache_key}')>"
