"""Create mirror, activity and job tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _node_columns() -> list[sa.Column]:
    return [
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create every table of the mirror."""
    # Mirrored entities
    op.create_table(
        "users",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("login", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        *_node_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "repositories",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("name_with_owner", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.Text(), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=True),
        sa.Column("github_created_at", sa.DateTime(), nullable=True),
        sa.Column("github_updated_at", sa.DateTime(), nullable=True),
        *_node_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_repositories_owner_id", "repositories", ["owner_id"])

    op.create_table(
        "issues",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("repository_id", sa.Text(), nullable=False),
        sa.Column("author_id", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("state", sa.String(length=20), nullable=True),
        sa.Column("github_created_at", sa.DateTime(), nullable=False),
        sa.Column("github_updated_at", sa.DateTime(), nullable=False),
        sa.Column("github_closed_at", sa.DateTime(), nullable=True),
        *_node_columns(),
        sa.ForeignKeyConstraint(["repository_id"], ["repositories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_issues_repository_id", "issues", ["repository_id"])
    op.create_index("ix_issues_github_updated_at", "issues", ["github_updated_at"])

    op.create_table(
        "pull_requests",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("repository_id", sa.Text(), nullable=False),
        sa.Column("author_id", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("state", sa.String(length=20), nullable=True),
        sa.Column("merged", sa.Boolean(), nullable=True),
        sa.Column("github_created_at", sa.DateTime(), nullable=False),
        sa.Column("github_updated_at", sa.DateTime(), nullable=False),
        sa.Column("github_closed_at", sa.DateTime(), nullable=True),
        sa.Column("github_merged_at", sa.DateTime(), nullable=True),
        *_node_columns(),
        sa.ForeignKeyConstraint(["repository_id"], ["repositories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pull_requests_repository_id", "pull_requests", ["repository_id"])
    op.create_index(
        "ix_pull_requests_github_updated_at", "pull_requests", ["github_updated_at"]
    )

    op.create_table(
        "pull_request_issues",
        sa.Column("pull_request_id", sa.Text(), nullable=False),
        sa.Column("issue_id", sa.Text(), nullable=False),
        sa.Column("issue_number", sa.Integer(), nullable=True),
        sa.Column("issue_title", sa.Text(), nullable=True),
        sa.Column("issue_state", sa.String(length=20), nullable=True),
        sa.Column("issue_url", sa.Text(), nullable=True),
        sa.Column("issue_repository", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["pull_request_id"], ["pull_requests.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("pull_request_id", "issue_id"),
    )
    op.create_index("ix_pull_request_issues_issue_id", "pull_request_issues", ["issue_id"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("pull_request_id", sa.Text(), nullable=False),
        sa.Column("author_id", sa.Text(), nullable=True),
        sa.Column("state", sa.String(length=30), nullable=True),
        sa.Column("github_submitted_at", sa.DateTime(), nullable=True),
        *_node_columns(),
        sa.ForeignKeyConstraint(
            ["pull_request_id"], ["pull_requests.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reviews_pull_request_id", "reviews", ["pull_request_id"])

    op.create_table(
        "comments",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("issue_id", sa.Text(), nullable=True),
        sa.Column("pull_request_id", sa.Text(), nullable=True),
        sa.Column("author_id", sa.Text(), nullable=True),
        sa.Column("github_created_at", sa.DateTime(), nullable=False),
        sa.Column("github_updated_at", sa.DateTime(), nullable=True),
        *_node_columns(),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["pull_request_id"], ["pull_requests.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_comments_issue_id", "comments", ["issue_id"])
    op.create_index("ix_comments_pull_request_id", "comments", ["pull_request_id"])

    op.create_table(
        "reactions",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("subject_type", sa.String(length=30), nullable=False),
        sa.Column("subject_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("content", sa.String(length=30), nullable=True),
        sa.Column("github_created_at", sa.DateTime(), nullable=True),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reactions_subject", "reactions", ["subject_type", "subject_id"])

    # Activity
    op.create_table(
        "activity_issue_status_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("issue_id", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("source", sa.String(length=30), nullable=False),
        sa.Column("inserted_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('no_status', 'todo', 'in_progress', 'done', 'pending', 'canceled')",
            name="activity_issue_status_history_status_check",
        ),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_activity_issue_status_history_issue_id",
        "activity_issue_status_history",
        ["issue_id"],
    )
    op.create_index(
        "ix_activity_issue_status_history_issue_occurred",
        "activity_issue_status_history",
        ["issue_id", "occurred_at"],
    )

    op.create_table(
        "activity_issue_project_overrides",
        sa.Column("issue_id", sa.Text(), nullable=False),
        sa.Column("priority_value", sa.Text(), nullable=True),
        sa.Column("weight_value", sa.Text(), nullable=True),
        sa.Column("initiation_value", sa.Text(), nullable=True),
        sa.Column("start_date_value", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("issue_id"),
    )

    op.create_table(
        "activity_saved_filters",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_activity_saved_filters_user_id", "activity_saved_filters", ["user_id"]
    )

    op.create_table(
        "activity_cache_state",
        sa.Column("cache_key", sa.String(length=100), nullable=False),
        sa.Column("generated_at", sa.DateTime(), nullable=True),
        sa.Column("run_id", sa.Text(), nullable=True),
        sa.Column("item_count", sa.Integer(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("cache_key"),
    )

    # Sync and jobs
    op.create_table(
        "sync_config",
        sa.Column("id", sa.String(length=50), nullable=False),
        sa.Column("org_name", sa.Text(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("last_sync_started_at", sa.DateTime(), nullable=True),
        sa.Column("last_sync_completed_at", sa.DateTime(), nullable=True),
        sa.Column("last_successful_sync_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "job_schedules",
        sa.Column("job_type", sa.String(length=20), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("hour_local", sa.Integer(), nullable=False),
        sa.Column("minute_local", sa.Integer(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("last_started_at", sa.DateTime(), nullable=True),
        sa.Column("last_completed_at", sa.DateTime(), nullable=True),
        sa.Column("last_status", sa.String(length=20), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("hour_local BETWEEN 0 AND 23", name="job_schedules_hour_check"),
        sa.CheckConstraint(
            "minute_local BETWEEN 0 AND 59", name="job_schedules_minute_check"
        ),
        sa.PrimaryKeyConstraint("job_type"),
    )

    op.create_table(
        "sync_state",
        sa.Column("resource", sa.Text(), nullable=False),
        sa.Column("last_item_timestamp", sa.DateTime(), nullable=True),
        sa.Column("last_cursor", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("resource"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("job_type", sa.String(length=20), nullable=False),
        sa.Column("trigger", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_runs_job_type", "job_runs", ["job_type"])
    op.create_index("ix_job_runs_requested_at", "job_runs", ["requested_at"])
    op.create_index("ix_job_runs_status", "job_runs", ["status"])

    op.create_table(
        "db_backups",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("directory", sa.Text(), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("trigger", sa.String(length=20), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("restored_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_db_backups_started_at", "db_backups", ["started_at"])


def downgrade() -> None:
    """Drop every table, dependents first."""
    for table in (
        "db_backups",
        "job_runs",
        "sync_state",
        "job_schedules",
        "sync_config",
        "activity_cache_state",
        "activity_saved_filters",
        "activity_issue_project_overrides",
        "activity_issue_status_history",
        "reactions",
        "comments",
        "reviews",
        "pull_request_issues",
        "pull_requests",
        "issues",
        "repositories",
        "users",
    ):
        op.drop_table(table)
