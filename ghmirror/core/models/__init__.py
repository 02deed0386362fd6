"""
SQLAlchemy models for the GitHub mirror.

This module exports all database models used by the application.
"""

from ghmirror.core.models.activity import (
    ISSUE_STATUSES,
    ActivityCacheState,
    IssueProjectOverride,
    IssueStatusHistory,
    SavedFilter,
)
from ghmirror.core.models.backups import DatabaseBackup
from ghmirror.core.models.github import (
    Comment,
    Issue,
    PullRequest,
    PullRequestIssue,
    Reaction,
    Repository,
    Review,
    User,
)
from ghmirror.core.models.job_runs import JobRun
from ghmirror.core.models.sync import JobSchedule, SyncConfig, SyncState

__all__ = [
    "User",
    "Repository",
    "Issue",
    "PullRequest",
    "PullRequestIssue",
    "Review",
    "Comment",
    "Reaction",
    "IssueStatusHistory",
    "IssueProjectOverride",
    "SavedFilter",
    "ActivityCacheState",
    "ISSUE_STATUSES",
    "SyncConfig",
    "JobSchedule",
    "SyncState",
    "JobRun",
    "DatabaseBackup",
]
