"""
SQLAlchemy models for mirrored upstream entities.

Every entity table is keyed by the upstream node id. The raw GraphQL
payload is kept in ``data`` so denormalized fields (labels, tracked
issues, project field snapshots) can be rewritten in place.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ghmirror.core.storage.postgres import Base
from ghmirror.core.utils.time import utcnow_naive


class User(Base):
    """Upstream actor (user, organization, bot or mannequin)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    login: Mapped[str | None] = mapped_column(Text, nullable=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(login='{self.login}')>"


class Repository(Base):
    """Mirrored repository."""

    __tablename__ = "repositories"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    name_with_owner: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_private: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    github_created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    github_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (Index("ix_repositories_owner_id", "owner_id"),)

    def __repr__(self) -> str:
        return f"<Repository(name_with_owner='{self.name_with_owner}')>"


class Issue(Base):
    """Mirrored issue (discussions are stored here too)."""

    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    repository_id: Mapped[str] = mapped_column(
        Text, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    github_created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    github_updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    github_closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (
        Index("ix_issues_repository_id", "repository_id"),
        Index("ix_issues_github_updated_at", "github_updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Issue(id='{self.id}', number={self.number})>"


class PullRequest(Base):
    """Mirrored pull request."""

    __tablename__ = "pull_requests"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    repository_id: Mapped[str] = mapped_column(
        Text, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    merged: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    github_created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    github_updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    github_closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    github_merged_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (
        Index("ix_pull_requests_repository_id", "repository_id"),
        Index("ix_pull_requests_github_updated_at", "github_updated_at"),
    )

    def __repr__(self) -> str:
        return f"<PullRequest(id='{self.id}', number={self.number})>"


class PullRequestIssue(Base):
    """
    Link between a pull request and an issue it tracks.

    ``issue_id`` has no foreign key: links may point at
    issues that have not been mirrored yet.
    """

    __tablename__ = "pull_request_issues"

    pull_request_id: Mapped[str] = mapped_column(
        Text, ForeignKey("pull_requests.id", ondelete="CASCADE"), primary_key=True
    )
    issue_id: Mapped[str] = mapped_column(Text, primary_key=True)
    issue_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    issue_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    issue_state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    issue_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    issue_repository: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (Index("ix_pull_request_issues_issue_id", "issue_id"),)


class Review(Base):
    """Pull request review."""

    __tablename__ = "reviews"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    pull_request_id: Mapped[str] = mapped_column(
        Text, ForeignKey("pull_requests.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(30), nullable=True)
    github_submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (Index("ix_reviews_pull_request_id", "pull_request_id"),)


class Comment(Base):
    """Comment on an issue or a pull request."""

    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    issue_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("issues.id", ondelete="CASCADE"), nullable=True
    )
    pull_request_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("pull_requests.id", ondelete="CASCADE"), nullable=True
    )
    author_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    github_created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    github_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (
        Index("ix_comments_issue_id", "issue_id"),
        Index("ix_comments_pull_request_id", "pull_request_id"),
    )


class Reaction(Base):
    """Reaction attached to an issue, pull request or comment."""

    __tablename__ = "reactions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    subject_type: Mapped[str] = mapped_column(String(30), nullable=False)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str | None] = mapped_column(String(30), nullable=True)
    github_created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    __table_args__ = (Index("ix_reactions_subject", "subject_type", "subject_id"),)
