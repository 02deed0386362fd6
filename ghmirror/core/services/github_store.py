"""
Mirror store: maps upstream GraphQL nodes to rows and upserts them.

Every writer takes an open AsyncSession so callers decide the
transaction boundary. Upserts are single statements keyed by node id,
which makes a replayed sync idempotent.
"""

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ghmirror.core.models import (
    Comment,
    Issue,
    PullRequest,
    PullRequestIssue,
    Reaction,
    Repository,
    Review,
    User,
)
from ghmirror.core.storage.postgres import Base
from ghmirror.core.utils.time import parse_github_datetime, utcnow_naive

logger = logging.getLogger(__name__)


def actor_row(node: dict[str, Any] | None) -> dict[str, Any] | None:
    """Build a ``users`` row from an actor node; None without an id."""
    if not node or not node.get("id"):
        return None
    return {
        "id": node["id"],
        "login": node.get("login"),
        "name": node.get("name"),
        "avatar_url": node.get("avatarUrl"),
        "data": node,
    }


def repository_row(node: dict[str, Any] | None) -> dict[str, Any] | None:
    """Build a ``repositories`` row; None without id or nameWithOwner."""
    if not node or not node.get("id") or not node.get("nameWithOwner"):
        return None
    name_with_owner = node["nameWithOwner"]
    owner = node.get("owner") or {}
    return {
        "id": node["id"],
        "name": node.get("name") or name_with_owner.split("/")[-1],
        "name_with_owner": name_with_owner,
        "owner_id": owner.get("id"),
        "url": node.get("url"),
        "is_private": node.get("isPrivate"),
        "github_created_at": parse_github_datetime(node.get("createdAt")),
        "github_updated_at": parse_github_datetime(node.get("updatedAt")),
        "data": node,
    }


def issue_row(
    node: dict[str, Any], repository_id: str | None = None
) -> dict[str, Any] | None:
    """
    Build an ``issues`` row.

    The repository comes from the node itself when present, otherwise
    from ``repository_id``. Nested comment pages are not kept in ``data``.
    """
    repo_id = (node.get("repository") or {}).get("id") or repository_id
    if not node.get("id") or not repo_id:
        return None
    created_at = parse_github_datetime(node.get("createdAt")) or utcnow_naive()
    return {
        "id": node["id"],
        "number": node["number"],
        "repository_id": repo_id,
        "author_id": (node.get("author") or {}).get("id"),
        "title": node.get("title"),
        "state": node.get("state"),
        "github_created_at": created_at,
        "github_updated_at": parse_github_datetime(node.get("updatedAt")) or created_at,
        "github_closed_at": parse_github_datetime(node.get("closedAt")),
        "data": {k: v for k, v in node.items() if k != "comments"},
    }


def pull_request_row(node: dict[str, Any], repository_id: str) -> dict[str, Any]:
    created_at = parse_github_datetime(node.get("createdAt")) or utcnow_naive()
    return {
        "id": node["id"],
        "number": node["number"],
        "repository_id": repository_id,
        "author_id": (node.get("author") or {}).get("id"),
        "title": node.get("title"),
        "state": node.get("state"),
        "merged": node.get("merged"),
        "github_created_at": created_at,
        "github_updated_at": parse_github_datetime(node.get("updatedAt")) or created_at,
        "github_closed_at": parse_github_datetime(node.get("closedAt")),
        "github_merged_at": parse_github_datetime(node.get("mergedAt")),
        "data": {
            k: v for k, v in node.items() if k not in ("comments", "reviews")
        },
    }


def comment_row(
    node: dict[str, Any],
    issue_id: str | None = None,
    pull_request_id: str | None = None,
) -> dict[str, Any]:
    return {
        "id": node["id"],
        "issue_id": issue_id,
        "pull_request_id": pull_request_id,
        "author_id": (node.get("author") or {}).get("id"),
        "github_created_at": parse_github_datetime(node.get("createdAt"))
        or utcnow_naive(),
        "github_updated_at": parse_github_datetime(node.get("updatedAt")),
        "data": node,
    }


def review_row(node: dict[str, Any], pull_request_id: str) -> dict[str, Any]:
    return {
        "id": node["id"],
        "pull_request_id": pull_request_id,
        "author_id": (node.get("author") or {}).get("id"),
        "state": node.get("state"),
        "github_submitted_at": parse_github_datetime(node.get("submittedAt")),
        "data": node,
    }


def reaction_row(
    node: dict[str, Any], subject_type: str, subject_id: str
) -> dict[str, Any]:
    return {
        "id": node["id"],
        "subject_type": subject_type,
        "subject_id": subject_id,
        "user_id": (node.get("user") or {}).get("id"),
        "content": node.get("content"),
        "github_created_at": parse_github_datetime(node.get("createdAt")),
        "data": node,
    }


def linked_issue_rows(node: dict[str, Any]) -> list[dict[str, Any]]:
    """Tracked-issue links of a pull request node."""
    connection = node.get("closingIssuesReferences") or {}
    rows = []
    seen: set[str] = set()
    for issue in connection.get("nodes") or []:
        if not issue or not issue.get("id") or issue["id"] in seen:
            continue
        seen.add(issue["id"])
        rows.append(
            {
                "issue_id": issue["id"],
                "issue_number": issue.get("number"),
                "issue_title": issue.get("title"),
                "issue_state": issue.get("state"),
                "issue_url": issue.get("url"),
                "issue_repository": (issue.get("repository") or {}).get(
                    "nameWithOwner"
                ),
            }
        )
    return rows


def actors_in(node: dict[str, Any]) -> list[dict[str, Any]]:
    """Every actor row referenced by an issue or pull request node."""
    rows = []
    candidates = [node.get("author")]
    candidates += (node.get("assignees") or {}).get("nodes") or []
    for key in ("comments", "reviews"):
        for child in (node.get(key) or {}).get("nodes") or []:
            if child:
                candidates.append(child.get("author"))
    for reaction in (node.get("reactions") or {}).get("nodes") or []:
        if reaction:
            candidates.append(reaction.get("user"))
    for candidate in candidates:
        row = actor_row(candidate)
        if row is not None:
            rows.append(row)
    return rows


async def _upsert(
    session: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    index_elements: Sequence[str] = ("id",),
) -> int:
    """INSERT ... ON CONFLICT DO UPDATE every non-key column."""
    if not rows:
        return 0

    table = model.__table__
    for row in rows:
        await session.execute(
            pg_insert(table)
            .values(**row)
            .on_conflict_do_update(
                index_elements=list(index_elements),
                set_={
                    **{k: v for k, v in row.items() if k not in index_elements},
                    **({"updated_at": utcnow_naive()} if "updated_at" in table.c else {}),
                },
            )
        )
    return len(rows)


async def upsert_users(session: AsyncSession, rows: Iterable[dict[str, Any]]) -> int:
    unique = {row["id"]: row for row in rows}
    return await _upsert(session, User, list(unique.values()))


async def upsert_repository(session: AsyncSession, node: dict[str, Any]) -> str | None:
    """Upsert a repository node and its owner; returns the repository id."""
    row = repository_row(node)
    if row is None:
        return None
    owner = actor_row(node.get("owner"))
    if owner is not None:
        await upsert_users(session, [owner])
    await _upsert(session, Repository, [row])
    return row["id"]


async def upsert_issue(session: AsyncSession, row: dict[str, Any]) -> None:
    await _upsert(session, Issue, [row])


async def upsert_pull_request(session: AsyncSession, row: dict[str, Any]) -> None:
    await _upsert(session, PullRequest, [row])


async def upsert_comments(session: AsyncSession, rows: list[dict[str, Any]]) -> int:
    return await _upsert(session, Comment, rows)


async def upsert_reviews(session: AsyncSession, rows: list[dict[str, Any]]) -> int:
    return await _upsert(session, Review, rows)


async def upsert_reactions(session: AsyncSession, rows: list[dict[str, Any]]) -> int:
    return await _upsert(session, Reaction, rows)


async def replace_pull_request_issues(
    session: AsyncSession, pull_request_id: str, links: list[dict[str, Any]]
) -> None:
    """Replace the tracked-issue links of one pull request."""
    await session.execute(
        delete(PullRequestIssue).where(
            PullRequestIssue.pull_request_id == pull_request_id
        )
    )
    await _upsert(
        session,
        PullRequestIssue,
        [{"pull_request_id": pull_request_id, **link} for link in links],
        index_elements=("pull_request_id", "issue_id"),
    )
