"""
Incremental sync of an organization into the mirror.

Pulls repositories, issues (with their first page of comments) and pull
requests (with tracked-issue links and first pages of reviews and
comments) changed since the stored watermark, and upserts everything.
A finished sync triggers the status automation.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from ghmirror.core.github.client import GraphQLRequest
from ghmirror.core.github.pagination import collect_connection, iter_connection_pages
from ghmirror.core.github.queries import (
    ORG_REPOSITORIES,
    REPOSITORY_ISSUES,
    REPOSITORY_PULL_REQUESTS,
)
from ghmirror.core.jobs.scheduler import JobContext
from ghmirror.core.models.sync import SyncState
from ghmirror.core.services import github_store
from ghmirror.core.services.status_automation import StatusAutomationService
from ghmirror.core.services.sync_config import SyncConfigService
from ghmirror.core.storage.exceptions import ConfigurationError
from ghmirror.core.storage.postgres import Database, get_db
from ghmirror.core.utils.time import isoformat_utc, parse_github_datetime, utcnow_naive

logger = logging.getLogger(__name__)

ISSUES_RESOURCE = "issues"
PULL_REQUESTS_RESOURCE = "pull_requests"


@dataclass
class SyncCounts:
    repositories: int = 0
    issues: int = 0
    pull_requests: int = 0
    comments: int = 0
    reviews: int = 0
    watermarks: dict[str, datetime] = field(default_factory=dict)

    def bump(self, resource: str, value: datetime | None) -> None:
        if value is None:
            return
        current = self.watermarks.get(resource)
        if current is None or value > current:
            self.watermarks[resource] = value

    def as_details(self) -> dict[str, Any]:
        return {
            "repositories": self.repositories,
            "issues": self.issues,
            "pullRequests": self.pull_requests,
            "comments": self.comments,
            "reviews": self.reviews,
        }


class SyncService:
    """
    Service that runs the sync job.

    Usage:
        service = SyncService(fetcher)
        details = await service.sync()
    """

    def __init__(
        self,
        fetcher: Any,
        db: Database | None = None,
        sync_config: SyncConfigService | None = None,
        automation: StatusAutomationService | None = None,
        refresh_hook: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.fetcher = fetcher
        self._db = db
        self.sync_config = sync_config or SyncConfigService(db)
        self.automation = automation or StatusAutomationService(db)
        self.refresh_hook = refresh_hook

    async def _get_db(self) -> Database:
        if self._db is None:
            self._db = await get_db()
        return self._db

    async def run_job(self, context: JobContext) -> dict[str, Any]:
        return await self.sync(run_id=str(context.run_id))

    async def sync(self, run_id: str | None = None) -> dict[str, Any]:
        """
        Run one incremental sync.

        Returns:
            Counts of upserted entities plus the automation outcome.

        Raises:
            ConfigurationError: If no organization is configured.
        """
        config = await self.sync_config.get_config()
        org = config.org_name
        if not org:
            raise ConfigurationError("Organization name is not configured")

        started_at = utcnow_naive()
        await self.sync_config.update_sync_markers(started_at=started_at)
        logger.info(f"Sync started for organization {org}")

        counts = SyncCounts()
        try:
            watermarks = await self._load_watermarks()
            repositories = await self._sync_repositories(org, counts)
            for repository in repositories:
                await self._sync_issues(repository, watermarks.get(ISSUES_RESOURCE), counts)
                await self._sync_pull_requests(
                    repository, watermarks.get(PULL_REQUESTS_RESOURCE), counts
                )
            await self._save_watermarks(counts.watermarks)
        except Exception:
            await self.sync_config.update_sync_markers(completed_at=utcnow_naive())
            raise

        completed_at = utcnow_naive()
        await self.sync_config.update_sync_markers(
            completed_at=completed_at, successful_at=completed_at
        )
        details = counts.as_details()
        logger.info(f"Sync finished for {org}: {details}")

        try:
            result = await self.automation.ensure(run_id=run_id, trigger="sync")
            details["statusAutomation"] = {
                "processed": result.processed,
                "insertedInProgress": result.inserted_in_progress,
                "insertedDone": result.inserted_done,
            }
        except Exception as e:
            logger.error(f"Status automation after sync failed: {e}")
            details["statusAutomation"] = {"error": str(e)}

        if self.refresh_hook is not None:
            await self.refresh_hook()

        return details

    async def _load_watermarks(self) -> dict[str, str | None]:
        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(select(SyncState))
            return {
                row.resource: isoformat_utc(row.last_item_timestamp)
                for row in result.scalars().all()
            }

    async def _save_watermarks(self, watermarks: dict[str, datetime]) -> None:
        if not watermarks:
            return
        db = await self._get_db()
        async with db.session() as session:
            for resource, timestamp in watermarks.items():
                values = {"last_item_timestamp": timestamp, "updated_at": utcnow_naive()}
                await session.execute(
                    pg_insert(SyncState)
                    .values(resource=resource, **values)
                    .on_conflict_do_update(index_elements=["resource"], set_=values)
                )

    async def _sync_repositories(self, org: str, counts: SyncCounts) -> list[dict[str, Any]]:
        nodes = await collect_connection(
            self.fetcher,
            GraphQLRequest(
                query=ORG_REPOSITORIES,
                variables={"login": org},
                label=f"repositories of {org}",
            ),
            ("organization", "repositories"),
        )
        db = await self._get_db()
        async with db.session() as session:
            for node in nodes:
                if await github_store.upsert_repository(session, node):
                    counts.repositories += 1
        return [n for n in nodes if n.get("id") and n.get("nameWithOwner")]

    async def _sync_issues(
        self, repository: dict[str, Any], since: str | None, counts: SyncCounts
    ) -> None:
        owner, name = repository["nameWithOwner"].split("/", 1)
        request = GraphQLRequest(
            query=REPOSITORY_ISSUES,
            variables={"owner": owner, "name": name, "since": since},
            label=f"issues of {repository['nameWithOwner']}",
        )
        db = await self._get_db()
        async for page in iter_connection_pages(
            self.fetcher, request, ("repository", "issues")
        ):
            async with db.session() as session:
                for node in page:
                    row = github_store.issue_row(node, repository["id"])
                    if row is None:
                        continue
                    await github_store.upsert_users(session, github_store.actors_in(node))
                    await github_store.upsert_issue(session, row)
                    comments = [
                        github_store.comment_row(c, issue_id=row["id"])
                        for c in (node.get("comments") or {}).get("nodes") or []
                        if c and c.get("id")
                    ]
                    counts.comments += await github_store.upsert_comments(session, comments)
                    await github_store.upsert_reactions(
                        session,
                        [
                            github_store.reaction_row(r, "issue", row["id"])
                            for r in (node.get("reactions") or {}).get("nodes") or []
                            if r and r.get("id")
                        ],
                    )
                    counts.issues += 1
                    counts.bump(ISSUES_RESOURCE, row["github_updated_at"])

    async def _sync_pull_requests(
        self, repository: dict[str, Any], since: str | None, counts: SyncCounts
    ) -> None:
        """Newest first; stops at the first page entirely older than ``since``."""
        since_at = parse_github_datetime(since)
        owner, name = repository["nameWithOwner"].split("/", 1)
        request = GraphQLRequest(
            query=REPOSITORY_PULL_REQUESTS,
            variables={"owner": owner, "name": name},
            label=f"pull requests of {repository['nameWithOwner']}",
        )
        db = await self._get_db()
        async for page in iter_connection_pages(
            self.fetcher, request, ("repository", "pullRequests")
        ):
            fresh = [
                node for node in page
                if since_at is None
                or (parse_github_datetime(node.get("updatedAt")) or since_at) >= since_at
            ]
            async with db.session() as session:
                for node in fresh:
                    row = github_store.pull_request_row(node, repository["id"])
                    await github_store.upsert_users(session, github_store.actors_in(node))
                    await github_store.upsert_pull_request(session, row)
                    await github_store.replace_pull_request_issues(
                        session, row["id"], github_store.linked_issue_rows(node)
                    )
                    reviews = [
                        github_store.review_row(r, row["id"])
                        for r in (node.get("reviews") or {}).get("nodes") or []
                        if r and r.get("id")
                    ]
                    counts.reviews += await github_store.upsert_reviews(session, reviews)
                    comments = [
                        github_store.comment_row(c, pull_request_id=row["id"])
                        for c in (node.get("comments") or {}).get("nodes") or []
                        if c and c.get("id")
                    ]
                    counts.comments += await github_store.upsert_comments(session, comments)
                    counts.pull_requests += 1
                    counts.bump(PULL_REQUESTS_RESOURCE, row["github_updated_at"])
            if len(fresh) < len(page):
                break
