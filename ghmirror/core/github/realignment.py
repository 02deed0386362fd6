"""
Repository realignment.

Finds issues whose stored URL names a different repository than the
repository row they point at (typically after a transfer), re-resolves
the canonical upstream node and fixes the local rows. When upstream now
knows the issue under a different node id, every dependent row moves to
the new id inside a single transaction.
"""

import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ghmirror.core.github.client import GitHubRequestError, GraphQLRequest
from ghmirror.core.github.queries import NODE_DETAILS, RESOURCE_BY_URL
from ghmirror.core.services import github_store
from ghmirror.core.storage.postgres import Database, get_db

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 500
DEFAULT_CHUNK_SIZE = 25
GITHUB_WEB_PREFIX = "https://github.com/"
GITHUB_ORG_DISCUSSIONS_PREFIX = "https://github.com/orgs/"

MISMATCH_SQL = """
    r.name_with_owner IS NOT NULL
    AND COALESCE(i.data->>'url', '') <> ''
    AND (i.data->>'url') ILIKE 'https://github.com/%'
    AND NOT (i.data->>'url') ILIKE CONCAT('https://github.com/', r.name_with_owner, '/%')
    AND NOT (i.data->>'url') ILIKE 'https://github.com/orgs/%'
"""

CANDIDATE_COLUMNS = f"""
    i.id,
    i.repository_id,
    r.name_with_owner AS stored_repo,
    i.data->>'url' AS url,
    ARRAY(
        SELECT project_node->>'id'
        FROM jsonb_array_elements(
            COALESCE(i.data->'projectItems'->'nodes', '[]'::jsonb)
        ) AS project_node
        WHERE project_node->>'id' IS NOT NULL
    ) AS project_item_ids,
    ({MISMATCH_SQL}) AS mismatch
"""

# Statements run in order inside one transaction; :old/:new are issue ids
MIGRATION_STATEMENTS = [
    """
    INSERT INTO issues (
        id, number, repository_id, author_id, title, state,
        github_created_at, github_updated_at, github_closed_at, data, updated_at
    )
    SELECT CAST(:new AS text), number, repository_id, author_id, title, state,
           github_created_at, github_updated_at, github_closed_at, data, NOW()
    FROM issues WHERE id = :old
    ON CONFLICT (id) DO NOTHING
    """,
    "UPDATE comments SET issue_id = :new WHERE issue_id = :old",
    "UPDATE reactions SET subject_id = :new WHERE subject_id = :old",
    "UPDATE activity_issue_status_history SET issue_id = :new WHERE issue_id = :old",
    """
    DELETE FROM activity_issue_project_overrides
    WHERE issue_id = :new
      AND EXISTS (
          SELECT 1 FROM activity_issue_project_overrides WHERE issue_id = :old
      )
    """,
    "UPDATE activity_issue_project_overrides SET issue_id = :new WHERE issue_id = :old",
    """
    UPDATE pull_request_issues pri SET issue_id = :new
    WHERE pri.issue_id = :old
      AND NOT EXISTS (
          SELECT 1 FROM pull_request_issues other
          WHERE other.pull_request_id = pri.pull_request_id AND other.issue_id = :new
      )
    """,
    "DELETE FROM pull_request_issues WHERE issue_id = :old",
    """
    UPDATE activity_saved_filters
    SET payload = replace(payload::text, :old_json, :new_json)::jsonb,
        updated_at = NOW()
    WHERE strpos(payload::text, :old_json) > 0
    """,
    "DELETE FROM issues WHERE id = :old",
]


@dataclass
class Candidate:
    """Local issue flagged as possibly pointing at a stale repository."""

    id: str
    repository_id: str | None
    stored_repo: str | None
    url: str | None
    project_item_ids: list[str] = field(default_factory=list)
    mismatch: bool = False


@dataclass
class RealignmentSummary:
    candidates: int = 0
    updated: int = 0
    migrated: int = 0
    unresolved: list[str] = field(default_factory=list)
    dry_run: bool = False
    passes: int = 0


def repository_slug_from_url(url: str | None) -> str | None:
    """
    Extract ``owner/name`` from a github.com issue URL.

    Organization discussion URLs (``/orgs/...``) carry no repository and
    yield None.
    """
    if not url or not url.lower().startswith(GITHUB_WEB_PREFIX):
        return None
    if url.lower().startswith(GITHUB_ORG_DISCUSSIONS_PREFIX):
        return None
    parts = url[len(GITHUB_WEB_PREFIX):].split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    return f"{parts[0]}/{parts[1]}"


def is_repository_mismatch(stored_repo: str | None, url: str | None) -> bool:
    """True when the URL names a different repository than ``stored_repo``."""
    slug = repository_slug_from_url(url)
    if stored_repo is None or slug is None:
        return False
    return slug.lower() != stored_repo.lower()


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    if size <= 0:
        return [items]
    return [items[i:i + size] for i in range(0, len(items), size)]


class RealignmentStore:
    """Database side of realignment."""

    def __init__(self, db: Database | None = None) -> None:
        self._db = db

    async def _get_db(self) -> Database:
        if self._db is None:
            self._db = await get_db()
        return self._db

    async def fetch_candidates(
        self,
        limit: int,
        ids: Sequence[str] | None = None,
        exclude_ids: Sequence[str] | None = None,
    ) -> list[Candidate]:
        """
        Load candidates: mismatched issues, or exactly ``ids`` when given.

        ``exclude_ids`` are left out of the scan; a multi-pass run uses it
        to skip rows it already looked at.
        """
        if ids:
            unique_ids = list(dict.fromkeys(i for i in ids if i))
            sql = text(
                f"""
                SELECT {CANDIDATE_COLUMNS}
                FROM issues i
                LEFT JOIN repositories r ON r.id = i.repository_id
                WHERE i.id = ANY(:ids)
                LIMIT :limit
                """
            )
            params: dict[str, Any] = {"ids": unique_ids, "limit": limit}
        else:
            sql = text(
                f"""
                SELECT {CANDIDATE_COLUMNS}
                FROM issues i
                LEFT JOIN repositories r ON r.id = i.repository_id
                WHERE {MISMATCH_SQL}
                  AND NOT (i.id = ANY(:exclude_ids))
                ORDER BY i.github_updated_at DESC, i.id
                LIMIT :limit
                """
            )
            params = {"limit": limit, "exclude_ids": list(exclude_ids or [])}

        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(sql, params)
            rows = result.mappings().all()

        return [
            Candidate(
                id=row["id"],
                repository_id=row["repository_id"],
                stored_repo=row["stored_repo"],
                url=row["url"],
                project_item_ids=list(row["project_item_ids"] or []),
                mismatch=bool(row["mismatch"]),
            )
            for row in rows
        ]

    async def find_issue_by_project_items(
        self, exclude_id: str, project_item_ids: Sequence[str]
    ) -> str | None:
        """Another local issue carrying one of the same project item ids."""
        item_ids = list(dict.fromkeys(i for i in project_item_ids if i))
        if not item_ids:
            return None

        db = await self._get_db()
        async with db.session() as session:
            result = await session.execute(
                text(
                    """
                    SELECT issue.id
                    FROM issues AS issue
                    CROSS JOIN LATERAL jsonb_array_elements(
                        COALESCE(issue.data->'projectItems'->'nodes', '[]'::jsonb)
                    ) AS project_node
                    WHERE issue.id <> :exclude_id
                      AND project_node->>'id' = ANY(:item_ids)
                    ORDER BY issue.github_updated_at DESC
                    LIMIT 1
                    """
                ),
                {"exclude_id": exclude_id, "item_ids": item_ids},
            )
            return result.scalar_one_or_none()

    async def _write_canonical(
        self, session: AsyncSession, node: dict[str, Any], url: str | None
    ) -> dict[str, Any]:
        await github_store.upsert_repository(session, node["repository"])
        author = github_store.actor_row(node.get("author"))
        if author is not None:
            await github_store.upsert_users(session, [author])

        row = github_store.issue_row(node)
        if row is None:
            raise ValueError(f"Issue node {node.get('id')} has no repository")
        if url:
            row["data"] = {**row["data"], "url": url}
        await github_store.upsert_issue(session, row)
        return row

    async def apply_in_place(self, node: dict[str, Any], url: str | None) -> None:
        """Overwrite denormalized fields of an issue whose id is unchanged."""
        db = await self._get_db()
        async with db.session() as session:
            await self._write_canonical(session, node, url)

    async def migrate_identity(
        self, old_id: str, node: dict[str, Any], url: str | None
    ) -> None:
        """
        Move an issue and everything referencing it to ``node['id']``.

        One transaction: any failure rolls every statement back and the
        old row stays untouched.
        """
        new_id = node["id"]
        params = {
            "old": old_id,
            "new": new_id,
            "old_json": json.dumps(old_id),
            "new_json": json.dumps(new_id),
        }
        db = await self._get_db()
        async with db.session() as session:
            for statement in MIGRATION_STATEMENTS:
                await session.execute(text(statement), params)
            await self._write_canonical(session, node, url)

        logger.info(f"Migrated issue id {old_id} -> {new_id}")


class RepositoryRealigner:
    """
    Detects and repairs repository/identity drift of mirrored issues.

    Usage:
        realigner = RepositoryRealigner(fetcher, RealignmentStore(), client.resolve_redirect)
        summary = await realigner.run(dry_run=True)
    """

    def __init__(
        self,
        fetcher: Any,
        store: RealignmentStore,
        resolve_redirect: Callable[[str], Awaitable[str | None]] | None = None,
        refresh_hook: Callable[[list[str]], Awaitable[None]] | None = None,
    ):
        self.fetcher = fetcher
        self.store = store
        self.resolve_redirect = resolve_redirect
        self.refresh_hook = refresh_hook

    async def fetch_nodes(self, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """
        Batch-fetch issue nodes by id.

        Ids that no longer resolve are simply missing from the result; a
        partial response that arrives with errors is still used.
        """
        if not ids:
            return {}
        request = GraphQLRequest(
            query=NODE_DETAILS, variables={"ids": list(ids)}, label="realign nodes"
        )
        try:
            data = await self.fetcher.fetch(request)
        except GitHubRequestError as e:
            if not e.data:
                raise
            data = e.data

        nodes = {}
        for node in data.get("nodes") or []:
            if node and node.get("__typename") == "Issue" and node.get("id"):
                nodes[node["id"]] = node
        return nodes

    async def lookup_id_by_url(self, url: str) -> str | None:
        request = GraphQLRequest(
            query=RESOURCE_BY_URL, variables={"url": url}, label="realign url lookup"
        )
        try:
            data = await self.fetcher.fetch(request)
        except GitHubRequestError as e:
            if not e.data:
                raise
            data = e.data
        resource = data.get("resource") or {}
        if resource.get("__typename") == "Issue" and resource.get("id"):
            return resource["id"]
        return None

    async def _node_by_url(self, url: str) -> dict[str, Any] | None:
        node_id = await self.lookup_id_by_url(url)
        if not node_id:
            return None
        return (await self.fetch_nodes([node_id])).get(node_id)

    async def resolve(
        self, candidate: Candidate, nodes: dict[str, dict[str, Any]]
    ) -> tuple[dict[str, Any] | None, str | None]:
        """
        Find the canonical node for a candidate.

        Tries, in order: the batch result by id, the stored URL, the URL
        the stored one redirects to, and another local issue sharing a
        project item.

        Returns:
            (node, resolved_url); node is None when nothing resolved.
        """
        node = nodes.get(candidate.id)
        if node:
            return node, None

        if candidate.url:
            node = await self._node_by_url(candidate.url)
            if node:
                return node, candidate.url

            if self.resolve_redirect is not None:
                redirected = await self.resolve_redirect(candidate.url)
                if redirected and redirected != candidate.url:
                    node = await self._node_by_url(redirected)
                    if node:
                        return node, redirected

        mapped_id = await self.store.find_issue_by_project_items(
            candidate.id, candidate.project_item_ids
        )
        if mapped_id:
            node = (await self.fetch_nodes([mapped_id])).get(mapped_id)
            if node:
                return node, node.get("url")

        return None, None

    async def run(
        self,
        dry_run: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        limit: int = DEFAULT_LIMIT,
        ids: Sequence[str] | None = None,
    ) -> RealignmentSummary:
        """
        Realign until the mismatch backlog is drained.

        Scans in passes of at most ``limit`` candidates and starts another
        pass while the last one came back full. Every candidate is
        examined once per run, so unresolved rows do not loop.

        Args:
            dry_run: Detect and log only; write nothing.
            chunk_size: Node ids per batched lookup.
            limit: Maximum candidates loaded per pass.
            ids: Realign exactly these issue ids instead of scanning.

        Returns:
            Counts of candidates, updated and migrated issues, plus the
            ids that could not be resolved.
        """
        summary = RealignmentSummary(dry_run=dry_run)
        seen: set[str] = set()
        updated_ids: list[str] = []

        while True:
            loaded = await self.store.fetch_candidates(
                limit, ids, exclude_ids=sorted(seen)
            )
            candidates = [c for c in loaded if c.id not in seen]
            if not candidates:
                break

            summary.passes += 1
            summary.candidates += len(candidates)
            seen.update(c.id for c in candidates)
            logger.info(
                f"Realignment pass {summary.passes}: {len(candidates)} candidate "
                f"issues (dry_run={dry_run})"
            )
            for group in chunked(candidates, chunk_size):
                updated_ids.extend(await self._realign_group(group, summary, dry_run))

            if ids or len(loaded) < limit:
                break

        if not summary.candidates:
            logger.info("No repository mismatches detected")
            return summary

        summary.updated = len(updated_ids)
        if updated_ids and self.refresh_hook is not None:
            await self.refresh_hook(updated_ids)

        logger.info(
            f"Realignment done: {summary.candidates} candidates in {summary.passes} "
            f"passes, {summary.updated} updated, {summary.migrated} migrated, "
            f"{len(summary.unresolved)} unresolved"
        )
        return summary

    async def _realign_group(
        self, group: Sequence[Candidate], summary: RealignmentSummary, dry_run: bool
    ) -> list[str]:
        """Resolve and fix one chunk; returns the ids that were written."""
        updated_ids: list[str] = []
        nodes = await self.fetch_nodes([c.id for c in group])
        for candidate in group:
            node, resolved_url = await self.resolve(candidate, nodes)
            repo = (node or {}).get("repository") or {}
            if not node or not repo.get("id") or not repo.get("nameWithOwner"):
                logger.warning(
                    f"Issue {candidate.id} could not be resolved "
                    f"(url={candidate.url or 'unknown'}), skipping"
                )
                summary.unresolved.append(candidate.id)
                continue

            new_url = resolved_url or node.get("url") or candidate.url
            id_changed = node["id"] != candidate.id
            changed = (
                id_changed
                or candidate.repository_id != repo["id"]
                or candidate.stored_repo != repo["nameWithOwner"]
                or (candidate.url or "") != (new_url or "")
            )
            if not changed:
                if candidate.mismatch:
                    logger.info(
                        f"{candidate.id}: canonical data still matches "
                        f"{repo['nameWithOwner']}, skipping"
                    )
                continue

            logger.info(
                f"{node['id']}: repo {candidate.stored_repo or 'unknown'} -> "
                f"{repo['nameWithOwner']}, url {candidate.url or 'unknown'} -> "
                f"{new_url or 'unknown'}, id_changed={id_changed}"
            )
            if dry_run:
                continue

            if id_changed:
                await self.store.migrate_identity(candidate.id, node, new_url)
                summary.migrated += 1
            else:
                await self.store.apply_in_place(node, new_url)
            updated_ids.append(node["id"])
        return updated_ids
