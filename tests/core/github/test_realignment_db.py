"""
Tests for RealignmentStore against PostgreSQL.

Integration tests that require a running PostgreSQL instance.
Run: pytest tests/core/github/test_realignment_db.py -v
"""

from datetime import datetime
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import select

from ghmirror.core.github import realignment
from ghmirror.core.github.realignment import RealignmentStore
from ghmirror.core.models import (
    Comment,
    Issue,
    IssueProjectOverride,
    IssueStatusHistory,
    PullRequestIssue,
    Reaction,
    SavedFilter,
)
from ghmirror.core.services import github_store

OLD_REPO = {"id": "R_old", "name": "old", "nameWithOwner": "acme/old"}
NEW_REPO = {"id": "R_new", "name": "new", "nameWithOwner": "acme/new"}


def canonical_node(node_id: str) -> dict:
    return {
        "__typename": "Issue",
        "id": node_id,
        "number": 7,
        "title": "Broken build",
        "state": "OPEN",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-02-01T00:00:00Z",
        "url": "https://github.com/acme/new/issues/7",
        "author": {"id": "U_1", "login": "octocat"},
        "repository": NEW_REPO,
    }


@pytest_asyncio.fixture
async def seeded(clean_database):
    """One transferred issue still pointing at the old repository, with dependents."""
    async with clean_database.session() as session:
        await github_store.upsert_repository(session, OLD_REPO)
        await github_store.upsert_issue(
            session,
            {
                "id": "I_old",
                "number": 3,
                "repository_id": "R_old",
                "title": "Broken build",
                "state": "OPEN",
                "github_created_at": datetime(2024, 1, 1),
                "github_updated_at": datetime(2024, 1, 2),
                "data": {
                    "url": "https://github.com/acme/new/issues/7",
                    "projectItems": {"nodes": [{"id": "PVTI_1"}]},
                },
            },
        )
        await github_store.upsert_pull_request(
            session,
            github_store.pull_request_row(
                {"id": "PR_1", "number": 1, "createdAt": "2024-01-01T00:00:00Z"}, "R_old"
            ),
        )
        await github_store.replace_pull_request_issues(
            session, "PR_1", [{"issue_id": "I_old", "issue_number": 3}]
        )
        await github_store.upsert_comments(
            session,
            [github_store.comment_row({"id": "C_1", "createdAt": "2024-01-01T00:00:00Z"},
                                      issue_id="I_old")],
        )
        await github_store.upsert_reactions(
            session, [github_store.reaction_row({"id": "RE_1"}, "issue", "I_old")]
        )
        session.add(
            IssueStatusHistory(
                issue_id="I_old", status="todo", occurred_at=datetime(2024, 1, 1),
                source="todo_project",
            )
        )
        session.add(IssueProjectOverride(issue_id="I_old", priority_value="P1"))
        session.add(
            SavedFilter(
                id="F_1", user_id="U_1", name="mine",
                payload={"issueIds": ["I_old", "I_other"]},
            )
        )
    return clean_database


async def fetch_all(db, model):
    async with db.session() as session:
        return list((await session.execute(select(model))).scalars().all())


class TestFetchCandidates:
    """Tests for RealignmentStore.fetch_candidates."""

    @pytest.mark.asyncio
    async def test_mismatch_is_detected(self, seeded) -> None:
        candidates = await RealignmentStore(seeded).fetch_candidates(limit=10)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.id == "I_old"
        assert candidate.stored_repo == "acme/old"
        assert candidate.project_item_ids == ["PVTI_1"]
        assert candidate.mismatch is True

    @pytest.mark.asyncio
    async def test_explicit_ids(self, seeded) -> None:
        candidates = await RealignmentStore(seeded).fetch_candidates(limit=10, ids=["I_old", "I_old"])
        assert [c.id for c in candidates] == ["I_old"]

    @pytest.mark.asyncio
    async def test_excluded_ids_are_skipped(self, seeded) -> None:
        candidates = await RealignmentStore(seeded).fetch_candidates(
            limit=10, exclude_ids=["I_old"]
        )
        assert candidates == []


class TestApplyInPlace:
    @pytest.mark.asyncio
    async def test_same_id_keeps_row_and_moves_repository(self, seeded) -> None:
        await RealignmentStore(seeded).apply_in_place(
            canonical_node("I_old"), "https://github.com/acme/new/issues/7"
        )

        (issue,) = await fetch_all(seeded, Issue)
        assert issue.id == "I_old"
        assert issue.repository_id == "R_new"
        assert issue.number == 7
        assert len(await fetch_all(seeded, Comment)) == 1


class TestMigrateIdentity:
    """Tests for RealignmentStore.migrate_identity."""

    @pytest.mark.asyncio
    async def test_dependents_follow_new_id(self, seeded) -> None:
        await RealignmentStore(seeded).migrate_identity(
            "I_old", canonical_node("I_new"), "https://github.com/acme/new/issues/7"
        )

        issues = await fetch_all(seeded, Issue)
        assert [i.id for i in issues] == ["I_new"]
        assert issues[0].repository_id == "R_new"
        assert issues[0].data["url"] == "https://github.com/acme/new/issues/7"

        assert [c.issue_id for c in await fetch_all(seeded, Comment)] == ["I_new"]
        assert [r.subject_id for r in await fetch_all(seeded, Reaction)] == ["I_new"]
        assert [h.issue_id for h in await fetch_all(seeded, IssueStatusHistory)] == ["I_new"]
        assert [o.issue_id for o in await fetch_all(seeded, IssueProjectOverride)] == ["I_new"]
        assert [(p.pull_request_id, p.issue_id) for p in await fetch_all(seeded, PullRequestIssue)] == [
            ("PR_1", "I_new")
        ]
        (saved,) = await fetch_all(seeded, SavedFilter)
        assert saved.payload == {"issueIds": ["I_new", "I_other"]}

    @pytest.mark.asyncio
    async def test_failure_leaves_everything_untouched(self, seeded) -> None:
        failing = list(realignment.MIGRATION_STATEMENTS)
        failing.insert(4, "SELECT * FROM table_that_does_not_exist")

        with patch.object(realignment, "MIGRATION_STATEMENTS", failing):
            with pytest.raises(Exception):
                await RealignmentStore(seeded).migrate_identity(
                    "I_old", canonical_node("I_new"), None
                )

        assert [i.id for i in await fetch_all(seeded, Issue)] == ["I_old"]
        assert [c.issue_id for c in await fetch_all(seeded, Comment)] == ["I_old"]
        assert [r.subject_id for r in await fetch_all(seeded, Reaction)] == ["I_old"]
        (saved,) = await fetch_all(seeded, SavedFilter)
        assert saved.payload == {"issueIds": ["I_old", "I_other"]}

    @pytest.mark.asyncio
    async def test_project_item_sibling_lookup(self, seeded) -> None:
        store = RealignmentStore(seeded)
        async with seeded.session() as session:
            await github_store.upsert_issue(
                session,
                {
                    "id": "I_sibling",
                    "number": 7,
                    "repository_id": "R_old",
                    "github_created_at": datetime(2024, 1, 1),
                    "github_updated_at": datetime(2024, 1, 5),
                    "data": {"projectItems": {"nodes": [{"id": "PVTI_1"}]}},
                },
            )

        assert await store.find_issue_by_project_items("I_old", ["PVTI_1"]) == "I_sibling"
        assert await store.find_issue_by_project_items("I_old", []) is None
