"""Tests for the node-to-row mappers of the mirror store."""

from datetime import datetime

from ghmirror.core.services import github_store


def pr_node() -> dict:
    return {
        "id": "PR_1",
        "number": 12,
        "title": "Fix login",
        "state": "MERGED",
        "merged": True,
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-02T08:30:00Z",
        "mergedAt": "2024-01-02T08:30:00Z",
        "author": {"id": "U_1", "login": "octocat"},
        "assignees": {"nodes": [{"id": "U_2", "login": "hubot"}, None]},
        "closingIssuesReferences": {
            "nodes": [
                {
                    "id": "I_1",
                    "number": 3,
                    "title": "Login broken",
                    "state": "OPEN",
                    "url": "https://github.com/acme/api/issues/3",
                    "repository": {"nameWithOwner": "acme/api"},
                },
                {"id": "I_1", "number": 3},
                None,
            ]
        },
        "reviews": {"nodes": [{"id": "RV_1", "author": {"id": "U_3"}}]},
        "comments": {"nodes": [{"id": "C_1", "author": {"id": "U_1"}}]},
    }


class TestRowMappers:
    """Tests for the row builders."""

    def test_issue_row_prefers_node_repository(self) -> None:
        node = {
            "id": "I_1",
            "number": 3,
            "title": "Login broken",
            "state": "OPEN",
            "createdAt": "2024-01-01T00:00:00Z",
            "repository": {"id": "R_node"},
            "comments": {"nodes": [{"id": "C_1"}]},
        }

        row = github_store.issue_row(node, repository_id="R_fallback")

        assert row["repository_id"] == "R_node"
        assert row["github_created_at"] == datetime(2024, 1, 1)
        assert row["github_updated_at"] == row["github_created_at"]
        assert "comments" not in row["data"]

    def test_issue_row_without_repository(self) -> None:
        assert github_store.issue_row({"id": "I_1", "number": 1}) is None

    def test_pull_request_row_drops_nested_pages(self) -> None:
        row = github_store.pull_request_row(pr_node(), "R_1")

        assert row["merged"] is True
        assert row["github_merged_at"] == datetime(2024, 1, 2, 8, 30)
        assert "reviews" not in row["data"]
        assert "comments" not in row["data"]
        assert "closingIssuesReferences" in row["data"]

    def test_linked_issue_rows_dedupes(self) -> None:
        rows = github_store.linked_issue_rows(pr_node())

        assert rows == [
            {
                "issue_id": "I_1",
                "issue_number": 3,
                "issue_title": "Login broken",
                "issue_state": "OPEN",
                "issue_url": "https://github.com/acme/api/issues/3",
                "issue_repository": "acme/api",
            }
        ]

    def test_actors_in_collects_every_author(self) -> None:
        ids = [row["id"] for row in github_store.actors_in(pr_node())]
        assert ids == ["U_1", "U_2", "U_1", "U_3"]

    def test_actor_row_requires_id(self) -> None:
        assert github_store.actor_row({"login": "ghost"}) is None
        assert github_store.actor_row(None) is None

    def test_repository_row_derives_name(self) -> None:
        row = github_store.repository_row({"id": "R_1", "nameWithOwner": "acme/api"})
        assert row["name"] == "api"
        assert github_store.repository_row({"id": "R_1"}) is None

    def test_reaction_row(self) -> None:
        row = github_store.reaction_row(
            {"id": "RE_1", "content": "THUMBS_UP", "user": {"id": "U_1"}}, "issue", "I_1"
        )
        assert row["subject_type"] == "issue"
        assert row["user_id"] == "U_1"
        assert row["github_created_at"] is None
