"""Unit tests for RepositoryRealigner decision logic (no database)."""

from unittest.mock import AsyncMock

import pytest

from ghmirror.core.github.client import GitHubRequestError
from ghmirror.core.github.queries import NODE_DETAILS, RESOURCE_BY_URL
from ghmirror.core.github.realignment import (
    Candidate,
    RepositoryRealigner,
    chunked,
    is_repository_mismatch,
    repository_slug_from_url,
)


def issue_node(node_id: str, repo: str, number: int = 7) -> dict:
    return {
        "__typename": "Issue",
        "id": node_id,
        "number": number,
        "title": "Broken build",
        "state": "OPEN",
        "url": f"https://github.com/{repo}/issues/{number}",
        "repository": {"id": f"R_{repo}", "nameWithOwner": repo},
    }


class FakeFetcher:
    """Answers node batches and URL lookups from dictionaries."""

    def __init__(self, nodes=None, by_url=None, partial_error=False):
        self.nodes = nodes or {}
        self.by_url = by_url or {}
        self.partial_error = partial_error
        self.batches = []

    async def fetch(self, request):
        if request.query == NODE_DETAILS:
            ids = request.variables["ids"]
            self.batches.append(list(ids))
            data = {"nodes": [self.nodes.get(i) for i in ids]}
            if self.partial_error and None in data["nodes"]:
                raise GitHubRequestError(
                    "Could not resolve to a node",
                    errors=[{"type": "NOT_FOUND"}],
                    data=data,
                )
            return data
        if request.query == RESOURCE_BY_URL:
            node_id = self.by_url.get(request.variables["url"])
            return {"resource": {"__typename": "Issue", "id": node_id} if node_id else None}
        raise AssertionError("unexpected query")


def make_store(candidates, project_match=None):
    store = AsyncMock()
    store.fetch_candidates = AsyncMock(return_value=candidates)
    store.find_issue_by_project_items = AsyncMock(return_value=project_match)
    return store


class TestHelpers:
    def test_repository_slug_from_url(self) -> None:
        assert repository_slug_from_url("https://github.com/acme/api/issues/3") == "acme/api"
        assert repository_slug_from_url("https://github.com/orgs/acme/discussions/1") is None
        assert repository_slug_from_url("https://example.com/acme/api") is None
        assert repository_slug_from_url(None) is None

    def test_is_repository_mismatch_ignores_case(self) -> None:
        assert not is_repository_mismatch("Acme/API", "https://github.com/acme/api/issues/3")
        assert is_repository_mismatch("acme/old", "https://github.com/acme/new/issues/3")
        assert not is_repository_mismatch(None, "https://github.com/acme/new/issues/3")

    def test_chunked(self) -> None:
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunked([1, 2], 0) == [[1, 2]]


class TestRun:
    """Tests for RepositoryRealigner.run."""

    @pytest.mark.asyncio
    async def test_same_id_new_repository_updates_in_place(self) -> None:
        candidate = Candidate(
            id="I_1",
            repository_id="R_acme/old",
            stored_repo="acme/old",
            url="https://github.com/acme/new/issues/7",
            mismatch=True,
        )
        store = make_store([candidate])
        hook = AsyncMock()
        realigner = RepositoryRealigner(
            FakeFetcher(nodes={"I_1": issue_node("I_1", "acme/new")}), store, refresh_hook=hook
        )

        summary = await realigner.run()

        store.apply_in_place.assert_awaited_once()
        node, url = store.apply_in_place.await_args.args
        assert node["repository"]["nameWithOwner"] == "acme/new"
        assert url == "https://github.com/acme/new/issues/7"
        store.migrate_identity.assert_not_awaited()
        assert summary.updated == 1
        assert summary.migrated == 0
        hook.assert_awaited_once_with(["I_1"])

    @pytest.mark.asyncio
    async def test_unknown_id_resolved_by_url_migrates(self) -> None:
        url = "https://github.com/acme/new/issues/7"
        candidate = Candidate(
            id="I_old", repository_id="R_acme/old", stored_repo="acme/old", url=url, mismatch=True
        )
        store = make_store([candidate])
        fetcher = FakeFetcher(
            nodes={"I_new": issue_node("I_new", "acme/new")}, by_url={url: "I_new"}
        )

        summary = await RepositoryRealigner(fetcher, store).run()

        store.migrate_identity.assert_awaited_once()
        old_id, node, new_url = store.migrate_identity.await_args.args
        assert old_id == "I_old"
        assert node["id"] == "I_new"
        assert new_url == url
        assert summary.migrated == 1
        assert summary.updated == 1

    @pytest.mark.asyncio
    async def test_redirect_fallback(self) -> None:
        old_url = "https://github.com/acme/old/issues/7"
        new_url = "https://github.com/acme/new/issues/9"
        candidate = Candidate(
            id="I_old", repository_id="R_acme/old", stored_repo="acme/old", url=old_url
        )
        store = make_store([candidate])
        fetcher = FakeFetcher(
            nodes={"I_new": issue_node("I_new", "acme/new", 9)}, by_url={new_url: "I_new"}
        )
        resolve_redirect = AsyncMock(return_value=new_url)

        await RepositoryRealigner(fetcher, store, resolve_redirect).run()

        resolve_redirect.assert_awaited_once_with(old_url)
        assert store.migrate_identity.await_args.args[2] == new_url

    @pytest.mark.asyncio
    async def test_project_item_fallback(self) -> None:
        candidate = Candidate(
            id="I_old",
            repository_id="R_acme/old",
            stored_repo="acme/old",
            url=None,
            project_item_ids=["PVTI_1"],
        )
        store = make_store([candidate], project_match="I_sibling")
        fetcher = FakeFetcher(nodes={"I_sibling": issue_node("I_sibling", "acme/new")})

        summary = await RepositoryRealigner(fetcher, store).run()

        store.find_issue_by_project_items.assert_awaited_once_with("I_old", ["PVTI_1"])
        assert store.migrate_identity.await_args.args[1]["id"] == "I_sibling"
        assert summary.migrated == 1

    @pytest.mark.asyncio
    async def test_unresolved_candidate_is_skipped(self) -> None:
        candidate = Candidate(
            id="I_gone", repository_id="R_x", stored_repo="acme/old",
            url="https://github.com/acme/new/issues/1",
        )
        store = make_store([candidate])

        summary = await RepositoryRealigner(FakeFetcher(partial_error=True), store).run()

        assert summary.unresolved == ["I_gone"]
        store.apply_in_place.assert_not_awaited()
        store.migrate_identity.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self) -> None:
        candidate = Candidate(
            id="I_1", repository_id="R_acme/old", stored_repo="acme/old",
            url="https://github.com/acme/new/issues/7", mismatch=True,
        )
        store = make_store([candidate])
        hook = AsyncMock()
        realigner = RepositoryRealigner(
            FakeFetcher(nodes={"I_1": issue_node("I_1", "acme/new")}), store, refresh_hook=hook
        )

        summary = await realigner.run(dry_run=True)

        assert summary.dry_run is True
        assert summary.updated == 0
        store.apply_in_place.assert_not_awaited()
        hook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unchanged_candidate_is_left_alone(self) -> None:
        candidate = Candidate(
            id="I_1", repository_id="R_acme/new", stored_repo="acme/new",
            url="https://github.com/acme/new/issues/7",
        )
        store = make_store([candidate])

        summary = await RepositoryRealigner(
            FakeFetcher(nodes={"I_1": issue_node("I_1", "acme/new")}), store
        ).run(ids=["I_1"])

        store.fetch_candidates.assert_awaited_once()
        assert store.fetch_candidates.await_args.args[1] == ["I_1"]
        assert summary.updated == 0

    @pytest.mark.asyncio
    async def test_batches_follow_chunk_size(self) -> None:
        candidates = [
            Candidate(id=f"I_{n}", repository_id="R_acme/new", stored_repo="acme/new",
                      url=f"https://github.com/acme/new/issues/{n}")
            for n in range(5)
        ]
        fetcher = FakeFetcher(
            nodes={f"I_{n}": issue_node(f"I_{n}", "acme/new", n) for n in range(5)}
        )

        await RepositoryRealigner(fetcher, make_store(candidates)).run(chunk_size=2)

        assert fetcher.batches == [["I_0", "I_1"], ["I_2", "I_3"], ["I_4"]]

    @pytest.mark.asyncio
    async def test_no_candidates(self) -> None:
        summary = await RepositoryRealigner(FakeFetcher(), make_store([])).run()
        assert summary.candidates == 0


class BacklogStore:
    """Mismatched rows served by pages; fixed rows drop out of the scan."""

    def __init__(self, candidates):
        self.pending = {c.id: c for c in candidates}
        self.calls = []

    async def fetch_candidates(self, limit, ids=None, exclude_ids=None):
        self.calls.append(list(exclude_ids or []))
        excluded = set(exclude_ids or [])
        return [c for c in self.pending.values() if c.id not in excluded][:limit]

    async def find_issue_by_project_items(self, exclude_id, project_item_ids):
        return None

    async def apply_in_place(self, node, url):
        self.pending.pop(node["id"], None)

    async def migrate_identity(self, old_id, node, url):
        self.pending.pop(old_id, None)


def stale_candidate(n: int) -> Candidate:
    return Candidate(
        id=f"I_{n}", repository_id="R_acme/old", stored_repo="acme/old",
        url=f"https://github.com/acme/new/issues/{n}", mismatch=True,
    )


class TestMultiPass:
    """A backlog larger than one pass is drained within a single run."""

    @pytest.mark.asyncio
    async def test_backlog_beyond_limit_is_drained(self) -> None:
        store = BacklogStore([stale_candidate(n) for n in range(3)])
        fetcher = FakeFetcher(
            nodes={f"I_{n}": issue_node(f"I_{n}", "acme/new", n) for n in range(3)}
        )

        summary = await RepositoryRealigner(fetcher, store).run(limit=2)

        assert store.pending == {}
        assert summary.candidates == 3
        assert summary.updated == 3
        assert summary.passes == 2

    @pytest.mark.asyncio
    async def test_unresolved_rows_are_not_rescanned(self) -> None:
        store = BacklogStore([stale_candidate(n) for n in range(3)])
        # I_0 never resolves and stays mismatched
        fetcher = FakeFetcher(
            nodes={f"I_{n}": issue_node(f"I_{n}", "acme/new", n) for n in (1, 2)}
        )

        summary = await RepositoryRealigner(fetcher, store).run(limit=1)

        assert summary.unresolved == ["I_0"]
        assert summary.updated == 2
        assert list(store.pending) == ["I_0"]
        assert store.calls[-1] == ["I_0", "I_1", "I_2"]
        assert len(store.calls) == 4

    @pytest.mark.asyncio
    async def test_refresh_hook_runs_once_for_all_passes(self) -> None:
        store = BacklogStore([stale_candidate(n) for n in range(3)])
        fetcher = FakeFetcher(
            nodes={f"I_{n}": issue_node(f"I_{n}", "acme/new", n) for n in range(3)}
        )
        hook = AsyncMock()

        await RepositoryRealigner(fetcher, store, refresh_hook=hook).run(limit=2)

        hook.assert_awaited_once_with(["I_0", "I_1", "I_2"])
