"""Tests for GitHubClient using an in-process httpx transport."""

import json
from unittest.mock import patch

import httpx
import pytest

from ghmirror.core.github.client import (
    GitHubClient,
    GitHubClientConfig,
    GitHubRequestError,
    GraphQLRequest,
    create_github_client,
)
from ghmirror.core.storage.exceptions import ConfigurationError


def make_client(handler) -> GitHubClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubClient(GitHubClientConfig(token="t0ken"), http_client=http)


class TestExecute:
    """Tests for GitHubClient.execute."""

    @pytest.mark.asyncio
    async def test_returns_data_and_sends_variables(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"data": {"viewer": {"login": "octocat"}}})

        async with make_client(handler) as client:
            data = await client.execute(
                GraphQLRequest(query="query($a: Int)", variables={"a": 1}, operation_name="Q")
            )

        assert data == {"viewer": {"login": "octocat"}}
        assert seen == {"query": "query($a: Int)", "variables": {"a": 1}, "operationName": "Q"}

    @pytest.mark.asyncio
    async def test_graphql_errors_raise_with_partial_data(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "data": {"nodes": [None, {"id": "I_2"}]},
                    "errors": [{"type": "NOT_FOUND", "message": "Could not resolve to a node"}],
                },
            )

        async with make_client(handler) as client:
            with pytest.raises(GitHubRequestError) as exc_info:
                await client.execute(GraphQLRequest(query="q", label="nodes"))

        error = exc_info.value
        assert "Could not resolve" in str(error)
        assert error.errors[0]["type"] == "NOT_FOUND"
        assert error.data == {"nodes": [None, {"id": "I_2"}]}

    @pytest.mark.asyncio
    async def test_http_error_keeps_lowercased_headers(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
                json={"message": "API rate limit exceeded"},
            )

        async with make_client(handler) as client:
            with pytest.raises(GitHubRequestError) as exc_info:
                await client.execute(GraphQLRequest(query="q"))

        error = exc_info.value
        assert error.status_code == 403
        assert error.headers["x-ratelimit-remaining"] == "0"
        assert "rate limit exceeded" in str(error)

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        async with make_client(handler) as client:
            with pytest.raises(GitHubRequestError) as exc_info:
                await client.execute(GraphQLRequest(query="q"))

        assert exc_info.value.status_code is None


class TestResolveRedirect:
    """Tests for GitHubClient.resolve_redirect."""

    @pytest.mark.asyncio
    async def test_follows_redirect_chain(self) -> None:
        hops = {
            "https://github.com/acme/old/issues/7": "https://github.com/acme/mid/issues/7",
            "https://github.com/acme/mid/issues/7": "/acme/new/issues/7",
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "HEAD"
            target = hops.get(str(request.url))
            if target:
                return httpx.Response(301, headers={"Location": target})
            return httpx.Response(200)

        async with make_client(handler) as client:
            final = await client.resolve_redirect("https://github.com/acme/old/issues/7")

        assert final == "https://github.com/acme/new/issues/7"

    @pytest.mark.asyncio
    async def test_no_redirect_returns_none(self) -> None:
        async with make_client(lambda request: httpx.Response(200)) as client:
            assert await client.resolve_redirect("https://github.com/acme/a/issues/1") is None

    @pytest.mark.asyncio
    async def test_unreachable_returns_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down")

        async with make_client(handler) as client:
            assert await client.resolve_redirect("https://github.com/acme/a/issues/1") is None


def test_create_github_client_requires_token() -> None:
    with patch("ghmirror.core.github.client.get_github_config", return_value={}):
        with pytest.raises(ConfigurationError):
            create_github_client()
