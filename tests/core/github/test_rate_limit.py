"""Tests for rate limit classification and the retrying fetcher."""

from unittest.mock import AsyncMock

import pytest

from ghmirror.core.github.client import GitHubRequestError, GraphQLRequest
from ghmirror.core.github.rate_limit import (
    MAX_RATE_LIMIT_DELAY_MS,
    MIN_RATE_LIMIT_DELAY_MS,
    RateLimitedFetcher,
    compute_rate_limit_delay_ms,
    is_rate_limited,
)

NOW_MS = 1_700_000_000_000


def reset_in(seconds: int) -> str:
    return str(NOW_MS // 1000 + seconds)


class TestComputeRateLimitDelay:
    """Tests for compute_rate_limit_delay_ms."""

    def test_reset_three_seconds_away_is_floored(self) -> None:
        headers = {"x-ratelimit-remaining": "0", "x-ratelimit-reset": reset_in(3)}
        assert compute_rate_limit_delay_ms([], headers, NOW_MS) == 5000

    def test_reset_twenty_minutes_away_is_capped(self) -> None:
        headers = {"x-ratelimit-remaining": "0", "x-ratelimit-reset": reset_in(20 * 60)}
        assert compute_rate_limit_delay_ms([], headers, NOW_MS) == 900000

    def test_reset_within_bounds_is_used(self) -> None:
        headers = {"x-ratelimit-remaining": "0", "x-ratelimit-reset": reset_in(60)}
        assert compute_rate_limit_delay_ms([], headers, NOW_MS) == 60_000

    def test_error_code_without_headers_uses_floor(self) -> None:
        errors = [{"message": "slow down", "extensions": {"code": "RATE_LIMITED"}}]
        assert compute_rate_limit_delay_ms(errors, {}, NOW_MS) == MIN_RATE_LIMIT_DELAY_MS

    def test_reset_in_the_past_uses_floor(self) -> None:
        headers = {"x-ratelimit-remaining": "0", "x-ratelimit-reset": reset_in(-30)}
        assert compute_rate_limit_delay_ms([], headers, NOW_MS) == MIN_RATE_LIMIT_DELAY_MS

    def test_not_throttled_returns_none(self) -> None:
        headers = {"x-ratelimit-remaining": "4999", "x-ratelimit-reset": reset_in(60)}
        errors = [{"message": "Could not resolve", "type": "NOT_FOUND"}]
        assert compute_rate_limit_delay_ms(errors, headers, NOW_MS) is None

    def test_retry_after_seconds_preferred(self) -> None:
        headers = {
            "retry-after": "60",
            "x-ratelimit-remaining": "4321",
            "x-ratelimit-reset": reset_in(600),
        }
        assert compute_rate_limit_delay_ms([], headers, NOW_MS) == 60_000

    def test_retry_after_is_floored_and_capped(self) -> None:
        assert compute_rate_limit_delay_ms([], {"retry-after": "1"}, NOW_MS) == 5000
        assert compute_rate_limit_delay_ms([], {"retry-after": "3600"}, NOW_MS) == 900000

    def test_retry_after_http_date(self) -> None:
        headers = {"retry-after": "Tue, 14 Nov 2023 22:14:20 GMT"}
        # NOW_MS is 2023-11-14T22:13:20Z
        assert compute_rate_limit_delay_ms([], headers, NOW_MS) == 60_000

    def test_extension_retry_after(self) -> None:
        errors = [{"type": "RATE_LIMITED", "extensions": {"retryAfter": 30}}]
        assert compute_rate_limit_delay_ms(errors, {}, NOW_MS) == 30_000

    def test_extension_reset_at(self) -> None:
        errors = [
            {"type": "RATE_LIMITED", "extensions": {"resetAt": "2023-11-14T22:15:20Z"}}
        ]
        assert compute_rate_limit_delay_ms(errors, {}, NOW_MS) == 120_000

    def test_secondary_limit_message(self) -> None:
        delay = compute_rate_limit_delay_ms(
            [],
            {"x-ratelimit-remaining": "4321"},
            NOW_MS,
            message="HTTP 403: You have exceeded a secondary rate limit",
        )
        assert delay == MIN_RATE_LIMIT_DELAY_MS

    def test_cap_constant(self) -> None:
        assert MAX_RATE_LIMIT_DELAY_MS == 15 * 60 * 1000


class TestIsRateLimited:
    @pytest.mark.parametrize(
        "error",
        [
            {"type": "RATE_LIMITED"},
            {"code": "RATE_LIMIT"},
            {"extensions": {"type": "GRAPHQL_RATE_LIMIT"}},
            {"extensions": {"code": "graphql_rate_limit"}},
        ],
    )
    def test_error_markers(self, error: dict) -> None:
        assert is_rate_limited([error], {})

    def test_remaining_zero_header(self) -> None:
        assert is_rate_limited([], {"x-ratelimit-remaining": "0"})

    def test_rate_limit_message_in_error(self) -> None:
        errors = [{"message": "API rate limit exceeded for installation"}]
        assert is_rate_limited(errors, {})

    def test_retry_after_header(self) -> None:
        assert is_rate_limited([], {"retry-after": "60", "x-ratelimit-remaining": "10"})

    def test_rate_limit_message_on_request_error(self) -> None:
        assert is_rate_limited([], {}, "You have exceeded a secondary rate limit")

    def test_other_errors(self) -> None:
        assert not is_rate_limited([{"type": "FORBIDDEN"}], {})


class TestRateLimitedFetcher:
    """Tests for RateLimitedFetcher.fetch."""

    @pytest.fixture
    def request_(self) -> GraphQLRequest:
        return GraphQLRequest(query="query { viewer { login } }", label="viewer")

    @pytest.mark.asyncio
    async def test_retries_identical_request_after_sleep(self, request_) -> None:
        throttled = GitHubRequestError(
            "rate limited",
            status_code=403,
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": reset_in(3)},
        )
        client = AsyncMock()
        client.execute = AsyncMock(
            side_effect=[throttled, throttled, {"viewer": {"login": "octocat"}}]
        )
        sleep = AsyncMock()

        fetcher = RateLimitedFetcher(client, sleep=sleep, clock=lambda: NOW_MS)
        result = await fetcher.fetch(request_)

        assert result == {"viewer": {"login": "octocat"}}
        assert client.execute.await_count == 3
        for call in client.execute.await_args_list:
            assert call.args[0] is request_
        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_non_throttle_error_propagates(self, request_) -> None:
        client = AsyncMock()
        client.execute = AsyncMock(
            side_effect=GitHubRequestError("boom", status_code=502)
        )
        sleep = AsyncMock()

        fetcher = RateLimitedFetcher(client, sleep=sleep, clock=lambda: NOW_MS)
        with pytest.raises(GitHubRequestError, match="boom"):
            await fetcher.fetch(request_)

        sleep.assert_not_awaited()
        assert client.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self, request_) -> None:
        client = AsyncMock()
        client.execute = AsyncMock(side_effect=RuntimeError("unexpected"))

        fetcher = RateLimitedFetcher(client, sleep=AsyncMock(), clock=lambda: NOW_MS)
        with pytest.raises(RuntimeError):
            await fetcher.fetch(request_)

    @pytest.mark.asyncio
    async def test_secondary_rate_limit_is_retried(self, request_) -> None:
        throttled = GitHubRequestError(
            "GitHub GraphQL request failed with HTTP 403: "
            "You have exceeded a secondary rate limit",
            status_code=403,
            headers={"Retry-After": "60", "X-RateLimit-Remaining": "4321"},
        )
        client = AsyncMock()
        client.execute = AsyncMock(side_effect=[throttled, {"viewer": {"login": "octocat"}}])
        sleep = AsyncMock()

        fetcher = RateLimitedFetcher(client, sleep=sleep, clock=lambda: NOW_MS)
        result = await fetcher.fetch(request_)

        assert result == {"viewer": {"login": "octocat"}}
        assert client.execute.await_count == 2
        sleep.assert_awaited_once_with(60.0)
