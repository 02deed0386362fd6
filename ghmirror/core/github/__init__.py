"""Upstream GraphQL access: client, throttling, pagination, realignment."""

from ghmirror.core.github.client import (
    GitHubClient,
    GitHubClientConfig,
    GitHubRequestError,
    GraphQLRequest,
    create_github_client,
)
from ghmirror.core.github.pagination import collect_connection, iter_connection_pages
from ghmirror.core.github.rate_limit import RateLimitedFetcher, compute_rate_limit_delay_ms

__all__ = [
    "GitHubClient",
    "GitHubClientConfig",
    "GitHubRequestError",
    "GraphQLRequest",
    "create_github_client",
    "collect_connection",
    "iter_connection_pages",
    "RateLimitedFetcher",
    "compute_rate_limit_delay_ms",
]
