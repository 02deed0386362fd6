"""
Upstream GraphQL client.

A thin transport over httpx: one POST per request, GraphQL errors and
non-2xx responses surface as GitHubRequestError with the response
headers attached so callers can classify throttling.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ghmirror.core.config.loader import get_github_config
from ghmirror.core.storage.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_ENDPOINT = "https://api.github.com/graphql"
MAX_REDIRECT_HOPS = 5


class GitHubRequestError(Exception):
    """
    Upstream request failed.

    Attributes:
        status_code: HTTP status of the response (None for transport errors).
        errors: GraphQL error objects from the response body.
        headers: Response headers with lower-cased names.
        data: Partial ``data`` payload returned alongside the errors.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.data = data


@dataclass
class GraphQLRequest:
    """One GraphQL operation plus the label used in log lines."""

    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    operation_name: str | None = None
    label: str = "graphql"

    def with_variables(self, **overrides: Any) -> "GraphQLRequest":
        """Return a copy with some variables replaced."""
        return GraphQLRequest(
            query=self.query,
            variables={**self.variables, **overrides},
            operation_name=self.operation_name,
            label=self.label,
        )


@dataclass
class GitHubClientConfig:
    """Configuration for GitHubClient."""

    token: str
    endpoint: str = GITHUB_GRAPHQL_ENDPOINT
    timeout: float = 30.0
    user_agent: str = "ghmirror"


class GitHubClient:
    """
    Authenticated GraphQL client.

    Usage:
        async with GitHubClient(GitHubClientConfig(token="...")) as client:
            data = await client.execute(GraphQLRequest(query=VIEWER))
    """

    def __init__(
        self,
        config: GitHubClientConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self._http = http_client or httpx.AsyncClient(
            timeout=config.timeout,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/json",
            },
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def execute(self, request: GraphQLRequest) -> dict[str, Any]:
        """
        Run one GraphQL request and return its ``data`` object.

        Raises:
            GitHubRequestError: On transport failure, non-2xx status, or a
                response carrying GraphQL errors.
        """
        body: dict[str, Any] = {"query": request.query, "variables": request.variables}
        if request.operation_name:
            body["operationName"] = request.operation_name

        try:
            response = await self._http.post(self.config.endpoint, json=body)
        except httpx.RequestError as e:
            raise GitHubRequestError(f"{request.label}: request failed: {e}") from e

        headers = dict(response.headers)
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        errors = payload.get("errors") or []
        data = payload.get("data")

        if response.status_code >= 400:
            message = payload.get("message") or response.reason_phrase
            raise GitHubRequestError(
                f"{request.label}: HTTP {response.status_code}: {message}",
                status_code=response.status_code,
                errors=errors,
                headers=headers,
                data=data,
            )

        if errors:
            first = errors[0].get("message", "unknown error")
            raise GitHubRequestError(
                f"{request.label}: {first}",
                status_code=response.status_code,
                errors=errors,
                headers=headers,
                data=data,
            )

        return data or {}

    async def resolve_redirect(self, url: str) -> str | None:
        """
        Follow HTTP redirects of a web URL manually.

        Returns the final URL when it differs from the input, None when
        the URL does not redirect or cannot be reached.
        """
        current = url
        for _ in range(MAX_REDIRECT_HOPS):
            try:
                response = await self._http.head(current, follow_redirects=False)
            except httpx.RequestError as e:
                logger.warning(f"Redirect lookup failed for {current}: {e}")
                return None

            location = response.headers.get("location")
            if not response.is_redirect or not location:
                break
            current = str(httpx.URL(current).join(location))

        return current if current != url else None


def create_github_client() -> GitHubClient:
    """Build a client from the ``github`` configuration section."""
    github_config = get_github_config()
    token = github_config.get("token")
    if not token:
        raise ConfigurationError("GitHub token not configured (github.token)")

    return GitHubClient(
        GitHubClientConfig(
            token=token,
            endpoint=github_config.get("endpoint") or GITHUB_GRAPHQL_ENDPOINT,
            timeout=float(github_config.get("timeout_seconds", 30)),
        )
    )
