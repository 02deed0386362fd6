"""
Paginated collector for GraphQL connections.

A connection is located in the response by a path of keys, e.g.
``("organization", "repositories")``. Missing containers along the path
mean the parent entity is gone; that ends the scan without an error.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

from ghmirror.core.github.client import GraphQLRequest

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    async def fetch(self, request: GraphQLRequest) -> dict[str, Any]: ...


def get_connection(data: Any, path: Sequence[str]) -> dict[str, Any] | None:
    """Walk ``path`` into ``data``; None if any container is absent."""
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current if isinstance(current, dict) else None


async def iter_connection_pages(
    fetcher: Fetcher,
    request: GraphQLRequest,
    connection_path: Sequence[str],
    cursor_variable: str = "cursor",
) -> AsyncIterator[list[dict[str, Any]]]:
    """
    Yield the non-null nodes of each page of a connection.

    Continues while ``pageInfo.hasNextPage`` is true and ``endCursor``
    is set.
    """
    cursor = request.variables.get(cursor_variable)
    page = 0
    while True:
        data = await fetcher.fetch(request.with_variables(**{cursor_variable: cursor}))
        page += 1
        connection = get_connection(data, connection_path)
        if connection is None:
            logger.debug(f"{request.label}: connection absent on page {page}, stopping")
            return

        nodes = connection.get("nodes") or []
        yield [node for node in nodes if node is not None]

        page_info = connection.get("pageInfo") or {}
        cursor = page_info.get("endCursor")
        if not page_info.get("hasNextPage") or not cursor:
            return


async def collect_connection(
    fetcher: Fetcher,
    request: GraphQLRequest,
    connection_path: Sequence[str],
    cursor_variable: str = "cursor",
) -> list[dict[str, Any]]:
    """Collect every node of a connection across all pages."""
    nodes: list[dict[str, Any]] = []
    async for page in iter_connection_pages(
        fetcher, request, connection_path, cursor_variable
    ):
        nodes.extend(page)
    logger.debug(f"{request.label}: collected {len(nodes)} nodes")
    return nodes
