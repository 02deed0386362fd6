"""
Rate-limited fetch client.

Wraps GitHubClient.execute and retries the identical request whenever
the upstream signals throttling. That covers the primary quota (error
codes, ``x-ratelimit-remaining: 0``) and the secondary limit GitHub
reports as a 403 with a "rate limit" message and ``retry-after``.
Every other error propagates.
"""

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Protocol

from ghmirror.core.github.client import GitHubRequestError, GraphQLRequest

logger = logging.getLogger(__name__)

RATE_LIMIT_ERROR_CODES = frozenset(
    {"RATE_LIMIT", "RATE_LIMITED", "GRAPHQL_RATE_LIMIT", "graphql_rate_limit"}
)
RATE_LIMIT_MESSAGE = re.compile(r"rate limit", re.IGNORECASE)
MIN_RATE_LIMIT_DELAY_MS = 5_000
MAX_RATE_LIMIT_DELAY_MS = 15 * 60 * 1000

# Seconds to wait, as some GraphQL errors report it in ``extensions``
EXTENSION_DELAY_KEYS = (
    "retryAfter",
    "retry_after",
    "retryAfterSeconds",
    "retry_after_seconds",
    "wait",
    "seconds",
    "resetAfter",
    "reset_after",
)
# Absolute reset instant (epoch seconds or ISO 8601)
EXTENSION_RESET_KEYS = ("resetAt", "reset_at", "resetTime", "reset_time")


class GraphQLExecutor(Protocol):
    async def execute(self, request: GraphQLRequest) -> dict[str, Any]: ...


def _error_markers(error: dict[str, Any]) -> list[str]:
    markers = []
    for container in (error, error.get("extensions") or {}):
        if not isinstance(container, dict):
            continue
        for key in ("type", "code"):
            value = container.get(key)
            if isinstance(value, str):
                markers.append(value)
    return markers


def is_rate_limited(
    errors: list[dict[str, Any]], headers: dict[str, str], message: str = ""
) -> bool:
    """True if error codes, messages or headers report throttling."""
    for error in errors:
        if not isinstance(error, dict):
            continue
        if any(marker in RATE_LIMIT_ERROR_CODES for marker in _error_markers(error)):
            return True
        if RATE_LIMIT_MESSAGE.search(str(error.get("message") or "")):
            return True
    if headers.get("x-ratelimit-remaining") == "0" or headers.get("retry-after"):
        return True
    return bool(RATE_LIMIT_MESSAGE.search(message or ""))


def _parse_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _retry_after_ms(value: str, now_ms: int) -> int | None:
    """``Retry-After`` is either delta seconds or an HTTP date."""
    seconds = _parse_number(value)
    if seconds is not None:
        return int(seconds * 1000)
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp() * 1000) - now_ms


def _reset_ms(value: Any, now_ms: int) -> int | None:
    """Delay until an absolute reset given as epoch seconds or ISO 8601."""
    epoch = _parse_number(value)
    if epoch is not None:
        return int(epoch * 1000) - now_ms
    if not isinstance(value, str):
        return None
    try:
        moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp() * 1000) - now_ms


def _raw_delay_ms(errors: list[dict[str, Any]], headers: dict[str, str], now_ms: int) -> int:
    retry_after = headers.get("retry-after")
    if retry_after:
        delay = _retry_after_ms(retry_after, now_ms)
        if delay is not None:
            return delay

    reset_header = headers.get("x-ratelimit-reset")
    if reset_header:
        delay = _reset_ms(reset_header, now_ms)
        if delay is not None:
            return delay

    for error in errors:
        extensions = error.get("extensions") if isinstance(error, dict) else None
        if not isinstance(extensions, dict):
            continue
        for key in EXTENSION_DELAY_KEYS:
            seconds = _parse_number(extensions.get(key))
            if seconds is not None:
                return int(seconds * 1000)
        for key in EXTENSION_RESET_KEYS:
            delay = _reset_ms(extensions.get(key), now_ms)
            if delay is not None:
                return delay

    return MIN_RATE_LIMIT_DELAY_MS


def compute_rate_limit_delay_ms(
    errors: list[dict[str, Any]],
    headers: dict[str, str],
    now_ms: int,
    message: str = "",
) -> int | None:
    """
    Compute how long to wait before retrying a throttled request.

    Args:
        errors: GraphQL error objects from the failed response.
        headers: Response headers, lower-cased.
        now_ms: Current time in epoch milliseconds.
        message: Error message of the failed request.

    Returns:
        Delay in milliseconds, or None if the failure is not throttling.
        The first available hint wins: ``retry-after``, then
        ``x-ratelimit-reset``, then ``extensions`` delay or reset fields.
        The result is floored at 5 seconds and capped at 15 minutes.
    """
    if not is_rate_limited(errors, headers, message):
        return None

    delay = max(_raw_delay_ms(errors, headers, now_ms), MIN_RATE_LIMIT_DELAY_MS)
    return min(delay, MAX_RATE_LIMIT_DELAY_MS)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimitedFetcher:
    """
    Fetch client that sleeps through throttling.

    There is no attempt ceiling: the attempt counter only feeds the log
    line. ``sleep`` and ``clock`` are injectable for tests.
    """

    def __init__(
        self,
        client: GraphQLExecutor,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], int] = _now_ms,
    ):
        self.client = client
        self._sleep = sleep
        self._clock = clock

    async def fetch(self, request: GraphQLRequest) -> dict[str, Any]:
        attempt = 1
        while True:
            try:
                return await self.client.execute(request)
            except GitHubRequestError as e:
                now_ms = self._clock()
                delay_ms = compute_rate_limit_delay_ms(
                    e.errors, e.headers, now_ms, message=str(e)
                )
                if delay_ms is None:
                    raise

                resume_at = datetime.fromtimestamp((now_ms + delay_ms) / 1000, UTC)
                logger.warning(
                    f"Rate limited on {request.label} (attempt {attempt}), "
                    f"sleeping {delay_ms} ms until {resume_at.isoformat()}"
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1
