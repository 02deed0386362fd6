"""
Process-wide job lock.

Every job type shares one FIFO queue: a caller captures the current
tail, installs its own, waits for the previous tail and releases its
own in ``finally``. Handlers never overlap, across or within types.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ghmirror.core.jobs.exceptions import JobWaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobLock:
    """
    FIFO mutual exclusion across all job types.

    Usage:
        lock = JobLock()
        result = await lock.run("sync", handler)
    """

    def __init__(self) -> None:
        self._tail: asyncio.Future[None] | None = None
        self._current_job_type: str | None = None

    @property
    def current_job_type(self) -> str | None:
        """Job type currently holding the lock, if any."""
        return self._current_job_type

    @property
    def is_locked(self) -> bool:
        return self._tail is not None and not self._tail.done()

    async def run(
        self,
        job_type: str,
        handler: Callable[[], Awaitable[T]],
        wait_timeout: float | None = None,
        on_admitted: Callable[[], Awaitable[None]] | None = None,
    ) -> T:
        """
        Run ``handler`` once every earlier caller has finished.

        Args:
            job_type: Label used for introspection and logging.
            handler: Coroutine function executed under the lock.
            wait_timeout: Seconds to wait for admission; None waits forever.
            on_admitted: Awaited right after admission, before ``handler``.

        Raises:
            JobWaitTimeoutError: If not admitted within ``wait_timeout``.
                The handler never runs and the queue keeps moving.
        """
        loop = asyncio.get_running_loop()
        previous = self._tail
        release: asyncio.Future[None] = loop.create_future()
        self._tail = release

        try:
            if previous is not None and not previous.done():
                if self._current_job_type and self._current_job_type != job_type:
                    logger.info(
                        f"{job_type} job waiting for running {self._current_job_type} job"
                    )
                # shield: a timeout must not cancel the predecessor's future
                await asyncio.wait_for(asyncio.shield(previous), wait_timeout)
        except asyncio.TimeoutError as e:
            # Hand our slot to whoever queued behind us once the
            # predecessor finishes
            previous.add_done_callback(lambda _: _resolve(release))
            raise JobWaitTimeoutError(job_type, wait_timeout or 0) from e
        except BaseException:
            if previous is not None:
                previous.add_done_callback(lambda _: _resolve(release))
            else:
                _resolve(release)
            raise

        self._current_job_type = job_type
        try:
            if on_admitted is not None:
                await on_admitted()
            return await handler()
        finally:
            self._current_job_type = None
            _resolve(release)
            if self._tail is release:
                self._tail = None


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)
